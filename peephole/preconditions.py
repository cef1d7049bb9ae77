from dataclasses import dataclass, field
from collections.abc import Sequence

from z3 import *

from peephole import util
from peephole.constants import ConstantSynthesis
from peephole.encode import RuleFormula
from peephole.inst import Inst, InstContext, InstMapping, free_vars
from peephole.lattice import KnownBits, ConstantRange
from peephole.verify import RuleSolver

@dataclass(frozen=True)
class Unconditional:
    """The rule is valid without a precondition."""

    def as_tuple(self):
        return True, [], []

@dataclass(frozen=True)
class Disjunction:
    """Alternative sufficient preconditions.

    Each element of known_bits (and of ranges) is a conjunction of
    facts on variables under which the rule is valid. The two lists
    are found independently of each other.
    """
    known_bits: list[dict[Inst, KnownBits]] = field(default_factory=list)
    ranges: list[dict[Inst, ConstantRange]] = field(default_factory=list)

    def as_tuple(self):
        return True, self.known_bits, self.ranges

@dataclass(frozen=True)
class NotFound:
    """The search found no precondition. This does not mean that the rule is invalid."""

    def as_tuple(self):
        return False, [], []

Precondition = Unconditional | Disjunction | NotFound

def _known_bits_constraints(formula: RuleFormula, facts: dict[Inst, KnownBits]):
    return [ c for v, kb in facts.items() for c in kb.constraint(formula.vars[v]) ]

def _range_constraints(formula: RuleFormula, facts: dict[Inst, ConstantRange]):
    return [ c for v, cr in facts.items() for c in cr.constraint(formula.vars[v]) ]

@dataclass(frozen=True)
class PreconditionInference(util.HasDebug):
    """Searches the known bits and the interval lattice for preconditions.

    A disjunct is found by first synthesizing a seed, i.e. values of
    the constrained variables for which the rule holds for all values
    of the other inputs. The facts that pin the variables to the seed
    are then weakened as long as the rule stays valid: bits are unpinned
    one at a time, intervals are widened by binary search. Later seeds
    must lie outside all disjuncts found so far.
    """

    rule_solver: RuleSolver

    max_disjuncts: int = 3
    """Maximum number of disjuncts per lattice."""

    known_bits: bool = True
    """Search the known bits lattice."""

    ranges: bool = True
    """Search the interval lattice."""

    max_tries: int = 30
    """Maximum number of synthesis queries to find a seed."""

    max_model_size: int = 10
    """Maximum number of counterexamples kept while finding a seed."""

    def _seed(self, formula, mapping, vars, ctx, exclude):
        cs = ConstantSynthesis(self.rule_solver, debug=self.debug)
        return cs.synthesize_formula(formula, mapping, vars, ctx,
                                     max_tries=self.max_tries,
                                     max_model_size=self.max_model_size,
                                     avoid_nops=False, extra=exclude)

    def _is_valid(self, formula, assumptions):
        valid, _ = self.rule_solver.check(formula, assumptions)
        return valid

    def _weaken_known_bits(self, formula, vars, seed):
        facts = { v: KnownBits.from_value(v.width, seed[v]) for v in vars }
        check = lambda f: self._is_valid(formula, _known_bits_constraints(formula, f))
        for v in vars:
            if check(facts | { v: KnownBits.top(v.width) }):
                facts[v] = KnownBits.top(v.width)
                continue
            for bit in reversed(range(v.width)):
                trial = facts | { v: facts[v].unpin(bit) }
                if check(trial):
                    facts = trial
        return { v: kb for v, kb in facts.items() if not kb.is_top }

    def _widen_ranges(self, formula, vars, seed):
        facts = { v: ConstantRange.from_size(v.width, seed[v], 1) for v in vars }
        check = lambda f: self._is_valid(formula, _range_constraints(formula, f))
        is_lt = lambda valid: not valid

        def extend(v, make):
            size  = facts[v].size
            k_max = (1 << v.width) - size
            eval  = lambda k: k <= k_max and check(facts | { v: make(k) })
            l, u  = util.find_start_interval(eval, is_lt, debug=self.debug)
            k, _  = util.binary_search(eval, is_lt, l, min(u - 1, k_max), debug=self.debug)
            return make(k)

        for v in vars:
            w = v.width
            lower, size = facts[v].lower, facts[v].size
            facts[v] = extend(v, lambda k: ConstantRange.from_size(w, lower - k, size + k))
            if facts[v].is_full:
                continue
            lower, size = facts[v].lower, facts[v].size
            facts[v] = extend(v, lambda k: ConstantRange.from_size(w, lower, size + k))
        return { v: cr for v, cr in facts.items() if not cr.is_full }

    def _search(self, formula, mapping, vars, ctx, weaken, constraints):
        results = []
        for _ in range(self.max_disjuncts):
            exclude = [ Not(And(constraints(formula, r))) for r in results ]
            seed = self._seed(formula, mapping, vars, ctx, exclude)
            if not seed:
                break
            self.debug('precond', 'seed:', seed)
            res = weaken(formula, vars, seed)
            self.debug('precond', 'disjunct:', { v.name: str(f) for v, f in res.items() })
            # no facts left means that the rule is valid without them
            assert res, 'weakening removed all facts of an invalid rule'
            results.append(res)
        return results

    def infer(self, pcs, bpcs, mapping: InstMapping, ctx: InstContext,
              vars: Sequence[Inst] | None = None) -> Precondition:
        """Infers preconditions on vars that make the rule valid.

        vars defaults to the free variables of the left-hand side.
        """
        formula = self.rule_solver.encode(pcs, bpcs, mapping)
        if self._is_valid(formula, []):
            return Unconditional()

        vars = free_vars(mapping.lhs) if vars is None else vars
        vars = [ v for v in vars if v in formula.vars ]
        if not vars:
            self.debug('fail', 'no variables to constrain')
            return NotFound()

        kb_results = []
        if self.known_bits:
            kb_results = self._search(formula, mapping, vars, ctx,
                                      self._weaken_known_bits, _known_bits_constraints)
        cr_results = []
        # existing range facts are kept as they are
        range_vars = [ v for v in vars if v.facts.range is None or v.facts.range.is_full ]
        if self.ranges and range_vars:
            cr_results = self._search(formula, mapping, range_vars, ctx,
                                      self._widen_ranges, _range_constraints)

        if not kb_results and not cr_results:
            self.debug('fail', 'no precondition found')
            return NotFound()
        return Disjunction(known_bits=kb_results, ranges=cr_results)
