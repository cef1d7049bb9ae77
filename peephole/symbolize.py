from dataclasses import dataclass

from peephole import util
from peephole.constants import ConstantSynthesis
from peephole.enumerative import EnumerativeSynthesis
from peephole.inst import Inst, InstContext, ParsedReplacement, \
    constants, free_vars, holes, attach_facts
from peephole.preconditions import PreconditionInference, Precondition, \
    Unconditional, Disjunction, NotFound
from peephole.printer import rule_string
from peephole.verify import RuleSolver

FAKE_CONST_PREFIX = 'fakeconst_'

UNCONDITIONAL_UTILITY = 1000

def utility(pre: Precondition):
    """Ranks a precondition: looser preconditions rank higher.

    Interval disjuncts do not contribute.
    """
    match pre:
        case Unconditional():
            return UNCONDITIONAL_UTILITY
        case Disjunction(known_bits=kbs):
            return sum(kb.utility() for d in kbs for kb in d.values())
        case _:
            return 0

def precondition_rules(ctx: InstContext, rule: ParsedReplacement, pre: Precondition):
    """One rule per disjunct of pre with the disjunct's facts attached.

    Known bits disjuncts are preferred over interval disjuncts.
    """
    match pre:
        case Unconditional():
            return [ rule ]
        case Disjunction(known_bits=kbs) if kbs:
            return [ attach_facts(ctx, rule, known=kb) for kb in kbs ]
        case Disjunction(ranges=crs):
            return [ attach_facts(ctx, rule, ranges=cr) for cr in crs ]
        case _:
            return []

@dataclass(frozen=True)
class Candidate:
    rule: ParsedReplacement
    """The generalized rule, without the facts of its precondition."""

    utility: int

    precondition: Precondition | None = None
    """None for rules whose constants were synthesized."""

    @property
    def is_conditional(self):
        return isinstance(self.precondition, Disjunction)

@dataclass(frozen=True)
class SymbolizeConstants(util.HasDebug):
    """Replaces concrete constants of a rule by symbolic constants.

    The constants of the left-hand side are replaced by fresh variables
    (first one at a time, then all at once) and every constant of the
    right-hand side by an expression over these variables. Expressions
    with constant holes are completed by constant synthesis, all other
    ones by inferring a precondition on the rule's variables.
    """

    rule_solver: RuleSolver

    num_insts: int = 1
    """Maximum number of instructions of a right-hand side constant guess."""

    no_dataflow: bool = False
    """Do not infer preconditions; keep unconditionally valid guesses only."""

    num_results: int = 5
    """Maximum number of conditional rules in the result."""

    max_tries: int = 30
    """Maximum number of constant synthesis queries."""

    max_model_size: int = 10
    """Maximum number of counterexample samples during constant synthesis."""

    def _precondition(self, rule: ParsedReplacement, ctx: InstContext):
        if self.no_dataflow:
            valid, _ = self.rule_solver.is_valid_rule(rule, ctx)
            return Unconditional() if valid else NotFound()
        vars = [ v for v in free_vars(rule.lhs) if not v.name.startswith(FAKE_CONST_PREFIX) ]
        inference = PreconditionInference(self.rule_solver, debug=self.debug)
        return inference.infer(rule.pcs, rule.bpcs, rule.mapping, ctx, vars)

    def _guesses(self, ctx: InstContext, rule: ParsedReplacement, fakes: dict[Inst, Inst]):
        """Right-hand sides with one constant replaced by an expression over fakes."""
        rhs_consts = constants(rule.rhs)
        if not rhs_consts:
            yield ctx.replace(rule.rhs, fakes)
            return
        enum = EnumerativeSynthesis(debug=self.debug)
        for c in rhs_consts:
            for guess in enum.generate(ctx, c.width, list(fakes.values()), self.num_insts):
                yield ctx.replace(rule.rhs, fakes | { c: guess })

    def _pass(self, ctx: InstContext, rule: ParsedReplacement, targets: list[Inst]):
        fakes = { c: ctx.var(c.width, f'{FAKE_CONST_PREFIX}{i}') for i, c in enumerate(targets) }
        lhs = ctx.replace(rule.lhs, fakes)
        self.debug('symbolize', 'symbolic left-hand side:', lhs)
        cs = ConstantSynthesis(self.rule_solver, debug=self.debug)

        solved, inferred = [], []
        for rhs in self._guesses(ctx, rule, fakes):
            candidate = rule.with_mapping(lhs, rhs)
            if hs := holes(rhs):
                values = cs.synthesize(rule.pcs, rule.bpcs, candidate.mapping, hs, ctx,
                                       max_tries=self.max_tries,
                                       max_model_size=self.max_model_size,
                                       avoid_nops=True)
                if values:
                    rhs = ctx.replace_consts(rhs, values)
                    solved.append(Candidate(rule.with_mapping(lhs, rhs), UNCONDITIONAL_UTILITY))
                else:
                    self.debug('fail', 'constant synthesis failed for', rhs)
                continue
            pre = self._precondition(candidate, ctx)
            if isinstance(pre, NotFound):
                self.debug('fail', 'no precondition for', rhs)
                continue
            inferred.append(Candidate(candidate, utility(pre), pre))

        return solved, inferred

    def generalize(self, rule: ParsedReplacement, ctx: InstContext) -> list[Candidate]:
        """Candidates in the order they are emitted.

        Synthesized rules come first, then unconditionally valid rules,
        then conditional rules sorted by descending utility.
        """
        lhs_consts = constants(rule.lhs)
        if not lhs_consts:
            self.debug('fail', 'the left-hand side has no constants')
            return []
        # one at a time, then all at once
        passes = [ [ c ] for c in lhs_consts ]
        if len(lhs_consts) > 1:
            passes.append(lhs_consts)

        solved, inferred = [], []
        for targets in passes:
            s, i = self._pass(ctx, rule, targets)
            solved   += s
            inferred += i
        inferred.sort(key=lambda c: (not c.is_conditional, c.utility), reverse=True)
        return solved + inferred

    def results(self, rule: ParsedReplacement, ctx: InstContext) -> list[ParsedReplacement]:
        """The generalized rules, deduplicated and with facts attached."""
        res = {}
        n_conditional = 0
        for c in self.generalize(rule, ctx):
            if c.precondition is None:
                rules = [ c.rule ]
            else:
                rules = precondition_rules(ctx, c.rule, c.precondition)
            if c.is_conditional:
                rules = rules[:max(0, self.num_results - n_conditional)]
                n_conditional += len(rules)
            for r in rules:
                res.setdefault(rule_string(r), r)
        return list(res.values())

def infer_and_fix(rule: ParsedReplacement, ctx: InstContext, rule_solver: RuleSolver,
                  debug=util.no_debug, **args) -> list[ParsedReplacement]:
    """Makes a possibly invalid rule valid by attaching preconditions.

    Returns the rule itself if it is valid, one rule per disjunct
    if a precondition was found, and nothing otherwise.
    """
    inference = PreconditionInference(rule_solver, debug=debug, **args)
    pre = inference.infer(rule.pcs, rule.bpcs, rule.mapping, ctx)
    if isinstance(pre, NotFound):
        debug('fail', 'no precondition found')
    return precondition_rules(ctx, rule, pre)
