from dataclasses import dataclass
from collections.abc import Sequence

from z3 import *

from peephole import util
from peephole.encode import RuleFormula, var_fact_constraints
from peephole.inst import Inst, InstContext, InstMapping
from peephole.verify import RuleSolver

def _subst(expr, pairs):
    return substitute(expr, pairs) if pairs else expr

def eval_model(model, vars):
    return [ model.evaluate(v, model_completion=True) for v in vars ]

@dataclass(frozen=True)
class ConstantSynthesis(util.HasDebug):
    """Finds values for constant holes that make a rule valid.

    The search is a CEGIS loop: the synthesis query asks for hole
    values under which the rule holds on a set of input samples,
    the verification query checks the values on all inputs and
    contributes a counterexample as a new sample if they fail.
    """

    rule_solver: RuleSolver

    def synthesize(self, pcs, bpcs, mapping: InstMapping, holes: Sequence[Inst],
                   ctx: InstContext, max_tries: int = 30, max_model_size: int = 10,
                   avoid_nops: bool = True) -> dict[Inst, int]:
        """Synthesizes the values of holes in mapping.

        Attributes:
        max_tries: Maximum number of synthesis queries.
        max_model_size: Maximum number of counterexample samples
            kept in the synthesis query.
        avoid_nops: Reject values that turn the right-hand side
            into the left-hand side.

        Returns a map from each hole to its value, or an empty map
        if no values were found.
        """
        formula = self.rule_solver.encode(pcs, bpcs, mapping)
        return self.synthesize_formula(formula, mapping, holes, ctx, max_tries,
                                       max_model_size, avoid_nops)

    def synthesize_formula(self, formula: RuleFormula, mapping: InstMapping,
                           holes: Sequence[Inst], ctx: InstContext,
                           max_tries: int = 30, max_model_size: int = 10,
                           avoid_nops: bool = True, extra=[]) -> dict[Inst, int]:
        solve  = self.rule_solver.solve
        holes  = [ h for h in holes if h in formula.vars ]
        if not holes:
            return {}
        h_vars = [ formula.vars[h] for h in holes ]
        inputs = [ x for i, x in formula.vars.items() if not i in holes ] \
               + list(formula.blocks.values())
        phi    = Implies(formula.premise, formula.goal)

        synth_constr = [ c for h, x in zip(holes, h_vars) for c in var_fact_constraints(h, x) ]
        synth_constr += list(extra)
        samples = []

        def add_sample(sample):
            self.debug('cex', 'sample', len(samples), sample)
            samples.append(sample)
            synth_constr.append(simplify(_subst(phi, list(zip(inputs, sample)))))

        if model := solve([ formula.premise ] + list(extra)):
            add_sample(eval_model(model, inputs))

        for n_try in range(max_tries):
            model = solve(synth_constr)
            if model is None:
                self.debug('fail', f'constant synthesis failed after {n_try + 1} queries')
                return {}
            vals   = eval_model(model, h_vars)
            values = { h: v.as_long() for h, v in zip(holes, vals) }
            self.debug('const', 'candidate constants:', values)

            if avoid_nops:
                memo = {}
                lhs = ctx.replace_consts(mapping.lhs, values, memo)
                rhs = ctx.replace_consts(mapping.rhs, values, memo)
                if lhs is rhs:
                    self.debug('const', 'rejecting no-op constants', values)
                    synth_constr.append(Or([ x != v for x, v in zip(h_vars, vals) ]))
                    continue

            verif = _subst(formula.counterexample(), list(zip(h_vars, vals)))
            if (cex := solve([ verif ])) is None:
                return values
            if len(samples) >= max_model_size:
                self.debug('fail', f'constant synthesis exceeded {max_model_size} samples')
                return {}
            add_sample(eval_model(cex, inputs))

        self.debug('fail', f'constant synthesis gave up after {max_tries} queries')
        return {}
