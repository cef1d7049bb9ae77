from dataclasses import dataclass

from z3 import *

from peephole import util
from peephole.encode import RuleFormula, encode_rule
from peephole.inst import InstContext, InstMapping, ParsedReplacement
from peephole.solvers import HasSolver

THEORY = 'QF_BV'

@dataclass(frozen=True)
class RuleSolver(HasSolver, util.HasDebug):
    """Validity checks and model extraction for rules.

    Every query is a single synchronous solver call. Answers other
    than sat and unsat raise a SolverError, which callers propagate.
    """

    def solve(self, constraints):
        """Returns a model of constraints, or None if they are unsatisfiable."""
        time, model = self.solver.check(THEORY, list(constraints), self.timeout)
        self.debug('time', f'solver time: {time / 1e9:.3f}')
        return model

    def encode(self, pcs, bpcs, mapping: InstMapping) -> RuleFormula:
        return encode_rule(tuple(pcs), tuple(bpcs), mapping)

    def check(self, formula: RuleFormula, assumptions=[]):
        """Checks the formula's validity under additional assumptions.

        Returns a pair of the validity and, if invalid, a counterexample
        that maps the variables of the rule to their values.
        """
        model = self.solve([ formula.counterexample() ] + list(assumptions))
        if model is None:
            return True, None
        return False, { i: model.evaluate(x, model_completion=True).as_long() \
                        for i, x in formula.vars.items() }

    def is_valid(self, pcs, bpcs, mapping: InstMapping, ctx: InstContext | None = None):
        valid, cex = self.check(self.encode(pcs, bpcs, mapping))
        self.debug('valid', f'valid: {valid}', '' if valid else f'counterexample: {cex}')
        return valid, cex

    def is_valid_rule(self, rule: ParsedReplacement, ctx: InstContext | None = None):
        return self.is_valid(rule.pcs, rule.bpcs, rule.mapping, ctx)

    def abstract_precondition(self, pcs, bpcs, mapping: InstMapping, ctx: InstContext, **args):
        from peephole.preconditions import PreconditionInference
        return PreconditionInference(self, **args).infer(pcs, bpcs, mapping, ctx)
