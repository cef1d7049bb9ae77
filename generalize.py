import sys
import tyro

from dataclasses import dataclass, field

from peephole import util
from peephole.inst import InstContext, InstError, ParsedReplacement
from peephole.parser import ParseError, parse_replacements
from peephole.printer import rule_string
from peephole.reduce import Reducer, InvalidRuleError
from peephole.solvers import SOLVERS, Z3, SolverError
from peephole.symbolize import SymbolizeConstants, infer_and_fix
from peephole.verify import RuleSolver
from peephole.width import WidthError, generalize_width

@dataclass(frozen=True)
class Settings:
    """Generalizes peephole rewrite rules."""

    input: tyro.conf.Positional[str] = '-'
    """File with the rules to generalize, - for standard input."""

    reduce: bool = False
    """Replace instructions by variables as long as the rule stays valid."""

    reduce_all_results: bool = False
    """Print all reduced rules instead of the shortest one."""

    symbolize: bool = False
    """Replace concrete constants by symbolic ones."""

    num_insts: int = 1
    """Number of instructions to synthesize for a symbolic constant."""

    no_dataflow: bool = False
    """Do not generate rules with dataflow preconditions."""

    num_results: int = 5
    """Maximum number of conditional rules printed per input rule."""

    fixit: bool = False
    """Turn an invalid rule into valid ones by inferring preconditions."""

    generalize_width: bool = False
    """Re-instantiate a rule with one variable at the widths 1 to 63."""

    solver: SOLVERS = Z3()
    """The solver to check rules with."""

    timeout: int | None = None
    """Timeout in seconds of a single solver query."""

    debug: util.Debug = field(default_factory=util.Debug)
    """Debug output to standard error."""

    def read(self):
        if self.input == '-':
            return sys.stdin.read(), '<stdin>'
        with open(self.input) as f:
            return f.read(), self.input

    def process(self, rule: ParsedReplacement, ctx: InstContext, rule_solver: RuleSolver):
        results = []
        if self.fixit:
            results += infer_and_fix(rule, ctx, rule_solver, debug=self.debug)
        if self.reduce:
            reducer = Reducer(rule_solver, all_results=self.reduce_all_results, debug=self.debug)
            results += reducer.reduce(rule, ctx)
        if self.symbolize:
            sym = SymbolizeConstants(rule_solver,
                                     num_insts=self.num_insts,
                                     no_dataflow=self.no_dataflow,
                                     num_results=self.num_results,
                                     debug=self.debug)
            results += sym.results(rule, ctx)
        if self.generalize_width:
            results += generalize_width(rule, ctx)
        return results

    def exec(self):
        try:
            text, name = self.read()
        except OSError as e:
            print(f'error: {e}', file=sys.stderr)
            return 1

        ctx = InstContext()
        try:
            rules = parse_replacements(ctx, text, name)
        except ParseError as e:
            print(f'error: {e}', file=sys.stderr)
            return 1

        rule_solver = RuleSolver(solver=self.solver, timeout=self.timeout, debug=self.debug)
        for n, rule in enumerate(rules):
            try:
                results = self.process(rule, ctx, rule_solver)
            except (InvalidRuleError, WidthError, InstError, SolverError) as e:
                print(f'error in rule {n}: {e}', file=sys.stderr)
                continue
            for r in results:
                print(rule_string(r))
                print()
        return 0

def main():
    args = tyro.cli(Settings)
    sys.exit(args.exec())

if __name__ == "__main__":
    main()
