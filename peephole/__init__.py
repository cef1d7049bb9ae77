from z3 import set_option

from peephole.inst import InstContext, ParsedReplacement
from peephole.parser import ParseError, parse_replacements
from peephole.printer import rule_string
from peephole.solvers import SolverError
from peephole.verify import RuleSolver

set_option(max_args=10000000, max_lines=1000000, max_depth=10000000, max_visited=1000000)
