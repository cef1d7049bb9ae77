import os
import subprocess
import tempfile
import shutil
import json

import tinysexpr

from dataclasses import dataclass, field
from pathlib import Path
from io import StringIO

from z3 import *

from peephole import util

class SolverError(Exception):
    """The solver did not answer sat or unsat (timeout, crash, not found)."""

class ExternalModel:
    """Model read from the output of an external solver.

    Evaluates only variables; variables the solver left out are zero.
    """

    def __init__(self, values: dict):
        self.values = values

    def __repr__(self):
        return repr(self.values)

    def evaluate(self, expr, model_completion=True):
        name = str(expr)
        for n in (name, f'|{name}|'):
            if n in self.values:
                return self.values[n]
        if not model_completion:
            raise SolverError(f'{expr} not in model')
        return BitVecVal(0, expr.size()) if is_bv(expr) else BoolVal(False)

def parse_model(text: str) -> ExternalModel:
    values = {}
    sexp = tinysexpr.read(StringIO(text))
    # not every solver starts its model with "model"
    if sexp and sexp[0] == 'model':
        sexp = sexp[1:]
    for d, var, _, sort, val in sexp:
        if d != 'define-fun':
            raise SolverError(f'unexpected model entry: {d}')
        match sort, val[:2]:
            case 'Bool', _:
                values[var] = BoolVal(val == 'true')
            case [ _, 'BitVec', width ], '#b':
                values[var] = BitVecVal(int(val[2:], 2), int(width))
            case [ _, 'BitVec', width ], '#x':
                values[var] = BitVecVal(int(val[2:], 16), int(width))
            case _:
                raise SolverError(f'cannot read model value {val} of sort {sort}')
    return ExternalModel(values)

# z3 prints the division operators that have no zero check under these names
_Z3_INTERNAL_OPS = {
    'bvudiv_i': 'bvudiv',
    'bvurem_i': 'bvurem',
    'bvsdiv_i': 'bvsdiv',
    'bvsrem_i': 'bvsrem',
}

def to_smtlib(theory: str, constraints) -> str:
    s = Solver()
    for c in constraints:
        s.add(simplify(c))
    body = s.to_smt2()
    for internal, op in _Z3_INTERNAL_OPS.items():
        body = body.replace(internal, op)
    return f'(set-option :produce-models true)\n(set-logic {theory})\n{body}\n(get-model)'

@dataclass(frozen=True)
class _External(util.HasDebug):
    keep_file: bool = field(kw_only=True, default=False)
    """Keep the query file passed to the external solver."""

    def _cmd(self, filename):
        return f'{self.path} ' + ' '.join(a.format(filename=filename) for a in self.args)

    def check(self, theory, constraints, timeout=None):
        query = to_smtlib(theory or 'ALL', constraints)
        with tempfile.NamedTemporaryFile(delete_on_close=False, delete=not self.keep_file, mode='w+t') as f:
            print(query, file=f)
            f.close()
            cmd = self._cmd(f.name)
            self.debug('ext_solver', query)
            self.debug('ext_solver', 'running', cmd)
            with util.timer() as elapsed:
                try:
                    p = subprocess.run(cmd, shell=True, timeout=timeout,
                                       capture_output=True, text=True)
                except subprocess.TimeoutExpired:
                    raise SolverError(f'{self.path} timed out after {timeout}s')
                time = elapsed()
        self.debug('ext_solver_io', p.stdout)
        self.debug('ext_solver_io', p.stderr)
        answer, _, rest = p.stdout.partition('\n')
        match answer.strip():
            case 'sat':
                return time, parse_model(rest)
            case 'unsat':
                return time, None
            case _:
                raise SolverError(f'{self.path} answered {p.stdout.strip()!r} {p.stderr.strip()}')

def _solver_path(path: Path):
    path = Path(os.path.expanduser(os.path.expandvars(path)))
    if path.is_file():
        return path
    elif res := shutil.which(path):
        return Path(res)
    else:
        raise SolverError(f'external solver {path} not found and not in path')

@dataclass(frozen=True)
class Binary(_External):
    path: Path
    """Path of the external solver binary (environment variables are expanded)."""

    args: list[str] = field(default_factory=lambda: [ '{filename}' ])
    """Arguments of the solver binary ({filename} is the query file)."""

    def __post_init__(self):
        object.__setattr__(self, 'path', _solver_path(self.path))

def read_solver_config(filename='solvers.json'):
    """Maps solver names to paths and arguments; solvers that are not found are left out."""
    res = {}
    with open(filename) as f:
        for name, c in json.load(f).items():
            try:
                res[name] = (_solver_path(c['path']), c.get('args', [ '{filename}' ]))
            except SolverError:
                pass
    return res

@dataclass(frozen=True)
class Config(_External):
    name: str
    """Name of the solver in the config file."""

    file: Path = Path('solvers.json')
    """Path of the external solver config file."""

    def __post_init__(self):
        cfg = read_solver_config(self.file)
        if not self.name in cfg:
            raise SolverError(f'solver {self.name} not available in {self.file}')
        path, args = cfg[self.name]
        object.__setattr__(self, 'path', path)
        object.__setattr__(self, 'args', args)

@dataclass(frozen=True)
class Z3:
    verbose: int = 0
    """Z3 verbosity level."""

    def __post_init__(self):
        if self.verbose > 0:
            set_option('verbose', self.verbose)

    def check(self, theory, constraints, timeout=None):
        set_option('sat.random_seed', 0)
        set_option('smt.random_seed', 0)
        s = SolverFor(theory) if theory else Solver()
        if timeout:
            s.set('timeout', timeout * 1000)
        s.add(constraints)
        with util.timer() as elapsed:
            res = s.check()
            time = elapsed()
        if res == unknown:
            raise SolverError(f'z3 returned unknown: {s.reason_unknown()}')
        return time, s.model() if res == sat else None

SOLVERS = Z3 | Config | Binary

@dataclass(frozen=True)
class HasSolver:
    solver: SOLVERS = field(kw_only=True, default_factory=Z3)
    """Solver to use for validity checks."""

    timeout: int | None = field(kw_only=True, default=None)
    """Timeout in seconds of a single solver query."""
