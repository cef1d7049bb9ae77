import pytest

from peephole.inst import InstContext
from peephole.solvers import Binary
from peephole.verify import RuleSolver

@pytest.fixture
def ctx():
    return InstContext()

@pytest.fixture
def rule_solver():
    return RuleSolver()

@pytest.fixture
def unknown_solver(tmp_path):
    """A rule solver whose every query is answered with unknown."""
    script = tmp_path / 'unknown-solver'
    script.write_text('#!/bin/sh\necho unknown\n')
    script.chmod(0o755)
    return RuleSolver(solver=Binary(path=script))
