import pytest

from peephole.inst import Kind, InstMapping, PathCondition, ParsedReplacement, collect_insts
from peephole.printer import rule_string
from peephole.reduce import Reducer, InvalidRuleError
from peephole.solvers import SolverError

def _size(rule):
    return len(collect_insts(*rule.roots()))

def _shared_product(ctx):
    x, y, z = ctx.var(4, 'x'), ctx.var(4, 'y'), ctx.var(4, 'z')
    p = ctx.get_inst(Kind.Mul, 4, [ x, y ])
    lhs = ctx.get_inst(Kind.Add, 4, [ ctx.get_inst(Kind.Add, 4, [ p, ctx.const(4, 0) ]), z ])
    rhs = ctx.get_inst(Kind.Add, 4, [ p, z ])
    return ParsedReplacement(InstMapping(lhs, rhs))

def test_trivial_rule_is_terminal(ctx, rule_solver):
    x = ctx.var(4, 'x')
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.And, 4, [ x, x ]), x))
    # only the root is an instruction
    assert Reducer(rule_solver).reduce_all(rule, ctx) == []

def test_reduction(ctx, rule_solver):
    rule = _shared_product(ctx)
    res = Reducer(rule_solver).reduce_all(rule, ctx)
    assert len(res) == 1
    r = res[0]
    assert _size(r) < _size(rule)
    assert not any(i.kind == Kind.Mul for i in collect_insts(*r.roots()))
    assert r.rhs.ops[0].name.startswith('newvar')

def test_reduced_rules_are_valid(ctx, rule_solver):
    x, y = ctx.var(4, 'x'), ctx.var(4, 'y')
    a = ctx.get_inst(Kind.And, 4, [ x, y ])
    o = ctx.get_inst(Kind.Or, 4, [ x, y ])
    lhs = ctx.get_inst(Kind.Sub, 4, [ ctx.get_inst(Kind.Add, 4, [ a, o ]), a ])
    c = ctx.get_inst(Kind.Ult, 1, [ x, ctx.const(4, 8) ])
    rule = ParsedReplacement(InstMapping(lhs, o), (PathCondition(c, ctx.const(1, 1)),))
    reducer = Reducer(rule_solver, all_results=True)
    res = reducer.reduce(rule, ctx)
    assert res
    for r in res:
        assert rule_solver.is_valid_rule(r, ctx)[0]
        assert _size(r) <= _size(rule)
    texts = [ rule_string(r) for r in res ]
    assert len(texts) == len(set(texts))
    assert [ len(t) for t in texts ] == sorted(len(t) for t in texts)
    assert reducer.reduce(rule, ctx) != []
    assert len(Reducer(rule_solver).reduce(rule, ctx)) == 1

def test_invalid_rule_is_rejected(ctx, rule_solver):
    x = ctx.var(4, 'x')
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.Add, 4, [ x, ctx.const(4, 1) ]), x))
    with pytest.raises(InvalidRuleError):
        Reducer(rule_solver).reduce(rule, ctx)

def test_elision_order_does_not_matter(ctx, rule_solver):
    x, y, z, w = [ ctx.var(4, n) for n in 'xyzw' ]
    p = ctx.get_inst(Kind.Mul, 4, [ x, y ])
    q = ctx.get_inst(Kind.Mul, 4, [ z, w ])
    s = ctx.get_inst(Kind.Add, 4, [ p, q ])
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.Add, 4, [ s, ctx.const(4, 0) ]), s))
    res = Reducer(rule_solver, all_results=True).reduce(rule, ctx)
    # p elided, q elided, both elided
    assert len(res) == 3
    texts = [ rule_string(r, canonical=True) for r in res ]
    assert len(set(texts)) == 3
    assert not any(i.kind == Kind.Mul for i in collect_insts(*res[0].roots()))

def test_solver_errors_propagate(ctx, unknown_solver):
    rule = _shared_product(ctx)
    with pytest.raises(SolverError):
        Reducer(unknown_solver).reduce(rule, ctx)
