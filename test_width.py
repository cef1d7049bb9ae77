import pytest

from peephole.inst import InstError, Kind, InstMapping, PathCondition, ParsedReplacement, \
    collect_insts, free_vars, infer_width
from peephole.width import WidthError, generalize_width

def _rule(ctx):
    x = ctx.var(8, 'x')
    a = ctx.get_inst(Kind.And, 8, [ x, x ])
    lhs = ctx.get_inst(Kind.Sub, 8, [ ctx.get_inst(Kind.Or, 8, [ a, x ]), x ])
    return ParsedReplacement(InstMapping(lhs, ctx.get_inst(Kind.Xor, 8, [ x, x ])))

def test_widths_are_consistent(ctx):
    res = generalize_width(_rule(ctx), ctx)
    assert len(res) == 63
    for w, r in zip(range(1, 64), res):
        var, = free_vars(r.lhs, r.rhs)
        assert var.width == w and var.name == 'x'
        for i in collect_insts(r.lhs, r.rhs):
            if i.ops:
                assert i.width == infer_width(i.kind, i.ops)
        assert r.lhs.width == r.rhs.width == w

def test_comparisons(ctx):
    x = ctx.var(8, 'x')
    lhs = ctx.get_inst(Kind.Ult, 1, [ x, x ])
    rhs = ctx.get_inst(Kind.Ne, 1, [ x, x ])
    res = generalize_width(ParsedReplacement(InstMapping(lhs, rhs)), ctx, [ 3, 16 ])
    assert [ r.lhs.width for r in res ] == [ 1, 1 ]
    assert [ r.lhs.ops[0].width for r in res ] == [ 3, 16 ]

def test_original_width_is_reproduced(ctx):
    rule = _rule(ctx)
    res, = generalize_width(rule, ctx, [ 8 ])
    assert res.lhs is rule.lhs and res.rhs is rule.rhs

def test_multiple_variables(ctx):
    x, y = ctx.var(8, 'x'), ctx.var(8, 'y')
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.Add, 8, [ x, y ]), x))
    with pytest.raises(WidthError):
        generalize_width(rule, ctx)

def test_path_conditions(ctx):
    x = ctx.var(8, 'x')
    c = ctx.get_inst(Kind.Eq, 1, [ x, x ])
    pc = PathCondition(c, ctx.const(1, 1))
    rule = ParsedReplacement(InstMapping(x, x), (pc,))
    with pytest.raises(WidthError):
        generalize_width(rule, ctx)

def test_constants_are_fatal(ctx):
    x = ctx.var(8, 'x')
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.Add, 8, [ x, ctx.const(8, 0) ]), x))
    with pytest.raises(InstError):
        generalize_width(rule, ctx)

def test_casts_are_fatal(ctx):
    x = ctx.var(8, 'x')
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.Trunc, 4, [ x ]),
                                         ctx.get_inst(Kind.Trunc, 4, [ x ])))
    with pytest.raises(InstError):
        generalize_width(rule, ctx)
