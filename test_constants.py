from peephole.constants import ConstantSynthesis
from peephole.inst import Kind, InstMapping, PathCondition

def test_synthesizes_shift_amount(ctx, rule_solver):
    x = ctx.var(4, 'x')
    h = ctx.fresh_var(4, 'reservedconst_')
    lhs = ctx.get_inst(Kind.Mul, 4, [ x, ctx.const(4, 2) ])
    rhs = ctx.get_inst(Kind.Shl, 4, [ x, h ])
    res = ConstantSynthesis(rule_solver).synthesize([], [], InstMapping(lhs, rhs), [ h ], ctx)
    assert res == { h: 1 }
    rule = InstMapping(lhs, ctx.replace_consts(rhs, res))
    assert rule_solver.is_valid([], [], rule, ctx)[0]

def test_synthesis_failure(ctx, rule_solver):
    x = ctx.var(4, 'x')
    h = ctx.fresh_var(4, 'reservedconst_')
    lhs = ctx.get_inst(Kind.Mul, 4, [ x, x ])
    rhs = ctx.get_inst(Kind.Add, 4, [ x, h ])
    res = ConstantSynthesis(rule_solver).synthesize([], [], InstMapping(lhs, rhs), [ h ], ctx)
    assert res == {}

def test_synthesis_under_path_condition(ctx, rule_solver):
    x = ctx.var(4, 'x')
    h = ctx.fresh_var(4, 'reservedconst_')
    lhs = ctx.get_inst(Kind.And, 4, [ x, ctx.const(4, 3) ])
    is_small = ctx.get_inst(Kind.Ult, 1, [ x, ctx.const(4, 4) ])
    pcs = [ PathCondition(is_small, ctx.const(1, 1)) ]
    rhs = ctx.get_inst(Kind.Or, 4, [ x, h ])
    res = ConstantSynthesis(rule_solver).synthesize(pcs, [], InstMapping(lhs, rhs), [ h ], ctx)
    assert res == { h: 0 }

def test_degenerate_constants_are_rejected(ctx, rule_solver):
    x = ctx.var(4, 'x')
    h = ctx.fresh_var(4, 'reservedconst_')
    lhs = ctx.get_inst(Kind.Add, 4, [ x, ctx.const(4, 4) ])
    rhs = ctx.get_inst(Kind.Add, 4, [ x, h ])
    cs = ConstantSynthesis(rule_solver)
    mapping = InstMapping(lhs, rhs)
    # the only solution turns the rule into a no-op
    assert cs.synthesize([], [], mapping, [ h ], ctx, avoid_nops=True) == {}
    assert cs.synthesize([], [], mapping, [ h ], ctx, avoid_nops=False) == { h: 4 }

def test_no_holes(ctx, rule_solver):
    x = ctx.var(4, 'x')
    mapping = InstMapping(x, x)
    assert ConstantSynthesis(rule_solver).synthesize([], [], mapping, [], ctx) == {}
