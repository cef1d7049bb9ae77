import pytest

from peephole.inst import Kind, InstMapping, ParsedReplacement, free_vars
from peephole.lattice import KnownBits, ConstantRange
from peephole.parser import ParseError, parse_replacements
from peephole.printer import rule_string

ADD_TO_OR = """\
%x:i8 = var (knownBits=xxxxx0xx)
%0:i8 = add %x, 4:i8
infer %0
%1:i8 = or %x, 4:i8
result %1"""

PHI = """\
%a:i4 = var (range=[0,8)) (nonZero)
%b:i4 = var
%c:i1 = var
pc %c 1:i1
%bb = block 2
blockpc %bb 0 %c 1:i1
%0:i4 = phi %bb, %a, %b
%1:i4 = select %c, %0, %a
infer %1
result %0"""

def test_print(ctx):
    x = ctx.var(8, 'x')
    lhs = ctx.get_inst(Kind.Add, 8, [ x, ctx.const(8, 4) ])
    rhs = ctx.get_inst(Kind.Or, 8, [ x, ctx.const(8, 4) ])
    rule = ParsedReplacement(InstMapping(lhs, rhs))
    assert rule_string(rule) == '\n'.join([
        '%x:i8 = var',
        '%0:i8 = add %x, 4:i8',
        'infer %0',
        '%1:i8 = or %x, 4:i8',
        'result %1',
    ])
    assert rule_string(rule, lhs_only=True) == '%x:i8 = var\n%0:i8 = add %x, 4:i8\ninfer %0'

def test_parse(ctx):
    rule, = parse_replacements(ctx, ADD_TO_OR)
    x, = free_vars(rule.lhs)
    assert x.name == 'x' and x.width == 8
    assert x.facts.known == KnownBits.parse('xxxxx0xx')
    assert rule.lhs.kind == Kind.Add and rule.lhs.ops == (x, ctx.const(8, 4))
    assert rule.rhs is ctx.get_inst(Kind.Or, 8, [ x, ctx.const(8, 4) ])
    assert rule_string(rule) == ADD_TO_OR

def test_parse_conditions_and_phi(ctx):
    rule, = parse_replacements(ctx, PHI)
    a, b, c = sorted(free_vars(*rule.roots()), key=lambda v: v.name)
    assert a.facts.range == ConstantRange(4, 0, 8) and a.facts.non_zero
    assert rule.pcs[0].lhs is c and rule.pcs[0].rhs is ctx.const(1, 1)
    bpc, = rule.bpcs
    assert bpc.block.name == 'bb' and bpc.block.preds == 2 and bpc.pred == 0
    assert rule.rhs.kind == Kind.Phi and rule.rhs.block is bpc.block
    assert parse_replacements(ctx, rule_string(rule)) == [ rule ]

def test_untyped_constants(ctx):
    rule, = parse_replacements(ctx, """
        %x:i8 = var
        %0:i8 = add %x, 4
        %1 = ult %x, 10   ; comparisons have width 1
        pc %1 1
        infer %0
        result 4""")
    assert rule.lhs.ops[1] is ctx.const(8, 4)
    assert rule.pcs[0].lhs.width == 1
    assert rule.rhs is ctx.const(8, 4)

def test_several_rules(ctx):
    rules = parse_replacements(ctx, ADD_TO_OR + '\n\n' + ADD_TO_OR.replace('%x', '%y'))
    assert len(rules) == 2
    assert free_vars(rules[1].lhs)[0].name == 'y'

def test_printing_avoids_variable_names(ctx):
    v = ctx.var(4, '0')
    rule = ParsedReplacement(InstMapping(ctx.get_inst(Kind.Add, 4, [ v, v ]), v))
    text = rule_string(rule)
    assert '%1:i4 = add %0, %0' in text
    assert parse_replacements(ctx, text) == [ rule ]

def test_canonical_text(ctx):
    def sub_rule(a, b, res):
        return ParsedReplacement(InstMapping(ctx.get_inst(Kind.Sub, 4, [ a, b ]), res))
    x, y = ctx.var(4, 'x'), ctx.var(4, 'y')
    n3, n2 = ctx.var(4, 'newvar3'), ctx.var(4, 'newvar2')
    text = rule_string(sub_rule(x, y, x), canonical=True)
    assert text == '%v0:i4 = var\n%v1:i4 = var\n%0:i4 = sub %v0, %v1\ninfer %0\nresult %v0'
    assert rule_string(sub_rule(n3, n2, n3), canonical=True) == text
    assert rule_string(sub_rule(x, y, y), canonical=True) != text
    assert rule_string(sub_rule(x, y, x)) != rule_string(sub_rule(n3, n2, n3))

@pytest.mark.parametrize('text, line', [
    ('%x:i8 = var\n%0:i8 = add %x, %y\ninfer %0\nresult %x', 2),
    ('%x:i8 = var\n%0:i8 = frob %x\ninfer %0\nresult %x', 2),
    ('%x:i8 = var\n%y:i4 = var\n%0:i8 = add %x, %y\ninfer %0\nresult %x', 3),
    ('%x:i8 = var (knownBits=0101)\ninfer %x\nresult %x', 1),
    ('%x:i8 = var\ninfer %x\nresult 1:i4', 3),
    ('%x:i8 = var\nresult %x', 2),
    ('%x:i8 = var\ninfer %x', 2),
    ('%x = var\ninfer %x\nresult %x', 1),
])
def test_parse_errors(ctx, text, line):
    with pytest.raises(ParseError) as e:
        parse_replacements(ctx, text)
    assert f'<input>:{line}:' in str(e.value)
