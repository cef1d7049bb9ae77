"""Re-instantiates a rule with one variable at other bit-widths.

The rule is rebuilt bottom up: the variable gets the target width and
every other node gets the width its kind infers from its operands.
The resulting rules are not verified.
"""

from collections.abc import Iterable

from peephole.inst import Inst, InstContext, InstError, InstMapping, ParsedReplacement, \
    free_vars, infer_width, postorder

class WidthError(Exception):
    pass

def transform_inst_to_width(ctx: InstContext, root: Inst, widths: dict[Inst, int],
                            memo: dict[Inst, Inst]):
    for i in postorder(root):
        if i in memo:
            continue
        if i.is_var:
            memo[i] = ctx.var(widths[i], i.name)
        elif i.is_const:
            raise InstError(f'cannot change the width of constant {i!r}')
        else:
            ops = [ memo[o] for o in i.ops ]
            memo[i] = ctx.get_inst(i.kind, infer_width(i.kind, ops), ops, block=i.block)
    return memo[root]

def generalize_width(rule: ParsedReplacement, ctx: InstContext,
                     widths: Iterable[int] = range(1, 64)) -> list[ParsedReplacement]:
    """The rule at each of the given widths.

    Raises WidthError if the rule has path conditions or not exactly
    one variable, InstError if it contains a constant or an instruction
    whose width cannot be inferred.
    """
    vars = free_vars(rule.lhs, rule.rhs)
    if len(vars) != 1:
        raise WidthError(f'width generalization needs exactly one variable, got {len(vars)}')
    if rule.pcs or rule.bpcs:
        raise WidthError('width generalization of rules with path conditions is not supported')
    var, = vars
    res = []
    for w in widths:
        memo = {}
        lhs = transform_inst_to_width(ctx, rule.lhs, { var: w }, memo)
        rhs = transform_inst_to_width(ctx, rule.rhs, { var: w }, memo)
        res.append(ParsedReplacement(InstMapping(lhs, rhs)))
    return res
