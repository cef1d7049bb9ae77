from dataclasses import dataclass
from collections.abc import Iterator, Sequence

from peephole import util
from peephole.inst import Inst, InstContext, Kind, HOLE_PREFIX

# placeholder for a constant that is yet to be synthesized
HOLE = 'hole'

BINARY_OPS = (
    Kind.Add, Kind.Sub, Kind.Mul,
    Kind.And, Kind.Or, Kind.Xor,
    Kind.Shl, Kind.LShr, Kind.AShr,
    Kind.UDiv, Kind.URem,
)

UNARY_OPS = (
    Kind.CtPop, Kind.BitReverse,
)

@dataclass(frozen=True)
class EnumerativeSynthesis(util.HasDebug):
    """Exhaustive enumeration of expressions over a fixed grammar.

    Expressions are first enumerated as shapes: a shape is either an
    available leaf, the HOLE placeholder, or a tuple of an operator
    and the operand shapes. Shapes are turned into instructions when
    they are emitted, and each HOLE becomes a fresh constant variable.
    """

    binary_ops: Sequence[Kind] = BINARY_OPS
    """Binary operators of the grammar."""

    unary_ops: Sequence[Kind] = UNARY_OPS
    """Unary operators of the grammar."""

    use_holes: bool = True
    """Allow synthesized constants as leaves."""

    def _shapes(self, n, shapes):
        """Shapes with exactly n operators."""
        seen = set()
        def emit(s):
            if not s in seen:
                seen.add(s)
                return True
            return False

        for op in self.unary_ops:
            for s in shapes[n - 1]:
                if s is not HOLE and emit((op, s)):
                    yield (op, s)
        for op in self.binary_ops:
            for i in range(n):
                for k, l in enumerate(shapes[i]):
                    for m, r in enumerate(shapes[n - 1 - i]):
                        if l is HOLE and r is HOLE:
                            continue
                        # only one order of the operands of commutative operators
                        if op.is_commutative and (i, k) > (n - 1 - i, m):
                            continue
                        if emit((op, l, r)):
                            yield (op, l, r)

    def _materialize(self, ctx: InstContext, width: int, shape):
        if shape is HOLE:
            return ctx.fresh_var(width, HOLE_PREFIX)
        elif isinstance(shape, Inst):
            return shape
        op, *args = shape
        return ctx.get_inst(op, width, [ self._materialize(ctx, width, a) for a in args ])

    def generate(self, ctx: InstContext, width: int, leaves: Sequence[Inst],
                 max_insts: int) -> Iterator[Inst]:
        """Lazily generates all expressions of the given width.

        Attributes:
        ctx: The context the expressions are created in.
        width: Width of the expressions.
        leaves: Variables the expressions may use. Leaves of a
            different width are ignored.
        max_insts: Maximum number of operators in an expression.
        """
        leaves = [ l for l in dict.fromkeys(leaves) if l.width == width ]
        shapes = [ leaves + ([ HOLE ] if self.use_holes else []) ]
        n_exprs = 0
        for n in range(max_insts + 1):
            if n > 0:
                shapes.append(list(self._shapes(n, shapes)))
            for s in shapes[n]:
                n_exprs += 1
                yield self._materialize(ctx, width, s)
            self.debug('enum', f'{len(shapes[n])} expressions with {n} instructions')
        self.debug('enum', f'{n_exprs} expressions in total')
