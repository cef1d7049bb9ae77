import enum

from dataclasses import dataclass, replace as dc_replace
from collections.abc import Callable, Iterable

from peephole.lattice import KnownBits, ConstantRange
from peephole.util import mask

class InstError(Exception):
    """Raised when an instruction graph invariant is violated."""

class Kind(enum.Enum):
    Var        = 'var'
    Const      = 'const'
    Phi        = 'phi'
    Add        = 'add'
    AddNSW     = 'addnsw'
    AddNUW     = 'addnuw'
    Sub        = 'sub'
    SubNSW     = 'subnsw'
    SubNUW     = 'subnuw'
    Mul        = 'mul'
    MulNSW     = 'mulnsw'
    MulNUW     = 'mulnuw'
    UDiv       = 'udiv'
    SDiv       = 'sdiv'
    URem       = 'urem'
    SRem       = 'srem'
    And        = 'and'
    Or         = 'or'
    Xor        = 'xor'
    Shl        = 'shl'
    LShr       = 'lshr'
    AShr       = 'ashr'
    Eq         = 'eq'
    Ne         = 'ne'
    Ult        = 'ult'
    Slt        = 'slt'
    Ule        = 'ule'
    Sle        = 'sle'
    Select     = 'select'
    ZExt       = 'zext'
    SExt       = 'sext'
    Trunc      = 'trunc'
    CtPop      = 'ctpop'
    BSwap      = 'bswap'
    BitReverse = 'bitreverse'
    Cttz       = 'cttz'
    Ctlz       = 'ctlz'

    def __str__(self):
        return self.value

    @property
    def is_commutative(self):
        match self:
            case Kind.Add | Kind.AddNSW | Kind.AddNUW | Kind.Mul | Kind.MulNSW | Kind.MulNUW \
               | Kind.And | Kind.Or | Kind.Xor | Kind.Eq | Kind.Ne:
                return True
            case _:
                return False

    @property
    def arity(self):
        """Number of operands, None for a variable number (phi)."""
        match self:
            case Kind.Var | Kind.Const:
                return 0
            case Kind.Phi:
                return None
            case Kind.Select:
                return 3
            case Kind.ZExt | Kind.SExt | Kind.Trunc | Kind.CtPop | Kind.BSwap \
               | Kind.BitReverse | Kind.Cttz | Kind.Ctlz:
                return 1
            case _:
                return 2

    @property
    def is_cmp(self):
        return self in (Kind.Eq, Kind.Ne, Kind.Ult, Kind.Slt, Kind.Ule, Kind.Sle)

@dataclass(frozen=True)
class VarFacts:
    """Refinement facts attached to a variable.

    The facts are assumptions during validity checking.
    They are either given with the input rule or computed
    by the precondition inference.
    """
    known: KnownBits | None = None
    range: ConstantRange | None = None
    non_zero: bool = False
    non_negative: bool = False
    negative: bool = False
    power_of_two: bool = False
    num_sign_bits: int = 1
    demanded_bits: int | None = None

    def is_empty(self):
        return (self.known is None or self.known.is_top) \
            and (self.range is None or self.range.is_full) \
            and dc_replace(self, known=None, range=None) == VarFacts()

NO_FACTS = VarFacts()

@dataclass(frozen=True)
class Block:
    name: str
    preds: int

class Inst:
    """A node of an instruction DAG.

    Instances are created by an InstContext only, which guarantees
    that two structurally equal nodes are the same object.
    Equality and hashing are therefore by identity.
    """
    __slots__ = ('kind', 'width', 'ops', 'val', 'name', 'facts', 'block')

    def __init__(self, kind: Kind, width: int, ops: tuple, val=None,
                 name=None, facts=NO_FACTS, block=None):
        self.kind  = kind
        self.width = width
        self.ops   = ops
        self.val   = val
        self.name  = name
        self.facts = facts
        self.block = block

    def __repr__(self):
        match self.kind:
            case Kind.Var:
                return f'%{self.name}:i{self.width}'
            case Kind.Const:
                return f'{self.val}:i{self.width}'
            case _:
                return f'({self.kind}:i{self.width} {" ".join(map(repr, self.ops))})'

    @property
    def is_var(self):
        return self.kind == Kind.Var

    @property
    def is_const(self):
        return self.kind == Kind.Const

    def signed_val(self):
        assert self.is_const
        return self.val - (1 << self.width) if self.val >> (self.width - 1) else self.val

def infer_width(kind: Kind, ops: tuple, width: int | None = None):
    """Result width of an instruction of the given kind over ops.

    width is the width of the original instruction, which
    is kept for the casts whose result width is not determined
    by the operands.
    """
    match kind:
        case Kind.Add | Kind.AddNSW | Kind.AddNUW | Kind.Sub | Kind.SubNSW | Kind.SubNUW \
           | Kind.Mul | Kind.MulNSW | Kind.MulNUW | Kind.UDiv | Kind.SDiv | Kind.URem \
           | Kind.SRem | Kind.And | Kind.Or | Kind.Xor | Kind.Shl | Kind.LShr | Kind.AShr \
           | Kind.CtPop | Kind.BSwap | Kind.BitReverse | Kind.Cttz | Kind.Ctlz | Kind.Phi:
            return ops[0].width
        case Kind.Eq | Kind.Ne | Kind.Ult | Kind.Slt | Kind.Ule | Kind.Sle:
            return 1
        case Kind.Select:
            return ops[1].width
        case Kind.ZExt | Kind.SExt | Kind.Trunc:
            if width is None:
                raise InstError(f'cannot infer the result width of {kind}')
            return width
        case _:
            raise InstError(f'width inference for {kind} is not implemented')

def check_operands(kind: Kind, width: int, ops: tuple):
    arity = kind.arity
    if arity is not None and len(ops) != arity:
        raise InstError(f'{kind} takes {arity} operands, got {len(ops)}')
    match kind:
        case Kind.Eq | Kind.Ne | Kind.Ult | Kind.Slt | Kind.Ule | Kind.Sle:
            ok = width == 1 and ops[0].width == ops[1].width
        case Kind.Select:
            ok = ops[0].width == 1 and ops[1].width == ops[2].width == width
        case Kind.ZExt | Kind.SExt:
            ok = ops[0].width < width
        case Kind.Trunc:
            ok = ops[0].width > width
        case Kind.BSwap:
            ok = ops[0].width == width and width % 16 == 0
        case Kind.Phi:
            ok = len(ops) > 0 and all(o.width == width for o in ops)
        case _:
            ok = all(o.width == width for o in ops)
    if not ok:
        raise InstError(f'ill-typed {kind}:i{width} with operands {ops}')

@dataclass(frozen=True)
class InstMapping:
    lhs: Inst
    rhs: Inst

@dataclass(frozen=True)
class PathCondition:
    """lhs must evaluate to the constant rhs."""
    lhs: Inst
    rhs: Inst

@dataclass(frozen=True)
class BlockPathCondition:
    """pc holds if control reaches block through predecessor pred."""
    block: Block
    pred: int
    pc: PathCondition

@dataclass(frozen=True)
class ParsedReplacement:
    mapping: InstMapping
    pcs: tuple[PathCondition, ...] = ()
    bpcs: tuple[BlockPathCondition, ...] = ()

    @property
    def lhs(self):
        return self.mapping.lhs

    @property
    def rhs(self):
        return self.mapping.rhs

    def roots(self):
        yield self.mapping.lhs
        yield self.mapping.rhs
        for pc in self.pcs:
            yield pc.lhs
            yield pc.rhs
        for bpc in self.bpcs:
            yield bpc.pc.lhs
            yield bpc.pc.rhs

    def with_mapping(self, lhs, rhs):
        return ParsedReplacement(InstMapping(lhs, rhs), self.pcs, self.bpcs)

class InstContext:
    """Owner of all instructions of a run.

    Interns instructions and hands out fresh variable names.
    """
    def __init__(self):
        self.insts    = {}
        self.blocks   = {}
        self.counters = {}

    def _intern(self, key, create: Callable[[], Inst]):
        if (res := self.insts.get(key)) is None:
            res = self.insts[key] = create()
        return res

    def const(self, width: int, value: int) -> Inst:
        value &= mask(width)
        key = (Kind.Const, width, value)
        return self._intern(key, lambda: Inst(Kind.Const, width, (), val=value))

    def var(self, width: int, name: str, facts: VarFacts = NO_FACTS) -> Inst:
        assert width > 0, 'width must be positive'
        key = (Kind.Var, width, name, facts)
        return self._intern(key, lambda: Inst(Kind.Var, width, (), name=name, facts=facts))

    def fresh_name(self, prefix: str) -> str:
        n = self.counters.get(prefix, 0)
        self.counters[prefix] = n + 1
        return f'{prefix}{n}'

    def fresh_var(self, width: int, prefix: str = 'newvar') -> Inst:
        return self.var(width, self.fresh_name(prefix))

    def block(self, name: str, preds: int) -> Block:
        if (b := self.blocks.get(name)) is None:
            b = self.blocks[name] = Block(name, preds)
        assert b.preds == preds, f'block {name} redeclared with {preds} predecessors'
        return b

    def get_inst(self, kind: Kind, width: int, ops: Iterable[Inst], block: Block | None = None) -> Inst:
        assert kind not in (Kind.Var, Kind.Const), 'use var() and const() for leaves'
        ops = tuple(ops)
        assert (kind == Kind.Phi) == (block is not None), 'exactly the phi carries a block'
        check_operands(kind, width, ops)
        key = (kind, width, ops, block)
        return self._intern(key, lambda: Inst(kind, width, ops, block=block))

    def with_facts(self, var: Inst, facts: VarFacts) -> Inst:
        assert var.is_var
        return self.var(var.width, var.name, facts)

    def replace(self, root: Inst, subst: dict[Inst, Inst], memo: dict | None = None) -> Inst:
        """Clones root with every node in subst replaced by its image.

        Shared sub-DAGs are visited once per memo. Unchanged
        sub-DAGs are returned as they are.
        """
        memo = {} if memo is None else memo
        def rec(i):
            if (res := memo.get(i)) is not None:
                return res
            if i in subst:
                res = subst[i]
                if i.is_const and res.width != i.width:
                    raise InstError(f'cannot replace constant {i!r} by {res!r} of different width')
            elif i.ops:
                ops = tuple(rec(o) for o in i.ops)
                if all(a is b for a, b in zip(ops, i.ops)):
                    res = i
                else:
                    width = infer_width(i.kind, ops, i.width)
                    res = self.get_inst(i.kind, width, ops, block=i.block)
            else:
                res = i
            memo[i] = res
            return res
        return rec(root)

    def replace_rule(self, rule: ParsedReplacement, subst: dict[Inst, Inst]) -> ParsedReplacement:
        memo = {}
        r = lambda i: self.replace(i, subst, memo)
        pcs  = tuple(PathCondition(r(pc.lhs), r(pc.rhs)) for pc in rule.pcs)
        bpcs = tuple(BlockPathCondition(b.block, b.pred, PathCondition(r(b.pc.lhs), r(b.pc.rhs)))
                     for b in rule.bpcs)
        return ParsedReplacement(InstMapping(r(rule.lhs), r(rule.rhs)), pcs, bpcs)

    def replace_consts(self, root: Inst, values: dict[Inst, int], memo: dict | None = None) -> Inst:
        return self.replace(root, { i: self.const(i.width, v) for i, v in values.items() }, memo)

def collect_insts(*roots: Inst) -> dict[Inst, None]:
    """All distinct nodes reachable from roots, in depth-first pre-order.

    The result is a dict used as an ordered set.
    """
    res = {}
    stack = list(reversed(roots))
    while stack:
        i = stack.pop()
        if i in res:
            continue
        res[i] = None
        stack.extend(o for o in reversed(i.ops) if o not in res)
    return res

def postorder(*roots: Inst) -> list[Inst]:
    """All distinct nodes reachable from roots, operands before users."""
    res  = []
    seen = set()
    stack = [ (r, False) for r in reversed(roots) ]
    while stack:
        i, expanded = stack.pop()
        if expanded:
            res.append(i)
        elif not i in seen:
            seen.add(i)
            stack.append((i, True))
            stack.extend((o, False) for o in reversed(i.ops) if not o in seen)
    return res

def find_insts(pred: Callable[[Inst], bool], *roots: Inst) -> list[Inst]:
    return [ i for i in collect_insts(*roots) if pred(i) ]

def free_vars(*roots: Inst) -> list[Inst]:
    return find_insts(lambda i: i.is_var, *roots)

def constants(*roots: Inst) -> list[Inst]:
    return find_insts(lambda i: i.is_const, *roots)

HOLE_PREFIX = 'reservedconst_'

def is_hole(i: Inst):
    return i.is_var and i.name.startswith(HOLE_PREFIX)

def holes(*roots: Inst) -> list[Inst]:
    return find_insts(is_hole, *roots)

def rule_vars(rule: ParsedReplacement) -> list[Inst]:
    return free_vars(*rule.roots())

def attach_facts(ctx: InstContext, rule: ParsedReplacement,
                 known: dict[Inst, KnownBits] | None = None,
                 ranges: dict[Inst, ConstantRange] | None = None) -> ParsedReplacement:
    """Narrows the facts of the rule's variables and rebuilds the rule."""
    known  = known or {}
    ranges = ranges or {}
    subst  = {}
    for v in known.keys() | ranges.keys():
        facts = v.facts
        if (kb := known.get(v)) is not None:
            facts = dc_replace(facts, known=kb.meet(facts.known) if facts.known else kb)
        if (cr := ranges.get(v)) is not None:
            facts = dc_replace(facts, range=cr)
        subst[v] = ctx.with_facts(v, facts)
    return ctx.replace_rule(rule, subst)
