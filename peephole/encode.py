"""Translation of instruction DAGs into Z3 bit-vector formulas.

Every instruction is a bit-vector expression of the instruction's width.
Comparisons yield 1-bit vectors. Undefined behavior (division by zero,
oversized shifts, overflow of nsw/nuw arithmetic) is collected per
instruction: an instruction is defined if none of the instructions it
depends on triggers undefined behavior.
"""

from dataclasses import dataclass

from z3 import *

from peephole.inst import Inst, Kind, Block, InstError, PathCondition, \
    BlockPathCondition, InstMapping, collect_insts, postorder

def _bool_to_bv(b):
    return If(b, BitVecVal(1, 1), BitVecVal(0, 1))

def _ctpop(x):
    w = x.size()
    return Sum([ ZeroExt(w - 1, Extract(i, i, x)) for i in range(w) ]) if w > 1 else x

def _bswap(x):
    w = x.size()
    return Concat([ Extract(i + 7, i, x) for i in range(0, w, 8) ])

def _bitreverse(x):
    w = x.size()
    return Concat([ Extract(i, i, x) for i in range(w) ]) if w > 1 else x

def _cttz(x):
    w = x.size()
    res = BitVecVal(w, w)
    for i in reversed(range(w)):
        res = If(Extract(i, i, x) == 1, BitVecVal(i, w), res)
    return res

def _ctlz(x):
    w = x.size()
    res = BitVecVal(w, w)
    for i in range(w):
        res = If(Extract(i, i, x) == 1, BitVecVal(w - 1 - i, w), res)
    return res

def block_sort(block: Block):
    return BitVecSort(max(1, (block.preds - 1).bit_length()))

class Encoder:
    def __init__(self):
        self.exprs  = {}
        self.ub     = {}
        self.vars   = {}
        self.blocks = {}

    def block_var(self, block: Block):
        if (res := self.blocks.get(block)) is None:
            res = self.blocks[block] = Const(f'blockpred_{block.name}', block_sort(block))
        return res

    def var(self, i: Inst):
        if (res := self.vars.get(i)) is None:
            res = self.vars[i] = BitVec(i.name, i.width)
        return res

    def __call__(self, root: Inst):
        for i in postorder(root):
            if not i in self.exprs:
                self.exprs[i], self.ub[i] = self._encode(i, [ self.exprs[o] for o in i.ops ])
        return self.exprs[root]

    def defined(self, *roots: Inst):
        for r in roots:
            self(r)
        return [ c for i in collect_insts(*roots) for c in self.ub[i] ]

    def _encode(self, i: Inst, a: list):
        w = i.width
        zero = BitVecVal(0, w)
        match i.kind:
            case Kind.Var:
                return self.var(i), []
            case Kind.Const:
                return BitVecVal(i.val, w), []
            case Kind.Phi:
                sel = self.block_var(i.block)
                res = a[-1]
                for n in reversed(range(len(a) - 1)):
                    res = If(sel == n, a[n], res)
                return res, []
            case Kind.Add:
                return a[0] + a[1], []
            case Kind.AddNSW:
                return a[0] + a[1], [ BVAddNoOverflow(a[0], a[1], True), BVAddNoUnderflow(a[0], a[1]) ]
            case Kind.AddNUW:
                return a[0] + a[1], [ BVAddNoOverflow(a[0], a[1], False) ]
            case Kind.Sub:
                return a[0] - a[1], []
            case Kind.SubNSW:
                return a[0] - a[1], [ BVSubNoOverflow(a[0], a[1]), BVSubNoUnderflow(a[0], a[1], True) ]
            case Kind.SubNUW:
                return a[0] - a[1], [ BVSubNoUnderflow(a[0], a[1], False) ]
            case Kind.Mul:
                return a[0] * a[1], []
            case Kind.MulNSW:
                return a[0] * a[1], [ BVMulNoOverflow(a[0], a[1], True), BVMulNoUnderflow(a[0], a[1]) ]
            case Kind.MulNUW:
                return a[0] * a[1], [ BVMulNoOverflow(a[0], a[1], False) ]
            case Kind.UDiv:
                return UDiv(a[0], a[1]), [ a[1] != zero ]
            case Kind.URem:
                return URem(a[0], a[1]), [ a[1] != zero ]
            case Kind.SDiv | Kind.SRem:
                int_min = BitVecVal(1 << (w - 1), w)
                no_ovfl = Not(And(a[0] == int_min, a[1] == BitVecVal(-1, w)))
                res = a[0] / a[1] if i.kind == Kind.SDiv else SRem(a[0], a[1])
                return res, [ a[1] != zero, no_ovfl ]
            case Kind.And:
                return a[0] & a[1], []
            case Kind.Or:
                return a[0] | a[1], []
            case Kind.Xor:
                return a[0] ^ a[1], []
            case Kind.Shl:
                return a[0] << a[1], [ ULT(a[1], w) ]
            case Kind.LShr:
                return LShR(a[0], a[1]), [ ULT(a[1], w) ]
            case Kind.AShr:
                return a[0] >> a[1], [ ULT(a[1], w) ]
            case Kind.Eq:
                return _bool_to_bv(a[0] == a[1]), []
            case Kind.Ne:
                return _bool_to_bv(a[0] != a[1]), []
            case Kind.Ult:
                return _bool_to_bv(ULT(a[0], a[1])), []
            case Kind.Slt:
                return _bool_to_bv(a[0] < a[1]), []
            case Kind.Ule:
                return _bool_to_bv(ULE(a[0], a[1])), []
            case Kind.Sle:
                return _bool_to_bv(a[0] <= a[1]), []
            case Kind.Select:
                return If(a[0] == 1, a[1], a[2]), []
            case Kind.ZExt:
                return ZeroExt(w - a[0].size(), a[0]), []
            case Kind.SExt:
                return SignExt(w - a[0].size(), a[0]), []
            case Kind.Trunc:
                return Extract(w - 1, 0, a[0]), []
            case Kind.CtPop:
                return _ctpop(a[0]), []
            case Kind.BSwap:
                return _bswap(a[0]), []
            case Kind.BitReverse:
                return _bitreverse(a[0]), []
            case Kind.Cttz:
                return _cttz(a[0]), []
            case Kind.Ctlz:
                return _ctlz(a[0]), []
            case _:
                raise InstError(f'no semantics for {i.kind}')

    def facts(self):
        """Constraints from the facts of all variables and blocks seen so far."""
        res = []
        for i, x in self.vars.items():
            res += var_fact_constraints(i, x)
        for b, sel in self.blocks.items():
            if b.preds < 1 << sel.size():
                res.append(ULT(sel, b.preds))
        return res

def var_fact_constraints(i: Inst, x):
    f = i.facts
    w = i.width
    res = []
    if f.known:
        res += f.known.constraint(x)
    if f.range:
        res += f.range.constraint(x)
    if f.non_zero:
        res.append(x != 0)
    if f.non_negative:
        res.append(x >= 0)
    if f.negative:
        res.append(x < 0)
    if f.power_of_two:
        res.append(And(x != 0, x & (x - 1) == 0))
    if f.num_sign_bits > 1:
        top = x >> (w - min(f.num_sign_bits, w))
        res.append(Or(top == 0, top == BitVecVal(-1, w)))
    return res

@dataclass(frozen=True)
class RuleFormula:
    """Validity of a rule as Z3 formulas.

    The rule is valid iff premise implies goal for all inputs.

    Attributes:
    premise: Path conditions, block path conditions, variable facts
        and definedness of the left-hand side.
    goal: The right-hand side is defined and equal to the left-hand side.
    vars: Z3 constants of the rule's variables.
    blocks: Z3 constants selecting the incoming edge of each phi block.
    """
    premise: BoolRef
    goal: BoolRef
    lhs: BitVecRef
    rhs: BitVecRef
    vars: dict[Inst, BitVecRef]
    blocks: dict[Block, BitVecRef]

    def inputs(self):
        return list(self.vars.values()) + list(self.blocks.values())

    def counterexample(self):
        return And(self.premise, Not(self.goal))

def encode_rule(pcs: tuple[PathCondition, ...], bpcs: tuple[BlockPathCondition, ...],
                mapping: InstMapping) -> RuleFormula:
    enc = Encoder()
    lhs = enc(mapping.lhs)
    rhs = enc(mapping.rhs)
    premise = enc.defined(mapping.lhs)
    for pc in pcs:
        premise += enc.defined(pc.lhs)
        premise.append(enc(pc.lhs) == enc(pc.rhs))
    for bpc in bpcs:
        sel = enc.block_var(bpc.block)
        cond = enc(bpc.pc.lhs) == enc(bpc.pc.rhs)
        premise.append(Implies(sel == bpc.pred, And(enc.defined(bpc.pc.lhs) + [ cond ])))
    premise += enc.facts()
    goal = And(enc.defined(mapping.rhs) + [ lhs == rhs ])
    return RuleFormula(
        premise=And(premise),
        goal=goal,
        lhs=lhs,
        rhs=rhs,
        vars=dict(enc.vars),
        blocks=dict(enc.blocks),
    )
