import re

from dataclasses import replace

from peephole.inst import InstContext, Inst, Kind, VarFacts, InstError, InstMapping, \
    PathCondition, BlockPathCondition, ParsedReplacement, infer_width
from peephole.lattice import KnownBits, ConstantRange
from peephole.util import mask

class ParseError(Exception):
    pass

_OPS = { k.value: k for k in Kind if not k in (Kind.Var, Kind.Const) }

_DEF   = re.compile(r'%([\w.]+)(?::i(\d+))?\s*=\s*(\w+)\s*(.*)')
_CONST = re.compile(r'(-?\d+)(?::i(\d+))?')
_ATTR  = re.compile(r'\((knownBits|range|signBits|demandedBits)=(\S*?)\)(?=\s|$)'
                    r'|\((nonNegative|negative|nonZero|powerOfTwo)\)')
_RANGE = re.compile(r'\[(-?\d+),(-?\d+)\)')

def _parse_facts(width, text):
    facts = VarFacts()
    pos = 0
    for m in _ATTR.finditer(text):
        if text[pos:m.start()].strip():
            raise ValueError(f'unexpected {text[pos:m.start()].strip()!r}')
        pos = m.end()
        match m.group(1) or m.group(3), m.group(2):
            case 'knownBits', v:
                kb = KnownBits.parse(v)
                if kb.width != width:
                    raise ValueError(f'knownBits has {kb.width} bits, expected {width}')
                facts = replace(facts, known=kb)
            case 'range', v:
                if not (r := _RANGE.fullmatch(v)):
                    raise ValueError(f'invalid range {v}')
                lower, upper = int(r[1]) & mask(width), int(r[2]) & mask(width)
                if lower == upper and not lower in (0, mask(width)):
                    raise ValueError(f'invalid range {v}')
                facts = replace(facts, range=ConstantRange(width, lower, upper))
            case 'signBits', v:
                facts = replace(facts, num_sign_bits=int(v))
            case 'demandedBits', v:
                facts = replace(facts, demanded_bits=int(v, 2))
            case 'nonNegative', _:
                facts = replace(facts, non_negative=True)
            case 'negative', _:
                facts = replace(facts, negative=True)
            case 'nonZero', _:
                facts = replace(facts, non_zero=True)
            case 'powerOfTwo', _:
                facts = replace(facts, power_of_two=True)
    if text[pos:].strip():
        raise ValueError(f'unexpected {text[pos:].strip()!r}')
    return facts

class _Parser:
    def __init__(self, ctx: InstContext, filename: str):
        self.ctx = ctx
        self.filename = filename
        self.line_no = 0
        self.reset()

    def reset(self):
        self.names  = {}
        self.blocks = {}
        self.pcs    = []
        self.bpcs   = []
        self.lhs    = None

    def error(self, msg):
        raise ParseError(f'{self.filename}:{self.line_no}: {msg}')

    def is_typed(self, tok):
        return tok.startswith('%') or ':i' in tok

    def operand(self, tok, width=None) -> Inst:
        if tok.startswith('%'):
            if not (i := self.names.get(tok[1:])):
                self.error(f'unknown value {tok}')
            if width is not None and i.width != width:
                self.error(f'{tok} has width {i.width}, expected {width}')
            return i
        if not (m := _CONST.fullmatch(tok)):
            self.error(f'invalid operand {tok!r}')
        w = int(m[2]) if m[2] else width
        if w is None:
            self.error(f'cannot infer the width of {tok}')
        return self.ctx.const(w, int(m[1]))

    def block(self, tok):
        if not tok.startswith('%') or not (b := self.blocks.get(tok[1:])):
            self.error(f'unknown block {tok}')
        return b

    def operands(self, kind, width, toks):
        typed = [ self.operand(t) for t in toks if self.is_typed(t) ]
        match kind:
            case Kind.Select:
                vals = [ self.operand(t) for t in toks[1:] if self.is_typed(t) ]
                widths = [ 1 ] + [ width or (vals[0].width if vals else None) ] * 2
            case Kind.ZExt | Kind.SExt | Kind.Trunc:
                widths = [ None ]
            case _ if kind.is_cmp:
                widths = [ typed[0].width if typed else None ] * len(toks)
            case _:
                widths = [ width or (typed[0].width if typed else None) ] * len(toks)
        if len(widths) != len(toks):
            self.error(f'{kind} takes {len(widths)} operands, got {len(toks)}')
        return [ self.operand(t, None if self.is_typed(t) else w) for t, w in zip(toks, widths) ]

    def define(self, name, width, op, rest):
        if name in self.names or name in self.blocks:
            self.error(f'%{name} is already defined')
        if op == 'block':
            if not rest.strip().isdigit():
                self.error(f'invalid number of predecessors {rest!r}')
            if (b := self.ctx.blocks.get(name)) and b.preds != int(rest):
                self.error(f'block %{name} was declared with {b.preds} predecessors')
            self.blocks[name] = self.ctx.block(name, int(rest))
            return
        if width is None and op == 'var':
            self.error('variables need a width')
        if op == 'var':
            try:
                facts = _parse_facts(width, rest)
            except ValueError as e:
                self.error(str(e))
            self.names[name] = self.ctx.var(width, name, facts)
            return
        if not (kind := _OPS.get(op)):
            self.error(f'unknown instruction {op}')
        toks = [ t.strip() for t in rest.split(',') ] if rest.strip() else []
        block = None
        if kind == Kind.Phi:
            if not toks:
                self.error('phi needs a block')
            block, toks = self.block(toks[0]), toks[1:]
            if len(toks) != block.preds:
                self.error(f'phi has {len(toks)} operands, block has {block.preds} predecessors')
        ops = self.operands(kind, width, toks)
        try:
            if width is None:
                width = infer_width(kind, ops)
            self.names[name] = self.ctx.get_inst(kind, width, ops, block=block)
        except InstError as e:
            self.error(str(e))

    def statement(self, line):
        toks = line.split()
        match toks:
            case [ 'pc', l, r ]:
                lhs = self.operand(l)
                self.pcs.append(PathCondition(lhs, self.operand(r, lhs.width)))
            case [ 'blockpc', b, pred, l, r ] if pred.isdigit():
                block = self.block(b)
                lhs = self.operand(l)
                pc = PathCondition(lhs, self.operand(r, lhs.width))
                self.bpcs.append(BlockPathCondition(block, int(pred), pc))
            case [ 'infer', i, *_ ]:
                if self.lhs is not None:
                    self.error('more than one infer')
                self.lhs = self.operand(i)
            case [ 'result', i ]:
                if self.lhs is None:
                    self.error('result without infer')
                rhs = self.operand(i, self.lhs.width)
                if rhs.width != self.lhs.width:
                    self.error('infer and result have different widths')
                rule = ParsedReplacement(InstMapping(self.lhs, rhs), tuple(self.pcs), tuple(self.bpcs))
                self.reset()
                return rule
            case _:
                if not (m := _DEF.fullmatch(line)):
                    self.error(f'cannot parse {line!r}')
                name, width, op, rest = m.groups()
                self.define(name, int(width) if width else None, op, rest)
        return None

def parse_replacements(ctx: InstContext, text: str, filename='<input>') -> list[ParsedReplacement]:
    """Parses all rules in text.

    A rule is a sequence of definitions, path conditions and an infer
    statement, and ends with a result statement. Names are local to a rule.
    """
    p = _Parser(ctx, filename)
    res = []
    for n, line in enumerate(text.splitlines(), start=1):
        p.line_no = n
        line = line.split(';', 1)[0].strip()
        if not line:
            continue
        if rule := p.statement(line):
            res.append(rule)
    if p.lhs is not None or p.names:
        p.error('rule without result')
    return res
