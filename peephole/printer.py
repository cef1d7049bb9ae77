from peephole.inst import Inst, Kind, Block, VarFacts, ParsedReplacement, rule_vars

def facts_to_string(f: VarFacts):
    res = ''
    if f.known and not f.known.is_top:
        res += f' (knownBits={f.known})'
    if f.non_negative:
        res += ' (nonNegative)'
    if f.negative:
        res += ' (negative)'
    if f.non_zero:
        res += ' (nonZero)'
    if f.power_of_two:
        res += ' (powerOfTwo)'
    if f.num_sign_bits > 1:
        res += f' (signBits={f.num_sign_bits})'
    if f.range and not f.range.is_full:
        res += f' (range={f.range})'
    if f.demanded_bits is not None:
        res += f' (demandedBits={f.demanded_bits:b})'
    return res

class ReplacementContext:
    """Prints instructions in the textual rule format.

    Every instruction is defined on its own line before its first use.
    Variables keep their names, all other instructions are numbered.
    Constants are printed inline as value:iwidth. In canonical mode
    variables are renamed in the order they are defined, so rules that
    differ only in the names of their variables print the same.
    """
    def __init__(self, reserved=(), canonical=False):
        self.names     = {}
        self.blocks    = {}
        self.lines     = []
        self.reserved  = set(reserved)
        self.counter   = 0
        self.canonical = canonical
        self.num_vars  = 0

    def _fresh(self):
        while str(self.counter) in self.reserved:
            self.counter += 1
        name = str(self.counter)
        self.counter += 1
        return name

    def print_block(self, b: Block):
        if (name := self.blocks.get(b)) is None:
            name = self.blocks[b] = f'%{b.name}'
            self.lines.append(f'{name} = block {b.preds}')
        return name

    def print_inst(self, i: Inst):
        """Returns the operand text of i, defining i first if necessary."""
        if i.is_const:
            return f'{i.val}:i{i.width}'
        if (name := self.names.get(i)) is not None:
            return name
        if i.is_var:
            name = f'%v{self.num_vars}' if self.canonical else f'%{i.name}'
            self.num_vars += 1
            self.lines.append(f'{name}:i{i.width} = var{facts_to_string(i.facts)}')
        else:
            ops = [ self.print_inst(o) for o in i.ops ]
            if i.kind == Kind.Phi:
                ops = [ self.print_block(i.block) ] + ops
            name = f'%{self._fresh()}'
            self.lines.append(f'{name}:i{i.width} = {i.kind} {", ".join(ops)}')
        self.names[i] = name
        return name

    def print_rule(self, rule: ParsedReplacement, lhs_only=False):
        for pc in rule.pcs:
            l = self.print_inst(pc.lhs)
            self.lines.append(f'pc {l} {self.print_inst(pc.rhs)}')
        for bpc in rule.bpcs:
            b = self.print_block(bpc.block)
            l = self.print_inst(bpc.pc.lhs)
            self.lines.append(f'blockpc {b} {bpc.pred} {l} {self.print_inst(bpc.pc.rhs)}')
        self.lines.append(f'infer {self.print_inst(rule.lhs)}')
        if not lhs_only:
            self.lines.append(f'result {self.print_inst(rule.rhs)}')
        return '\n'.join(self.lines)

def rule_string(rule: ParsedReplacement, lhs_only=False, canonical=False):
    """The text of a rule.

    With canonical, rules equal up to renaming of variables have the same text.
    """
    if canonical:
        return ReplacementContext(canonical=True).print_rule(rule, lhs_only)
    reserved = (i.name for i in rule_vars(rule))
    return ReplacementContext(reserved).print_rule(rule, lhs_only)
