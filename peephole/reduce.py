from dataclasses import dataclass

from peephole import util
from peephole.inst import InstContext, ParsedReplacement, collect_insts
from peephole.printer import rule_string
from peephole.verify import RuleSolver

class InvalidRuleError(Exception):
    pass

@dataclass(frozen=True)
class Reducer(util.HasDebug):
    """Shrinks a valid rule by replacing instructions with variables.

    Every instruction that is neither a root nor a leaf is replaced
    by a fresh variable in turn. Valid variants are results and are
    reduced further. Rules are identified by their canonical text so
    that a rule reached by different orders of replacements is explored
    and returned once.
    """

    rule_solver: RuleSolver

    all_results: bool = False
    """Return all reduced rules instead of the shortest one."""

    def _reduce(self, rule: ParsedReplacement, ctx: InstContext, results: list, seen: set):
        insts = collect_insts(*rule.roots())
        if len(insts) <= 1:
            return
        for i in insts:
            if i is rule.lhs or i is rule.rhs or i.is_var or i.is_const:
                continue
            var = ctx.fresh_var(i.width, 'newvar')
            variant = ctx.replace_rule(rule, { i: var })
            text = rule_string(variant, canonical=True)
            if text in seen:
                continue
            seen.add(text)
            valid, _ = self.rule_solver.is_valid_rule(variant, ctx)
            if valid:
                results.append(variant)
                self._reduce(variant, ctx, results, seen)
            else:
                self.debug('reduce', 'invalid attempt:\n' + rule_string(variant))

    def reduce_all(self, rule: ParsedReplacement, ctx: InstContext) -> list[ParsedReplacement]:
        """All reduced rules, deduplicated and sorted by the length of their text.

        Raises InvalidRuleError if rule is not valid.
        """
        valid, _ = self.rule_solver.is_valid_rule(rule, ctx)
        if not valid:
            raise InvalidRuleError('the rule to reduce is not valid')
        results = []
        self._reduce(rule, ctx, results, { rule_string(rule, canonical=True) })
        self.debug('reduce', f'{len(results)} reduced rules')
        return sorted(results, key=lambda r: len(rule_string(r)))

    def reduce(self, rule: ParsedReplacement, ctx: InstContext) -> list[ParsedReplacement]:
        """The shortest reduced rule, or all of them if all_results is set."""
        results = self.reduce_all(rule, ctx)
        if not results:
            self.debug('fail', 'failed to reduce')
        return results if self.all_results else results[:1]
