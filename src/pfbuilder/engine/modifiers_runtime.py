from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .predicates import PredicateContext, evaluate_predicate
from .results import Modifier, ProcessedRuleElements
from .values import Number

# Bonus-type stacking policy: one bonus and one penalty of each typed kind counts;
# untyped bonuses and penalties always stack.
TYPED_NO_STACK = {"status", "circumstance", "item"}

_EMPTY_CTX = PredicateContext()


def should_apply(mod: Modifier, ctx: Optional[PredicateContext] = None) -> bool:
    if not mod.enabled:
        return False
    return evaluate_predicate(mod.predicate, ctx or _EMPTY_CTX)


def group_by_type(mods: Iterable[Modifier]) -> Dict[str, List[Modifier]]:
    out: Dict[str, List[Modifier]] = {}
    for m in mods:
        out.setdefault(m.type, []).append(m)
    return out


def _pick(mods: List[Modifier], bonus: bool) -> List[Modifier]:
    """Counted modifiers among same-sign `mods`: best per typed kind, all untyped."""
    picked: List[Modifier] = []
    for mtype, lst in group_by_type(mods).items():
        if mtype in TYPED_NO_STACK:
            # first of equal values wins
            best = lst[0]
            for m in lst[1:]:
                if (m.value > best.value) if bonus else (m.value < best.value):
                    best = m
            picked.append(best)
        else:
            picked.extend(lst)
    return picked


def get_applied_bonuses(mods: Iterable[Modifier]) -> List[Modifier]:
    return _pick([m for m in mods if m.is_bonus()], bonus=True)


def get_applied_penalties(mods: Iterable[Modifier]) -> List[Modifier]:
    return _pick([m for m in mods if m.is_penalty()], bonus=False)


def calculate_bonuses(mods: Iterable[Modifier]) -> Number:
    return sum(m.value for m in get_applied_bonuses(mods))


def calculate_penalties(mods: Iterable[Modifier]) -> Number:
    return sum(m.value for m in get_applied_penalties(mods))


def apply_stacking_rules(mods: Iterable[Modifier]) -> Number:
    mods = list(mods)
    return calculate_bonuses(mods) + calculate_penalties(mods)


def would_stack(new: Modifier, existing: Iterable[Modifier]) -> bool:
    """True if adding `new` to `existing` would change the stacked total."""
    if new.value == 0:
        return False
    if new.type not in TYPED_NO_STACK:
        return True
    same = [m for m in existing if m.type == new.type]
    if new.is_bonus():
        return all(m.value < new.value for m in same if m.is_bonus())
    return all(m.value > new.value for m in same if m.is_penalty())


def _fmt(v: Number) -> str:
    return f"+{v}" if v >= 0 else f"{v}"


def get_stacking_explanation(mods: Iterable[Modifier]) -> List[str]:
    mods = list(mods)
    applied = get_applied_bonuses(mods) + get_applied_penalties(mods)
    lines: List[str] = []
    for m in mods:
        tag = f"{_fmt(m.value)} {m.label} ({m.type}, {m.source})"
        if any(m is a for a in applied):
            lines.append(f"[Stack] {tag} applies")
        elif m.value == 0:
            lines.append(f"[Stack] {tag} has no effect")
        else:
            winner = next(a for a in applied if a.type == m.type and a.is_bonus() == m.is_bonus())
            lines.append(f"[Stack] {tag} suppressed by {winner.label} {_fmt(winner.value)}")
    return lines


@dataclass
class StackingResult:
    total: Number
    applied: List[Modifier]
    suppressed: List[Modifier]


def apply_modifier_stacking(mods: Iterable[Modifier], ctx: Optional[PredicateContext] = None) -> StackingResult:
    active = [m for m in mods if should_apply(m, ctx)]
    applied = get_applied_bonuses(active) + get_applied_penalties(active)
    suppressed = [m for m in active if not any(m is a for a in applied)]
    return StackingResult(total=sum(m.value for m in applied), applied=applied, suppressed=suppressed)


@dataclass
class Statistic:
    """A base value plus the modifiers that target it."""
    selector: str
    base: Number = 0
    modifiers: List[Modifier] = field(default_factory=list)
    label: Optional[str] = None

    @property
    def total(self) -> Number:
        return self.base + apply_stacking_rules(self.modifiers)

    def get_breakdown(self) -> List[str]:
        lines = [f"Base {self.base}"]
        lines.extend(get_stacking_explanation(self.modifiers))
        lines.append(f"Total {self.total}")
        return lines


class ModifiersEngine:
    """
    Applies bonus-type stacking to the Modifiers of an aggregate result.
    Nothing is mutated; effective values are computed on demand.
    """

    def __init__(self, processed: ProcessedRuleElements, ctx: Optional[PredicateContext] = None):
        self.processed = processed
        self.ctx = ctx

    # -------- collect --------
    def selectors(self) -> List[str]:
        return sorted({m.selector for m in self.processed.modifiers})

    def collect_for_selector(self, selector: str, include: Iterable[str] = ()) -> List[Modifier]:
        wanted = {selector, *include}
        return [m for m in self.processed.modifiers if m.selector in wanted and should_apply(m, self.ctx)]

    # -------- values --------
    def total(self, selector: str, include: Iterable[str] = ()) -> Number:
        return apply_stacking_rules(self.collect_for_selector(selector, include))

    def value(self, selector: str, base: Number = 0, include: Iterable[str] = ()) -> Number:
        return base + self.total(selector, include)

    def statistic(self, selector: str, base: Number = 0, include: Iterable[str] = (),
                  label: Optional[str] = None) -> Statistic:
        return Statistic(selector=selector, base=base, modifiers=self.collect_for_selector(selector, include), label=label)

    def apply_with_trace(self, base: Number, mods: List[Modifier]) -> Tuple[Number, List[str]]:
        lines = [f"[Stack] base {base}"]
        lines.extend(get_stacking_explanation(mods))
        total = base + apply_stacking_rules(mods)
        lines.append(f"[Stack] total {total}")
        return total, lines

    def explain_selectors(self, selectors: Optional[Iterable[str]] = None,
                          bases: Optional[Dict[str, Number]] = None) -> Dict[str, List[str]]:
        bases = bases or {}
        out: Dict[str, List[str]] = {}
        for sel in (selectors if selectors is not None else self.selectors()):
            _, lines = self.apply_with_trace(bases.get(sel, 0), self.collect_for_selector(sel))
            out[sel] = lines
        return out

    def diff_totals(self, other: "ModifiersEngine") -> Dict[str, Tuple[Number, Number]]:
        """Selectors whose stacked total differs between two engines: {selector: (before, after)}."""
        out: Dict[str, Tuple[Number, Number]] = {}
        for sel in sorted(set(self.selectors()) | set(other.selectors())):
            a, b = self.total(sel), other.total(sel)
            if a != b:
                out[sel] = (a, b)
        return out
