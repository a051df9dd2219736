from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence
import copy

from .predicates import PredicateContext, evaluate_predicate
from .processors import DEFAULT_DAMAGE_TYPE
from .schema_models import SIZE_ORDER, SizeCategory
from .values import Number
from .results import (
    DamageDice, Speed, Sense, GrantedItem, PropertyModification, StrikingResult, TempHPResult,
    FastHealingResult, ResistanceResult, WeaknessResult, ImmunityResult, CreatureSizeResult,
    ActorTraitsResult,
)

PHYSICAL_DAMAGE_TYPES = ("bludgeoning", "piercing", "slashing")
PHASE_ORDER = {"applyAEs": 1, "beforeDerived": 2, "afterDerived": 3, "beforeRoll": 4}
ACUITY_RANK = {"precise": 3, "imprecise": 2, "vague": 1}
STRIKING_LABELS = {1: "Striking", 2: "Greater Striking", 3: "Major Striking"}

SIZE_SPACE: Dict[str, float] = {"tiny": 2.5, "small": 5, "medium": 5, "large": 10, "huge": 15, "gargantuan": 20}
SIZE_REACH: Dict[str, int] = {"tiny": 5, "small": 5, "medium": 5, "large": 10, "huge": 15, "gargantuan": 20}

ALIGNMENT_TRAITS = {"lawful", "chaotic", "good", "evil", "neutral"}
CREATURE_TYPE_TRAITS = {
    "aberration", "animal", "astral", "beast", "celestial", "construct", "dragon", "elemental",
    "ethereal", "fey", "fiend", "fungus", "humanoid", "monitor", "ooze", "plant", "spirit", "undead",
}


def _applies(entry: Any, ctx: Optional[PredicateContext]) -> bool:
    if ctx is None:
        return True
    return evaluate_predicate(entry.predicate, ctx)


# -------- speed --------
def calculate_speed(speeds: Iterable[Speed], ctx: Optional[PredicateContext] = None,
                    speed_type: Optional[str] = None) -> Number:
    """Speeds do not stack: the highest applicable source wins (0 if none)."""
    values = [s.value for s in speeds
              if _applies(s, ctx) and (speed_type is None or s.type == speed_type)]
    return max(values) if values else 0


def get_speed_types(speeds: Iterable[Speed], ctx: Optional[PredicateContext] = None) -> Dict[str, Number]:
    out: Dict[str, Number] = {}
    for s in speeds:
        if not _applies(s, ctx):
            continue
        if s.type not in out or s.value > out[s.type]:
            out[s.type] = s.value
    return out


def format_speeds(speed_types: Dict[str, Number]) -> str:
    parts: List[str] = []
    for stype, value in speed_types.items():
        if stype == "land":
            parts.insert(0, f"{value} feet")
        else:
            parts.append(f"{stype} {value} feet")
    return ", ".join(parts)


# -------- damage dice --------
@dataclass
class DicePool:
    dice_number: int
    die_size: str
    damage_type: str
    sources: List[str] = field(default_factory=list)


def calculate_damage_dice(dice: Iterable[DamageDice], selector: Optional[str] = None,
                          ctx: Optional[PredicateContext] = None) -> Dict[str, DicePool]:
    """Pool dice by (die size, damage type). Disabled entries are skipped."""
    pools: Dict[str, DicePool] = {}
    for d in dice:
        if not d.enabled or not _applies(d, ctx):
            continue
        if selector is not None and d.selector != selector:
            continue
        k = f"{d.die_size}-{d.damage_type}"
        pool = pools.get(k)
        if pool is None:
            pool = pools[k] = DicePool(dice_number=0, die_size=d.die_size, damage_type=d.damage_type)
        pool.dice_number += d.dice_number
        pool.sources.append(d.source)
    return pools


def format_damage_dice(pools: Dict[str, DicePool]) -> str:
    parts = []
    for p in pools.values():
        s = f"{p.dice_number}{p.die_size}"
        if p.damage_type != DEFAULT_DAMAGE_TYPE:
            s += f" {p.damage_type}"
        parts.append(s)
    return " + ".join(parts)


# -------- senses --------
def get_active_senses(senses: Iterable[Sense], ctx: Optional[PredicateContext] = None) -> List[Sense]:
    return [s for s in senses if s.enabled and _applies(s, ctx)]


def consolidate_senses(senses: Iterable[Sense]) -> List[Sense]:
    """One entry per sense type: longer range wins, otherwise the sharper acuity."""
    best: Dict[str, Sense] = {}
    for s in senses:
        cur = best.get(s.type)
        if cur is None:
            best[s.type] = s
            continue
        if s.range is not None and (cur.range is None or s.range > cur.range):
            best[s.type] = s
        elif ACUITY_RANK[s.acuity] > ACUITY_RANK[cur.acuity]:
            best[s.type] = s
    return list(best.values())


def has_sense(senses: Iterable[Sense], sense_type: str) -> bool:
    return any(s.enabled and s.type == sense_type for s in senses)


def get_sense_range(senses: Iterable[Sense], sense_type: str) -> Optional[int]:
    ranges = [s.range for s in senses if s.enabled and s.type == sense_type and s.range is not None]
    return max(ranges) if ranges else None


# -------- granted items --------
def get_active_granted_items(items: Iterable[GrantedItem], ctx: Optional[PredicateContext] = None) -> List[GrantedItem]:
    """Applicable grants, with non-duplicable repeats of the same uuid dropped."""
    out: List[GrantedItem] = []
    for it in items:
        if not _applies(it, ctx):
            continue
        if it.uuid and not it.allow_duplicate and is_item_already_granted(out, it.uuid):
            continue
        out.append(it)
    return out


def is_item_already_granted(items: Iterable[GrantedItem], uuid: str) -> bool:
    return any(it.uuid == uuid for it in items)


# -------- property modifications --------
def sort_modifications(mods: Iterable[PropertyModification]) -> List[PropertyModification]:
    return sorted(mods, key=lambda m: (PHASE_ORDER.get(m.phase, 999), m.priority))


def apply_mode(current: Optional[Number], mode: str, value: Number) -> Number:
    # an absent property is upgraded/downgraded straight to the value
    if mode == "override" or (current is None and mode in ("upgrade", "downgrade")):
        return value
    base = current if current is not None else 0
    if mode == "add":
        return base + value
    if mode == "subtract":
        return base - value
    if mode == "multiply":
        return base * value
    if mode == "upgrade":
        return max(base, value)
    if mode == "downgrade":
        return min(base, value)
    raise ValueError(f"Unknown property mode: {mode}")


def apply_property_modification(data: Dict[str, Any], mod: PropertyModification) -> Dict[str, Any]:
    """Return a copy of `data` with `mod` applied at its dotted path (missing levels are created)."""
    out = copy.deepcopy(data)
    parts = mod.path.split(".")
    node = out
    for p in parts[:-1]:
        nxt = node.get(p)
        if nxt is None:
            nxt = node[p] = {}
        elif not isinstance(nxt, dict):
            raise ValueError(f"Property '{mod.path}' crosses non-mapping '{p}'")
        node = nxt
    current = node.get(parts[-1])
    if current is not None and not isinstance(current, (int, float)):
        raise ValueError(f"Property '{mod.path}' is not numeric")
    node[parts[-1]] = apply_mode(current, mod.mode, mod.value)
    return out


def apply_property_modifications(data: Dict[str, Any], mods: Iterable[PropertyModification]) -> Dict[str, Any]:
    out = data
    for m in sort_modifications(mods):
        out = apply_property_modification(out, m)
    return out


# -------- striking --------
def get_striking_label(extra_dice: int) -> str:
    return STRIKING_LABELS.get(extra_dice, "")


def calculate_total_damage_dice(base_dice: int, strikings: Iterable[StrikingResult],
                                ctx: Optional[PredicateContext] = None) -> int:
    extras = [s.extra_dice for s in strikings if _applies(s, ctx)]
    return base_dice + (max(extras) if extras else 0)


# -------- temp hp / fast healing --------
def calculate_active_temp_hp(sources: Iterable[TempHPResult],
                             ctx: Optional[PredicateContext] = None) -> Optional[TempHPResult]:
    best: Optional[TempHPResult] = None
    for t in sources:
        if _applies(t, ctx) and (best is None or t.value > best.value):
            best = t
    return best


def calculate_total_fast_healing(sources: Iterable[FastHealingResult], recent_damage_types: Sequence[str] = (),
                                 ctx: Optional[PredicateContext] = None) -> Number:
    total: Number = 0
    for s in sources:
        if not s.active or not _applies(s, ctx):
            continue
        if any(dt in recent_damage_types for dt in s.deactivated_by):
            continue
        total += s.value
    return total


def deactivate_fast_healing(source: FastHealingResult, damage_type: str) -> FastHealingResult:
    if damage_type in source.deactivated_by:
        return source.model_copy(update={"active": False})
    return source


def reactivate_fast_healing(source: FastHealingResult) -> FastHealingResult:
    return source.model_copy(update={"active": True})


# -------- resistance / weakness / immunity --------
def matches_damage_type(types: Sequence[str], damage_type: str) -> bool:
    if damage_type in types or "all" in types:
        return True
    return "physical" in types and damage_type in PHYSICAL_DAMAGE_TYPES


def calculate_resistance(resistances: Iterable[ResistanceResult], damage_type: str,
                         damage_source: Optional[str] = None, ctx: Optional[PredicateContext] = None) -> Number:
    """Resistances do not stack: highest matching, non-excepted source (0 if none)."""
    best: Number = 0
    for r in resistances:
        if not _applies(r, ctx) or not matches_damage_type(r.types, damage_type):
            continue
        if damage_source and damage_source in r.exceptions:
            continue
        best = max(best, r.value)
    return best


def apply_resistance(damage: Number, resistance: Number) -> Number:
    return max(0, damage - resistance)


def calculate_weakness(weaknesses: Iterable[WeaknessResult], damage_type: str,
                       ctx: Optional[PredicateContext] = None) -> Number:
    best: Number = 0
    for w in weaknesses:
        if _applies(w, ctx) and matches_damage_type(w.types, damage_type):
            best = max(best, w.value)
    return best


def apply_weakness(damage: Number, weakness: Number) -> Number:
    return damage + weakness if damage > 0 else 0


def is_immune_to_damage(immunities: Iterable[ImmunityResult], damage_type: str) -> bool:
    return any(i.type == "damage" and damage_type in i.values for i in immunities)


def is_immune_to_condition(immunities: Iterable[ImmunityResult], condition: str) -> bool:
    return any(i.type == "condition" and condition in i.values for i in immunities)


def is_immune_to_effect(immunities: Iterable[ImmunityResult], effect: str) -> bool:
    return any(i.type == "effect" and effect in i.values for i in immunities)


def is_immune_to_critical_hits(immunities: Iterable[ImmunityResult]) -> bool:
    return any(i.type == "critical-hits" for i in immunities)


def is_immune_to_precision_damage(immunities: Iterable[ImmunityResult]) -> bool:
    return any(i.type == "precision-damage" for i in immunities)


def apply_immunities(damage: Number, damage_type: str, immunities: Iterable[ImmunityResult]) -> Number:
    return 0 if is_immune_to_damage(immunities, damage_type) else damage


# -------- size --------
def resize_creature(size: SizeCategory, steps: int) -> SizeCategory:
    idx = max(0, min(len(SIZE_ORDER) - 1, SIZE_ORDER.index(size) + steps))
    return SIZE_ORDER[idx]


def calculate_final_size(base: SizeCategory, mods: Iterable[CreatureSizeResult],
                         ctx: Optional[PredicateContext] = None) -> SizeCategory:
    size = base
    for m in mods:
        if not _applies(m, ctx):
            continue
        if m.size:
            size = m.size
            continue
        if m.resize_by:
            size = resize_creature(size, m.resize_by)
        if m.maximum_size and SIZE_ORDER.index(size) > SIZE_ORDER.index(m.maximum_size):
            size = m.maximum_size
        if m.minimum_size and SIZE_ORDER.index(size) < SIZE_ORDER.index(m.minimum_size):
            size = m.minimum_size
    return size


def get_space_for_size(size: SizeCategory) -> float:
    return SIZE_SPACE[size]


def get_reach_for_size(size: SizeCategory) -> int:
    return SIZE_REACH[size]


# -------- traits --------
def calculate_final_traits(base: Iterable[str], mods: Iterable[ActorTraitsResult],
                           ctx: Optional[PredicateContext] = None) -> List[str]:
    """Apply removes then adds per entry, in source order, over the lowercased base set."""
    traits = {t.lower() for t in base}
    for m in mods:
        if not _applies(m, ctx):
            continue
        for t in m.remove:
            traits.discard(t.lower())
        for t in m.add:
            traits.add(t.lower())
    return sorted(traits)


def has_trait(traits: Iterable[str], trait: str) -> bool:
    return trait.lower() in {t.lower() for t in traits}


def has_any_trait(traits: Iterable[str], wanted: Iterable[str]) -> bool:
    have = {t.lower() for t in traits}
    return any(w.lower() in have for w in wanted)


def has_all_traits(traits: Iterable[str], wanted: Iterable[str]) -> bool:
    have = {t.lower() for t in traits}
    return all(w.lower() in have for w in wanted)


def get_trait_category(trait: str) -> Optional[str]:
    t = trait.lower()
    if t in ALIGNMENT_TRAITS:
        return "alignment"
    if t in SIZE_ORDER:
        return "size"
    if t in CREATURE_TYPE_TRAITS:
        return "creature-type"
    return None
