from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import logging

from pydantic import BaseModel, Field

from .aggregation import (
    calculate_active_temp_hp, calculate_damage_dice, calculate_final_size, calculate_final_traits,
    calculate_resistance, calculate_total_fast_healing, calculate_weakness, consolidate_senses,
    format_damage_dice, format_speeds, get_active_granted_items, get_active_senses,
    get_reach_for_size, get_space_for_size, get_speed_types, sort_modifications,
)
from .choices import ChoiceStore, collect_active_roll_options, get_incomplete_choice_sets
from .context import ActorSnapshot
from .modifiers_runtime import ModifiersEngine, Statistic
from .predicates import PredicateContext, create_predicate_context
from .registry import filter_by_predicate, merge_processed_rule_elements, process_source_rule_elements
from .results import (
    ChoiceSetPrompt, GrantedItem, ImmunityResult, Modifier, ProcessedRuleElements, PropertyModification,
    Sense, TempHPResult, TogglePropertyResult,
)
from .schema_models import RuleSource, SizeCategory
from .values import Number

logger = logging.getLogger(__name__)

SELECTOR_LABELS: Dict[str, str] = {
    "ac": "AC",
    "speed": "Speed",
    "land-speed": "Speed",
    "fly-speed": "Fly Speed",
    "swim-speed": "Swim Speed",
    "climb-speed": "Climb Speed",
    "burrow-speed": "Burrow Speed",
    "fortitude": "Fortitude Save",
    "reflex": "Reflex Save",
    "will": "Will Save",
    "perception": "Perception",
    "initiative": "Initiative",
    "attack": "Attack Rolls",
    "damage": "Damage",
    "strike-attack-roll": "Strike Attack Rolls",
    "strike-damage": "Strike Damage",
    "spell-attack": "Spell Attack",
    "spell-dc": "Spell DC",
    "hp": "Hit Points",
    "max-hp": "Max Hit Points",
    "temp-hp": "Temporary HP",
    "all-checks": "All Checks",
    "all-checks-dcs": "All Checks and DCs",
    "all-saves": "All Saves",
    "dexterity-based": "Dexterity-based Checks",
    "strength-based": "Strength-based Checks",
    "constitution-based": "Constitution-based Checks",
    "intelligence-based": "Intelligence-based Checks",
    "wisdom-based": "Wisdom-based Checks",
    "charisma-based": "Charisma-based Checks",
}

# Conditions whose penalties are not authored as rule elements
CONDITION_SELECTORS: Dict[str, str] = {
    "frightened": "all-checks-dcs",
    "sickened": "all-checks",
    "clumsy": "dexterity-based",
    "enfeebled": "strength-based",
    "stupefied": "intelligence-based",
}


def get_selector_label(selector: str) -> str:
    if selector in SELECTOR_LABELS:
        return SELECTOR_LABELS[selector]
    if selector.startswith("skill:"):
        return selector.split(":", 1)[1].replace("-", " ").title()
    return selector.replace("-", " ").title()


class CharacterState(BaseModel):
    """What character-state management hands the engine for one pass."""
    name: str = "Unnamed"
    level: int = 1
    abilities: Dict[str, int] = Field(default_factory=dict)
    traits: List[str] = Field(default_factory=list)
    size: SizeCategory = "medium"
    effects: List[str] = Field(default_factory=list)
    roll_options: List[str] = Field(default_factory=list)
    conditions: Dict[str, int] = Field(default_factory=dict)
    base_speeds: Dict[str, int] = Field(default_factory=dict)
    choices: ChoiceStore = Field(default_factory=ChoiceStore)
    source_ids: List[str] = Field(default_factory=list)


def condition_modifiers(conditions: Dict[str, int]) -> List[Modifier]:
    mods: List[Modifier] = []
    for name, value in conditions.items():
        selector = CONDITION_SELECTORS.get(name.lower())
        if selector is None or value <= 0:
            continue
        title = name.title()
        mods.append(Modifier(label=title, source=f"{title} Condition", value=-value, type="status", selector=selector))
    return mods


@dataclass
class CharacterSheet:
    name: str
    level: int
    traits: List[str]
    size: SizeCategory
    space: float
    reach: int
    speeds: Dict[str, Number]
    senses: List[Sense]
    resistances: Dict[str, Number]
    weaknesses: Dict[str, Number]
    immunities: List[ImmunityResult]
    temp_hp: Optional[TempHPResult]
    fast_healing: Number
    damage_dice: Dict[str, str]
    granted_items: List[GrantedItem]
    property_modifications: List[PropertyModification]
    pending_choices: List[ChoiceSetPrompt]
    toggles: List[TogglePropertyResult]
    roll_options: List[str]
    statistics: Dict[str, Statistic]
    active: ProcessedRuleElements
    logs: List[str] = field(default_factory=list)

    @property
    def speed_text(self) -> str:
        return format_speeds(self.speeds)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "level": self.level,
            "traits": self.traits,
            "size": self.size,
            "space": self.space,
            "reach": self.reach,
            "speeds": self.speeds,
            "senses": [s.label for s in self.senses],
            "resistances": self.resistances,
            "weaknesses": self.weaknesses,
            "immunities": [i.model_dump(mode="json") for i in self.immunities],
            "temp_hp": self.temp_hp.value if self.temp_hp else 0,
            "fast_healing": self.fast_healing,
            "damage_dice": self.damage_dice,
            "granted_items": [g.uuid or (g.item or {}).get("name") for g in self.granted_items],
            "property_modifications": [p.model_dump(mode="json") for p in self.property_modifications],
            "pending_choices": [p.flag for p in self.pending_choices],
            "toggles": {t.property: t.enabled for t in self.toggles},
            "roll_options": self.roll_options,
            "statistics": {k: s.total for k, s in self.statistics.items()},
            "logs": self.logs,
        }


def _speed_selectors(speed_type: str) -> List[str]:
    if speed_type == "land":
        return ["land-speed", "speed", "all-speeds"]
    return [f"{speed_type}-speed", "all-speeds"]


def build_predicate_context(state: CharacterState, traits: Iterable[str],
                            extra_options: Iterable[str] = ()) -> PredicateContext:
    options = set(state.roll_options) | set(extra_options)
    options.update(c.lower() for c, v in state.conditions.items() if v > 0)
    return create_predicate_context(options=options, level=state.level, traits=traits, effects=state.effects)


def process_sources(state: CharacterState, sources: Iterable[RuleSource]) -> ProcessedRuleElements:
    actor = ActorSnapshot(level=state.level, abilities=dict(state.abilities))
    results = [
        process_source_rule_elements(src.name, src.rules, level=state.level, actor=actor, choices=state.choices)
        for src in sources
    ]
    return merge_processed_rule_elements(*results)


def build_sheet(state: CharacterState, sources: Iterable[RuleSource]) -> CharacterSheet:
    merged = process_sources(state, sources)

    # One extra pass: roll options are collected against the base traits, trait changes
    # see those options, then options are collected again against the final traits
    base_ctx = build_predicate_context(state, state.traits)
    base_ctx = build_predicate_context(state, state.traits, collect_active_roll_options(merged, base_ctx))
    traits = calculate_final_traits(state.traits, merged.trait_modifications, base_ctx)
    ctx = build_predicate_context(state, traits)
    ctx = build_predicate_context(state, traits, collect_active_roll_options(merged, ctx))

    active = filter_by_predicate(merged, ctx)
    active.modifiers.extend(condition_modifiers(state.conditions))
    engine = ModifiersEngine(active, ctx)

    speeds: Dict[str, Number] = dict(state.base_speeds)
    for stype, value in get_speed_types(active.speeds).items():
        speeds[stype] = max(speeds.get(stype, 0), value)
    for stype in list(speeds):
        sels = _speed_selectors(stype)
        speeds[stype] = engine.value(sels[0], speeds[stype], include=sels[1:])

    size = calculate_final_size(state.size, active.size_modifiers)
    res_types = sorted({t for r in active.resistances for t in r.types})
    weak_types = sorted({t for w in active.weaknesses for t in w.types})
    dice_selectors = sorted({d.selector for d in active.damage_dice})

    statistics = {sel: engine.statistic(sel, label=get_selector_label(sel)) for sel in engine.selectors()}
    sheet = CharacterSheet(
        name=state.name,
        level=state.level,
        traits=traits,
        size=size,
        space=get_space_for_size(size),
        reach=get_reach_for_size(size),
        speeds=speeds,
        senses=consolidate_senses(get_active_senses(active.senses)),
        resistances={t: calculate_resistance(active.resistances, t) for t in res_types},
        weaknesses={t: calculate_weakness(active.weaknesses, t) for t in weak_types},
        immunities=list(active.immunities),
        temp_hp=calculate_active_temp_hp(active.temp_hp),
        fast_healing=calculate_total_fast_healing(active.fast_healing),
        damage_dice={s: format_damage_dice(calculate_damage_dice(active.damage_dice, selector=s)) for s in dice_selectors},
        granted_items=get_active_granted_items(active.granted_items),
        property_modifications=sort_modifications(active.property_modifications),
        pending_choices=get_incomplete_choice_sets(active.choice_sets),
        toggles=list(active.toggle_properties),
        roll_options=sorted(ctx.options),
        statistics=statistics,
        active=active,
        logs=list(merged.logs),
    )
    logger.debug("Built sheet for %s: %d active entries", state.name, active.total())
    return sheet
