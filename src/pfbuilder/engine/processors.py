from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import re

from .context import RuleElementContext
from .values import resolve_value, Number
from .choices import resolve_placeholders, PLACEHOLDER_RE
from .schema_models import (
    FlatModifierRuleElement, AdjustModifierRuleElement, DamageDiceRuleElement, BaseSpeedRuleElement,
    SenseRuleElement, GrantItemRuleElement, ChoiceSetRuleElement, ActiveEffectLikeRuleElement,
    RollOptionRuleElement, TogglePropertyRuleElement, WeaponPotencyRuleElement, StrikingRuleElement,
    TempHPRuleElement, FastHealingRuleElement, ResistanceRuleElement, WeaknessRuleElement,
    ImmunityRuleElement, CreatureSizeRuleElement, ActorTraitsRuleElement, SenseAcuity,
)
from .results import (
    Modifier, DamageDice, Speed, Sense, GrantedItem, ChoiceSetPrompt, PropertyModification,
    RollOptionResult, TogglePropertyResult, WeaponPotencyResult, StrikingResult, TempHPResult,
    FastHealingResult, ResistanceResult, WeaknessResult, ImmunityResult, CreatureSizeResult,
    ActorTraitsResult,
)

logger = logging.getLogger(__name__)

DEFAULT_DIE_SIZE = "d6"
DEFAULT_DAMAGE_TYPE = "untyped"
DEFAULT_SPEED_TYPE = "land"
DEFAULT_POTENCY_SELECTOR = "strike-attack-roll"
DEFAULT_STRIKING_SELECTOR = "strike-damage"
DEFAULT_CHOICE_PROMPT = "Make a selection"
DEFAULT_TEMP_HP_EVENTS = ("effect-start",)
DEFAULT_PROPERTY_PRIORITY = 100

SENSE_ACUITY: Dict[str, SenseAcuity] = {
    "darkvision": "precise",
    "low-light-vision": "precise",
    "see-invisibility": "precise",
    "scent": "imprecise",
    "tremorsense": "imprecise",
    "echolocation": "imprecise",
    "thoughtsense": "vague",
    "lifesense": "vague",
}


def title_case_slug(slug: str) -> str:
    """'low-light-vision' -> 'Low Light Vision'"""
    return " ".join(w[:1].upper() + w[1:] for w in slug.split("-"))


def generate_label(selector: str, value: Number) -> str:
    sign = "+" if value >= 0 else ""
    return f"{sign}{value} {title_case_slug(selector)}"


def clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


# -------- modifiers --------
def modifier_toggle_key(source: str, selector: str) -> str:
    return f"{source}:{selector}"


def process_flat_modifier(el: FlatModifierRuleElement, ctx: RuleElementContext) -> Optional[Modifier]:
    value = resolve_value(el.value, ctx)
    if value is None:
        return None
    enabled = el.enabled if el.enabled is not None else True
    if el.predicate is not None and ctx.choices is not None:
        # gated modifiers can be switched by the user, keyed "<source>:<selector>"
        stored = ctx.choices.get_toggle(modifier_toggle_key(ctx.source, el.selector))
        if stored is not None:
            enabled = stored
    return Modifier(
        label=el.label or generate_label(el.selector, value),
        source=ctx.source,
        value=value,
        type=el.type or "untyped",
        selector=el.selector,
        predicate=el.predicate,
        enabled=enabled,
        always_active=el.predicate is None,
        description=el.description,
    )


def adjust_value(current: Number, mode: str, by: Number) -> Number:
    if mode == "multiply":
        return current * by
    if mode == "override":
        return by
    if mode == "upgrade":
        return max(current, by)
    if mode == "downgrade":
        return min(current, by)
    return current + by


def matches_adjustment(mod: Modifier, el: AdjustModifierRuleElement) -> bool:
    if mod.selector != el.selector:
        return False
    if el.slug:
        slug = el.slug.lower()
        return slug in mod.label.lower() or slug in mod.source.lower()
    return True


def process_adjust_modifier(el: AdjustModifierRuleElement, modifiers: List[Modifier],
                            ctx: Optional[RuleElementContext] = None) -> List[Modifier]:
    """
    Replace every earlier Modifier matching selector (and slug, if given) with an adjusted copy.
    Returns the input list itself when nothing matches.
    """
    if not any(matches_adjustment(m, el) for m in modifiers):
        return modifiers
    by = resolve_value(el.value, ctx) if el.value is not None else 0
    if by is None:
        return modifiers
    mode = el.mode or "add"
    out: List[Modifier] = []
    for m in modifiers:
        if matches_adjustment(m, el):
            out.append(m.model_copy(update={
                "value": adjust_value(m.value, mode, by),
                "source": f"{m.source} (adjusted)",
            }))
        else:
            out.append(m)
    return out


def process_weapon_potency(el: WeaponPotencyRuleElement, ctx: RuleElementContext) -> Optional[WeaponPotencyResult]:
    raw = resolve_value(el.value, ctx)
    if raw is None:
        return None
    potency = clamp(int(raw), 1, 3)
    selector = el.selector or DEFAULT_POTENCY_SELECTOR
    damage_selector = selector.replace("attack-roll", "damage", 1)
    label = f"+{potency} Weapon Potency"
    attack = Modifier(label=label, source=ctx.source, value=potency, type="item", selector=selector,
                      predicate=el.predicate, always_active=el.predicate is None)
    damage = Modifier(label=label, source=ctx.source, value=potency, type="item", selector=damage_selector,
                      predicate=el.predicate, always_active=el.predicate is None)
    return WeaponPotencyResult(potency=potency, attack_modifier=attack, damage_modifier=damage,
                               source=ctx.source, predicate=el.predicate)


def process_striking(el: StrikingRuleElement, ctx: RuleElementContext) -> Optional[StrikingResult]:
    raw = resolve_value(el.value, ctx)
    if raw is None:
        return None
    return StrikingResult(
        extra_dice=clamp(int(raw), 1, 3),
        selector=el.selector or DEFAULT_STRIKING_SELECTOR,
        source=ctx.source,
        predicate=el.predicate,
    )


# -------- damage dice --------
def process_damage_dice(el: DamageDiceRuleElement, ctx: RuleElementContext) -> DamageDice:
    ov = el.override
    if ov is not None:
        number = ov.diceNumber if ov.diceNumber is not None else el.diceNumber
        die = ov.dieSize or el.dieSize
        dtype = ov.damageType or el.damageType
    else:
        number, die, dtype = el.diceNumber, el.dieSize, el.damageType
    return DamageDice(
        selector=el.selector,
        dice_number=number if number is not None else 1,
        die_size=die or DEFAULT_DIE_SIZE,
        damage_type=dtype or DEFAULT_DAMAGE_TYPE,
        category=el.category,
        override=ov is not None,
        source=ctx.source,
        predicate=el.predicate,
    )


# -------- movement & senses --------
def process_base_speed(el: BaseSpeedRuleElement, ctx: RuleElementContext) -> Optional[Speed]:
    value = resolve_value(el.value, ctx)
    if value is None:
        return None
    return Speed(type=el.selector or DEFAULT_SPEED_TYPE, value=value, source=ctx.source, predicate=el.predicate)


def default_acuity(sense_type: str) -> SenseAcuity:
    return SENSE_ACUITY.get(sense_type, "imprecise")


def format_sense_label(sense_type: str, rng: Optional[int], acuity: SenseAcuity) -> str:
    label = title_case_slug(sense_type)
    if rng is not None:
        label += f" {rng} feet"
    if acuity != "precise":
        label += f" ({acuity})"
    return label


def process_sense(el: SenseRuleElement, ctx: RuleElementContext) -> Sense:
    acuity = el.acuity or default_acuity(el.selector)
    return Sense(
        type=el.selector,
        range=el.range,
        acuity=acuity,
        source=ctx.source,
        label=el.label or format_sense_label(el.selector, el.range, acuity),
        predicate=el.predicate,
    )


# -------- grants & choices --------
def process_grant_item(el: GrantItemRuleElement, ctx: RuleElementContext) -> Optional[GrantedItem]:
    if not el.uuid and not el.item:
        logger.warning("GrantItem from %s has neither uuid nor item", ctx.source)
        return None
    if el.level is not None and ctx.level < el.level:
        return None
    return GrantedItem(uuid=el.uuid, item=el.item, source=ctx.source,
                       allow_duplicate=bool(el.allowDuplicate), predicate=el.predicate)


def default_choice_flag(source: str) -> str:
    return "choice-" + re.sub(r"\s+", "-", source.lower())


def process_choice_set(el: ChoiceSetRuleElement, ctx: RuleElementContext) -> Optional[ChoiceSetPrompt]:
    if not el.choices:
        logger.warning("ChoiceSet from %s has no choices", ctx.source)
        return None
    flag = el.flag or default_choice_flag(ctx.source)
    selection = ctx.choices.get_selection(flag) if ctx.choices is not None else None
    return ChoiceSetPrompt(
        flag=flag,
        prompt=el.prompt or DEFAULT_CHOICE_PROMPT,
        choices=list(el.choices),
        source=ctx.source,
        selection_count=el.selection if el.selection is not None else 1,
        adjust_name=bool(el.adjustName),
        selection=selection,
        predicate=el.predicate,
    )


def process_active_effect_like(el: ActiveEffectLikeRuleElement, ctx: RuleElementContext) -> Optional[PropertyModification]:
    path = el.path
    value = el.value
    if PLACEHOLDER_RE.search(path) or (isinstance(value, str) and PLACEHOLDER_RE.search(value)):
        path = resolve_placeholders(path, ctx.choices)
        if isinstance(value, str):
            value = resolve_placeholders(value, ctx.choices)
        if path is None or value is None:
            logger.warning("ActiveEffectLike from %s references an unresolved selection", ctx.source)
            return None
    resolved = resolve_value(value, ctx)
    if resolved is None:
        return None
    return PropertyModification(
        path=path,
        mode=el.mode,
        value=resolved,
        phase=el.phase or "applyAEs",
        priority=el.priority if el.priority is not None else DEFAULT_PROPERTY_PRIORITY,
        source=ctx.source,
        predicate=el.predicate,
    )


# -------- roll options & toggles --------
def process_roll_option(el: RollOptionRuleElement, ctx: RuleElementContext) -> RollOptionResult:
    toggleable = bool(el.toggleable)
    stored = ctx.choices.get_toggle(el.option) if (toggleable and ctx.choices is not None) else None
    if stored is not None:
        enabled = stored
    elif el.value is not None:
        enabled = el.value
    elif el.alwaysActive is not None:
        enabled = el.alwaysActive
    else:
        enabled = True
    return RollOptionResult(option=el.option, domain=el.domain or "all", toggleable=toggleable,
                            enabled=enabled, label=el.label, source=ctx.source, predicate=el.predicate)


def process_toggle_property(el: TogglePropertyRuleElement, ctx: RuleElementContext) -> TogglePropertyResult:
    stored = ctx.choices.get_toggle(el.property) if ctx.choices is not None else None
    if stored is not None:
        enabled = stored
    else:
        enabled = bool(el.value)
    return TogglePropertyResult(
        property=el.property,
        label=el.label or el.property,
        enabled=enabled,
        source=ctx.source,
        predicate=el.predicate,
        roll_option=el.rollOption,
        description=el.description,
    )


# -------- vitality --------
def process_temp_hp(el: TempHPRuleElement, ctx: RuleElementContext) -> Optional[TempHPResult]:
    value = resolve_value(el.value, ctx)
    if value is None:
        return None
    return TempHPResult(value=value, source=el.label or ctx.source,
                        events=list(el.events) if el.events else list(DEFAULT_TEMP_HP_EVENTS),
                        predicate=el.predicate)


def process_fast_healing(el: FastHealingRuleElement, ctx: RuleElementContext) -> Optional[FastHealingResult]:
    value = resolve_value(el.value, ctx)
    if value is None:
        return None
    return FastHealingResult(value=value, type=el.type or "fast-healing", source=el.label or ctx.source,
                             deactivated_by=list(el.deactivatedBy or []), predicate=el.predicate)


# -------- defenses --------
def _types(raw) -> List[str]:
    if isinstance(raw, str):
        return [raw]
    return list(raw)


def process_resistance(el: ResistanceRuleElement, ctx: RuleElementContext) -> Optional[ResistanceResult]:
    value = resolve_value(el.value, ctx)
    if value is None:
        return None
    return ResistanceResult(types=_types(el.type), value=value, exceptions=list(el.exceptions or []),
                            source=ctx.source, predicate=el.predicate)


def process_weakness(el: WeaknessRuleElement, ctx: RuleElementContext) -> Optional[WeaknessResult]:
    value = resolve_value(el.value, ctx)
    if value is None:
        return None
    return WeaknessResult(types=_types(el.type), value=value, source=ctx.source, predicate=el.predicate)


def process_immunity(el: ImmunityRuleElement, ctx: RuleElementContext) -> ImmunityResult:
    return ImmunityResult(type=el.type, values=_types(el.value), source=ctx.source, predicate=el.predicate)


# -------- creature --------
def process_creature_size(el: CreatureSizeRuleElement, ctx: RuleElementContext) -> CreatureSizeResult:
    return CreatureSizeResult(size=el.value, resize_by=el.resizeBy or 0, maximum_size=el.maximumSize,
                              minimum_size=el.minimumSize, source=ctx.source, predicate=el.predicate)


def process_actor_traits(el: ActorTraitsRuleElement, ctx: RuleElementContext) -> ActorTraitsResult:
    return ActorTraitsResult(add=list(el.add or []), remove=list(el.remove or []),
                             source=ctx.source, predicate=el.predicate)


# key -> (processor, bucket); AdjustModifier and WeaponPotency are routed specially
PROCESSORS: Dict[str, Tuple[Callable[..., Any], str]] = {
    "FlatModifier": (process_flat_modifier, "modifiers"),
    "DamageDice": (process_damage_dice, "damage_dice"),
    "BaseSpeed": (process_base_speed, "speeds"),
    "Sense": (process_sense, "senses"),
    "GrantItem": (process_grant_item, "granted_items"),
    "ChoiceSet": (process_choice_set, "choice_sets"),
    "ActiveEffectLike": (process_active_effect_like, "property_modifications"),
    "RollOption": (process_roll_option, "roll_options"),
    "ToggleProperty": (process_toggle_property, "toggle_properties"),
    "WeaponPotency": (process_weapon_potency, "weapon_potencies"),
    "Striking": (process_striking, "striking_bonuses"),
    "TempHP": (process_temp_hp, "temp_hp"),
    "FastHealing": (process_fast_healing, "fast_healing"),
    "Resistance": (process_resistance, "resistances"),
    "Weakness": (process_weakness, "weaknesses"),
    "Immunity": (process_immunity, "immunities"),
    "CreatureSize": (process_creature_size, "size_modifiers"),
    "ActorTraits": (process_actor_traits, "trait_modifications"),
}
