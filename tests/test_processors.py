import pytest
from pfbuilder.engine.choices import ChoiceStore
from pfbuilder.engine.context import RuleElementContext
from pfbuilder.engine.processors import (
    generate_label, process_active_effect_like, process_actor_traits, process_adjust_modifier,
    process_base_speed, process_choice_set, process_creature_size, process_damage_dice,
    process_fast_healing, process_flat_modifier, process_grant_item, process_immunity,
    process_resistance, process_roll_option, process_sense, process_striking, process_temp_hp,
    process_toggle_property, process_weakness, process_weapon_potency,
)
from pfbuilder.engine.results import Modifier
from pfbuilder.engine.schema_models import (
    ActiveEffectLikeRuleElement, ActorTraitsRuleElement, AdjustModifierRuleElement, BaseSpeedRuleElement,
    ChoiceSetRuleElement, CreatureSizeRuleElement, DamageDiceRuleElement, FastHealingRuleElement,
    FlatModifierRuleElement, GrantItemRuleElement, ImmunityRuleElement, ResistanceRuleElement,
    RollOptionRuleElement, SenseRuleElement, StrikingRuleElement, TempHPRuleElement,
    TogglePropertyRuleElement, WeaknessRuleElement, WeaponPotencyRuleElement,
)


@pytest.fixture
def ctx():
    return RuleElementContext(source="Fleet", level=5)


def _mod(selector="ac", value=1, label="Mod", source="Src", mtype="untyped"):
    return Modifier(label=label, source=source, value=value, type=mtype, selector=selector)


# -------- FlatModifier --------
def test_flat_modifier_scenario(ctx):
    el = FlatModifierRuleElement(selector="speed", value=5, type="untyped", label="Fleet")
    m = process_flat_modifier(el, ctx)
    assert m.label == "Fleet"
    assert m.value == 5
    assert m.type == "untyped"
    assert m.selector == "speed"
    assert m.source == ctx.source
    assert m.enabled is True
    assert m.always_active is True


def test_flat_modifier_defaults(ctx):
    m = process_flat_modifier(FlatModifierRuleElement(selector="land-speed", value=10), ctx)
    assert m.type == "untyped"
    assert m.label == "+10 Land Speed"
    m = process_flat_modifier(FlatModifierRuleElement(selector="ac", value=-1, predicate=["rage"], enabled=False), ctx)
    assert m.label == "-1 Ac"
    assert m.always_active is False
    assert m.enabled is False
    assert m.predicate == ["rage"]


def test_flat_modifier_formula_and_inert(ctx):
    assert process_flat_modifier(FlatModifierRuleElement(selector="max-hp", value="@actor.level"), ctx).value == 5
    assert process_flat_modifier(FlatModifierRuleElement(selector="max-hp", value="@actor.level + 1"), ctx) is None


def test_generate_label():
    assert generate_label("speed", 5) == "+5 Speed"
    assert generate_label("will", 0) == "+0 Will"
    assert generate_label("all-checks", -2) == "-2 All Checks"


def test_processing_is_deterministic(ctx):
    el = FlatModifierRuleElement(selector="ac", value="@actor.level / 2", type="status")
    assert process_flat_modifier(el, ctx) == process_flat_modifier(el, ctx)
    el2 = ResistanceRuleElement(type=["fire", "cold"], value=5)
    assert process_resistance(el2, ctx) == process_resistance(el2, ctx)


# -------- AdjustModifier --------
@pytest.mark.parametrize("mode,value,expected", [
    ("add", 2, 4),
    ("multiply", 3, 6),
    ("override", 7, 7),
    ("upgrade", 5, 5),
    ("upgrade", 1, 2),
    ("downgrade", 1, 1),
    ("downgrade", 5, 2),
])
def test_adjust_modes(ctx, mode, value, expected):
    mods = [_mod(value=2)]
    out = process_adjust_modifier(AdjustModifierRuleElement(selector="ac", mode=mode, value=value), mods, ctx)
    assert out[0].value == expected
    assert out[0].source == "Src (adjusted)"
    assert mods[0].value == 2  # input untouched


def test_adjust_defaults_to_add_zero(ctx):
    out = process_adjust_modifier(AdjustModifierRuleElement(selector="ac"), [_mod(value=3)], ctx)
    assert out[0].value == 3
    assert out[0].source.endswith("(adjusted)")


def test_adjust_non_matching_selector_returns_same_list(ctx):
    mods = [_mod(selector="ac"), _mod(selector="speed")]
    out = process_adjust_modifier(AdjustModifierRuleElement(selector="will", value=5), mods, ctx)
    assert out is mods
    assert out == [_mod(selector="ac"), _mod(selector="speed")]


def test_adjust_slug_narrows_case_insensitive(ctx):
    mods = [_mod(label="Inspire Courage", value=1), _mod(label="Other", source="Bless Spell", value=1), _mod(label="X", value=1)]
    out = process_adjust_modifier(AdjustModifierRuleElement(selector="ac", slug="COURAGE", value=1), mods, ctx)
    assert [m.value for m in out] == [2, 1, 1]
    out = process_adjust_modifier(AdjustModifierRuleElement(selector="ac", slug="bless", value=1), mods, ctx)
    assert [m.value for m in out] == [1, 2, 1]
    out = process_adjust_modifier(AdjustModifierRuleElement(selector="ac", slug="nothing", value=1), mods, ctx)
    assert out is mods


# -------- WeaponPotency / Striking --------
def test_weapon_potency_two_modifiers(ctx):
    r = process_weapon_potency(WeaponPotencyRuleElement(value=2), ctx)
    assert r.potency == 2
    assert r.attack_modifier.selector == "strike-attack-roll"
    assert r.damage_modifier.selector == "strike-damage"
    for m in (r.attack_modifier, r.damage_modifier):
        assert m.label == "+2 Weapon Potency"
        assert m.type == "item"
        assert m.value == 2


def test_weapon_potency_clamped_and_custom_selector(ctx):
    assert process_weapon_potency(WeaponPotencyRuleElement(value=5), ctx).potency == 3
    assert process_weapon_potency(WeaponPotencyRuleElement(value=0), ctx).potency == 1
    r = process_weapon_potency(WeaponPotencyRuleElement(value=1, selector="longsword-attack-roll"), ctx)
    assert r.damage_modifier.selector == "longsword-damage"


def test_striking(ctx):
    r = process_striking(StrikingRuleElement(value=2), ctx)
    assert r.extra_dice == 2
    assert r.selector == "strike-damage"
    assert process_striking(StrikingRuleElement(value=9), ctx).extra_dice == 3


# -------- DamageDice --------
def test_damage_dice_defaults(ctx):
    d = process_damage_dice(DamageDiceRuleElement(selector="strike-damage"), ctx)
    assert (d.dice_number, d.die_size, d.damage_type) == (1, "d6", "untyped")
    assert d.override is False
    assert d.enabled is True


def test_damage_dice_override(ctx):
    el = DamageDiceRuleElement(selector="strike-damage", diceNumber=2, dieSize="d6", damageType="fire",
                               override={"dieSize": "d8"})
    d = process_damage_dice(el, ctx)
    assert (d.dice_number, d.die_size, d.damage_type) == (2, "d8", "fire")
    assert d.override is True


# -------- Speed / Sense --------
def test_base_speed(ctx):
    assert process_base_speed(BaseSpeedRuleElement(value=25), ctx).type == "land"
    s = process_base_speed(BaseSpeedRuleElement(selector="fly", value="@actor.level * 10"), ctx)
    assert (s.type, s.value) == ("fly", 50)
    assert process_base_speed(BaseSpeedRuleElement(value="fast"), ctx) is None


def test_sense_labels(ctx):
    s = process_sense(SenseRuleElement(selector="darkvision"), ctx)
    assert (s.acuity, s.label) == ("precise", "Darkvision")
    s = process_sense(SenseRuleElement(selector="scent", range=30), ctx)
    assert (s.acuity, s.label) == ("imprecise", "Scent 30 feet (imprecise)")
    s = process_sense(SenseRuleElement(selector="lifesense", range=10), ctx)
    assert s.label == "Lifesense 10 feet (vague)"
    s = process_sense(SenseRuleElement(selector="tremorsense", range=60, acuity="precise"), ctx)
    assert s.label == "Tremorsense 60 feet"
    s = process_sense(SenseRuleElement(selector="low-light-vision"), ctx)
    assert s.label == "Low Light Vision"
    assert process_sense(SenseRuleElement(selector="wavesense"), ctx).acuity == "imprecise"


# -------- GrantItem --------
def test_grant_item(ctx):
    assert process_grant_item(GrantItemRuleElement(), ctx) is None
    g = process_grant_item(GrantItemRuleElement(uuid="Compendium.pf2e.feats.Shield Block"), ctx)
    assert g.allow_duplicate is False
    assert g.source == "Fleet"
    assert process_grant_item(GrantItemRuleElement(uuid="x", level=6), ctx) is None
    assert process_grant_item(GrantItemRuleElement(item={"name": "Torch"}, level=5), ctx) is not None


# -------- ChoiceSet --------
CHOICES = [{"value": "fortitude", "label": "Fortitude"}, {"value": "will", "label": "Will"}]


def test_choice_set_defaults():
    ctx = RuleElementContext(source="Canny  Acumen", level=1)
    p = process_choice_set(ChoiceSetRuleElement(choices=CHOICES), ctx)
    assert p.flag == "choice-canny-acumen"
    assert p.prompt == "Make a selection"
    assert p.selection_count == 1
    assert p.selection is None


def test_choice_set_without_choices_is_rejected(ctx):
    assert process_choice_set(ChoiceSetRuleElement(choices=[]), ctx) is None


def test_choice_set_reads_store_selection():
    store = ChoiceStore(selections={"cannyAcumen": "will"})
    ctx = RuleElementContext(source="Canny Acumen", level=1, choices=store)
    p = process_choice_set(ChoiceSetRuleElement(flag="cannyAcumen", choices=CHOICES, selection=1, adjustName=True), ctx)
    assert p.selection == "will"
    assert p.adjust_name is True


# -------- ActiveEffectLike --------
def test_active_effect_like_defaults(ctx):
    pm = process_active_effect_like(ActiveEffectLikeRuleElement(path="system.attributes.dying.max", mode="add", value=1), ctx)
    assert pm.phase == "applyAEs"
    assert pm.priority == 100
    assert pm.value == 1


def test_active_effect_like_placeholder_from_store():
    store = ChoiceStore(selections={"fighterSkill": "athletics"})
    ctx = RuleElementContext(source="Fighter", level=3, choices=store)
    el = ActiveEffectLikeRuleElement(path="system.skills.{item|flags.pf2e.rulesSelections.fighterSkill}.rank",
                                     mode="upgrade", value=1, phase="beforeDerived", priority=20)
    pm = process_active_effect_like(el, ctx)
    assert pm.path == "system.skills.athletics.rank"
    assert (pm.mode, pm.phase, pm.priority) == ("upgrade", "beforeDerived", 20)


def test_active_effect_like_unresolved_selection_is_inert(ctx):
    el = ActiveEffectLikeRuleElement(path="system.skills.{item|flags.pf2e.rulesSelections.fighterSkill}.rank",
                                     mode="upgrade", value=1)
    assert process_active_effect_like(el, ctx) is None


# -------- RollOption / ToggleProperty --------
def test_roll_option_defaults(ctx):
    r = process_roll_option(RollOptionRuleElement(option="rage"), ctx)
    assert (r.domain, r.toggleable, r.enabled) == ("all", False, True)
    assert process_roll_option(RollOptionRuleElement(option="rage", value=False), ctx).enabled is False
    assert process_roll_option(RollOptionRuleElement(option="rage", alwaysActive=False), ctx).enabled is False


def test_roll_option_toggle_state_from_store():
    store = ChoiceStore()
    store.set_toggle("power-attack", True)
    ctx = RuleElementContext(source="Power Attack", level=1, choices=store)
    r = process_roll_option(RollOptionRuleElement(option="power-attack", toggleable=True, value=False), ctx)
    assert r.enabled is True
    # non-toggleable options ignore the store
    r = process_roll_option(RollOptionRuleElement(option="power-attack", value=False), ctx)
    assert r.enabled is False


def test_toggle_property(ctx):
    t = process_toggle_property(TogglePropertyRuleElement(property="flags.pf2e.barbarian.rage", label="Rage"), ctx)
    assert t.enabled is False
    assert t.label == "Rage"
    store = ChoiceStore(toggles={"flags.pf2e.barbarian.rage": True})
    ctx2 = RuleElementContext(source="Rage", level=1, choices=store)
    assert process_toggle_property(TogglePropertyRuleElement(property="flags.pf2e.barbarian.rage"), ctx2).enabled is True


# -------- vitality --------
def test_temp_hp(ctx):
    t = process_temp_hp(TempHPRuleElement(value="@actor.level", label="Rage"), ctx)
    assert (t.value, t.source, t.events) == (5, "Rage", ["effect-start"])
    t = process_temp_hp(TempHPRuleElement(value=3, events=["turn-start"]), ctx)
    assert (t.source, t.events) == ("Fleet", ["turn-start"])
    assert process_temp_hp(TempHPRuleElement(value="lots"), ctx) is None


def test_fast_healing(ctx):
    f = process_fast_healing(FastHealingRuleElement(value=10, type="regeneration", deactivatedBy=["fire"]), ctx)
    assert (f.value, f.type, f.deactivated_by, f.active) == (10, "regeneration", ["fire"], True)
    assert process_fast_healing(FastHealingRuleElement(value=2), ctx).type == "fast-healing"


# -------- defenses --------
def test_resistance_weakness_immunity(ctx):
    r = process_resistance(ResistanceRuleElement(type="fire", value=5, exceptions=["adamantine"]), ctx)
    assert (r.types, r.value, r.exceptions) == (["fire"], 5, ["adamantine"])
    r = process_resistance(ResistanceRuleElement(type=["fire", "cold"], value="@actor.level / 2"), ctx)
    assert (r.types, r.value) == (["fire", "cold"], 2)
    w = process_weakness(WeaknessRuleElement(type="all", value=3), ctx)
    assert (w.types, w.value) == (["all"], 3)
    i = process_immunity(ImmunityRuleElement(type="condition", value="paralyzed"), ctx)
    assert (i.type, i.values) == ("condition", ["paralyzed"])


# -------- creature --------
def test_creature_size_and_traits(ctx):
    s = process_creature_size(CreatureSizeRuleElement(resizeBy=1, maximumSize="huge"), ctx)
    assert (s.size, s.resize_by, s.maximum_size) == (None, 1, "huge")
    t = process_actor_traits(ActorTraitsRuleElement(add=["Undead"]), ctx)
    assert (t.add, t.remove) == (["Undead"], [])


def test_flat_modifier_user_toggle():
    store = ChoiceStore(toggles={"Rage:ac": False})
    ctx = RuleElementContext(source="Rage", level=1, choices=store)
    gated = FlatModifierRuleElement(selector="ac", value=-1, predicate=["rage"])
    assert process_flat_modifier(gated, ctx).enabled is False
    store.set_toggle("Rage:ac", True)
    assert process_flat_modifier(gated.model_copy(update={"enabled": False}), ctx).enabled is True
    # ungated modifiers are not user-toggleable
    store.set_toggle("Rage:ac", False)
    assert process_flat_modifier(FlatModifierRuleElement(selector="ac", value=-1), ctx).enabled is True
    assert process_flat_modifier(gated, RuleElementContext(source="Rage", level=1)).enabled is True
