from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional, Union
from typing_extensions import Annotated
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

# ---- Shared literals ----
ModifierType = Literal["status", "circumstance", "item", "untyped"]
AdjustMode = Literal["add", "multiply", "override", "upgrade", "downgrade"]
PropertyMode = Literal["add", "subtract", "multiply", "override", "upgrade", "downgrade"]
PropertyPhase = Literal["applyAEs", "beforeDerived", "afterDerived", "beforeRoll"]
SenseAcuity = Literal["precise", "imprecise", "vague"]
SizeCategory = Literal["tiny", "small", "medium", "large", "huge", "gargantuan"]
SIZE_ORDER = ("tiny", "small", "medium", "large", "huge", "gargantuan")
FastHealingType = Literal["fast-healing", "regeneration"]
ImmunityType = Literal["damage", "condition", "effect", "critical-hits", "precision-damage"]
DamageCategory = Literal["persistent", "precision", "splash"]

# Operand: literal number or a formula string (see values.resolve_value)
ValueExpr = Union[int, float, str]


# ---- Predicate statements ----
class PredicateObject(BaseModel):
    """Composite statement: {"and": [...]}, {"or": [...]} or {"not": stmt}."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    and_: Optional[List["PredicateStatement"]] = Field(default=None, alias="and")
    or_: Optional[List["PredicateStatement"]] = Field(default=None, alias="or")
    not_: Optional["PredicateStatement"] = Field(default=None, alias="not")


PredicateStatement = Union[str, PredicateObject]
Predicate = List[PredicateStatement]
PredicateObject.model_rebuild()


class _RuleElementBase(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    label: Optional[str] = None
    predicate: Optional[Predicate] = None


# ---- Variants ----
class FlatModifierRuleElement(_RuleElementBase):
    key: Literal["FlatModifier"] = "FlatModifier"
    selector: str
    value: ValueExpr
    type: Optional[ModifierType] = None
    enabled: Optional[bool] = None
    description: Optional[str] = None


class AdjustModifierRuleElement(_RuleElementBase):
    key: Literal["AdjustModifier"] = "AdjustModifier"
    selector: str
    slug: Optional[str] = None
    mode: Optional[AdjustMode] = None
    value: Optional[ValueExpr] = None


class DamageDiceOverride(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    diceNumber: Optional[int] = None
    dieSize: Optional[str] = None
    damageType: Optional[str] = None


class DamageDiceRuleElement(_RuleElementBase):
    key: Literal["DamageDice"] = "DamageDice"
    selector: str
    diceNumber: Optional[int] = None
    dieSize: Optional[str] = None
    damageType: Optional[str] = None
    category: Optional[DamageCategory] = None
    override: Optional[DamageDiceOverride] = None

    @model_validator(mode="after")
    def _check_die(self):
        errs: List[str] = []
        for die in (self.dieSize, self.override.dieSize if self.override else None):
            if die is not None and not (die.startswith("d") and die[1:].isdigit()):
                errs.append(f"dieSize must look like 'd6' (got {die!r})")
        if self.diceNumber is not None and self.diceNumber < 0:
            errs.append("diceNumber must be >= 0")
        if errs:
            raise ValueError("; ".join(errs))
        return self


class BaseSpeedRuleElement(_RuleElementBase):
    key: Literal["BaseSpeed"] = "BaseSpeed"
    selector: Optional[str] = None
    value: ValueExpr


class SenseRuleElement(_RuleElementBase):
    key: Literal["Sense"] = "Sense"
    selector: str
    range: Optional[int] = None
    acuity: Optional[SenseAcuity] = None


class GrantItemRuleElement(_RuleElementBase):
    key: Literal["GrantItem"] = "GrantItem"
    uuid: Optional[str] = None
    item: Optional[Dict[str, Any]] = None
    allowDuplicate: Optional[bool] = None
    level: Optional[int] = None


class ChoiceOption(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    value: str
    label: str
    img: Optional[str] = None
    predicate: Optional[Predicate] = None


class ChoiceSetRuleElement(_RuleElementBase):
    key: Literal["ChoiceSet"] = "ChoiceSet"
    flag: Optional[str] = None
    prompt: Optional[str] = None
    choices: List[ChoiceOption] = Field(default_factory=list)
    adjustName: Optional[bool] = None
    allowedDrops: Optional[Dict[str, Any]] = None
    selection: Optional[int] = None


class ActiveEffectLikeRuleElement(_RuleElementBase):
    key: Literal["ActiveEffectLike"] = "ActiveEffectLike"
    path: str
    mode: PropertyMode
    value: ValueExpr
    phase: Optional[PropertyPhase] = None
    priority: Optional[int] = None


class RollOptionRuleElement(_RuleElementBase):
    key: Literal["RollOption"] = "RollOption"
    option: str
    domain: Optional[str] = None
    toggleable: Optional[bool] = None
    value: Optional[bool] = None
    alwaysActive: Optional[bool] = None


class TogglePropertyRuleElement(_RuleElementBase):
    key: Literal["ToggleProperty"] = "ToggleProperty"
    property: str
    value: Optional[bool] = None
    rollOption: Optional[str] = None
    description: Optional[str] = None


class WeaponPotencyRuleElement(_RuleElementBase):
    key: Literal["WeaponPotency"] = "WeaponPotency"
    value: ValueExpr
    selector: Optional[str] = None


class StrikingRuleElement(_RuleElementBase):
    key: Literal["Striking"] = "Striking"
    value: ValueExpr
    selector: Optional[str] = None


class TempHPRuleElement(_RuleElementBase):
    key: Literal["TempHP"] = "TempHP"
    value: ValueExpr
    events: Optional[List[str]] = None


class FastHealingRuleElement(_RuleElementBase):
    key: Literal["FastHealing"] = "FastHealing"
    value: ValueExpr
    type: Optional[FastHealingType] = None
    deactivatedBy: Optional[List[str]] = None


class ResistanceRuleElement(_RuleElementBase):
    key: Literal["Resistance"] = "Resistance"
    type: Union[str, List[str]]
    value: ValueExpr
    exceptions: Optional[List[str]] = None


class WeaknessRuleElement(_RuleElementBase):
    key: Literal["Weakness"] = "Weakness"
    type: Union[str, List[str]]
    value: ValueExpr


class ImmunityRuleElement(_RuleElementBase):
    key: Literal["Immunity"] = "Immunity"
    type: ImmunityType
    value: Union[str, List[str]]


class CreatureSizeRuleElement(_RuleElementBase):
    key: Literal["CreatureSize"] = "CreatureSize"
    value: Optional[SizeCategory] = None
    resizeBy: Optional[int] = None
    maximumSize: Optional[SizeCategory] = None
    minimumSize: Optional[SizeCategory] = None

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.maximumSize and self.minimumSize:
            if SIZE_ORDER.index(self.minimumSize) > SIZE_ORDER.index(self.maximumSize):
                raise ValueError("minimumSize cannot be larger than maximumSize")
        return self


class ActorTraitsRuleElement(_RuleElementBase):
    key: Literal["ActorTraits"] = "ActorTraits"
    add: Optional[List[str]] = None
    remove: Optional[List[str]] = None


class UnrecognizedRuleElement(BaseModel):
    """Payload whose kind is unknown or whose fields failed validation; processing skips it."""
    model_config = ConfigDict(frozen=True)

    key: str
    raw: Dict[str, Any] = Field(default_factory=dict)
    reason: str = "unsupported kind"


KnownRuleElement = Annotated[Union[
    FlatModifierRuleElement, AdjustModifierRuleElement, DamageDiceRuleElement,
    BaseSpeedRuleElement, SenseRuleElement, GrantItemRuleElement, ChoiceSetRuleElement,
    ActiveEffectLikeRuleElement, RollOptionRuleElement, TogglePropertyRuleElement,
    WeaponPotencyRuleElement, StrikingRuleElement, TempHPRuleElement, FastHealingRuleElement,
    ResistanceRuleElement, WeaknessRuleElement, ImmunityRuleElement,
    CreatureSizeRuleElement, ActorTraitsRuleElement,
], Field(discriminator="key")]

RuleElement = Union[KnownRuleElement, UnrecognizedRuleElement]

RuleElementAdapter = TypeAdapter(KnownRuleElement)

# Order matches the upstream registry listing
SUPPORTED_KEYS: List[str] = [
    "FlatModifier", "AdjustModifier", "DamageDice", "BaseSpeed", "Sense", "GrantItem",
    "ChoiceSet", "ActiveEffectLike", "RollOption", "ToggleProperty", "WeaponPotency",
    "Striking", "TempHP", "FastHealing", "Resistance", "Weakness", "Immunity",
    "CreatureSize", "ActorTraits",
]


def parse_rule_element(raw: Any) -> RuleElement:
    """
    Turn a raw payload into a typed rule element. Never raises: anything that cannot be
    understood comes back as UnrecognizedRuleElement carrying the raw payload.
    """
    if isinstance(raw, BaseModel):
        return raw  # already typed
    if not isinstance(raw, dict):
        return UnrecognizedRuleElement(key="", raw={"value": raw}, reason="rule element is not a mapping")
    key = raw.get("key")
    if not isinstance(key, str) or not key:
        return UnrecognizedRuleElement(key="", raw=dict(raw), reason="missing kind tag")
    if key not in SUPPORTED_KEYS:
        return UnrecognizedRuleElement(key=key, raw=dict(raw))
    try:
        return RuleElementAdapter.validate_python(raw)
    except ValidationError as e:
        msgs = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        return UnrecognizedRuleElement(key=key, raw=dict(raw), reason=f"malformed: {msgs}")


# ---- Authored content ----
SourceKind = Literal["feat", "class-feature", "ancestry", "heritage", "background",
                     "equipment", "condition", "spell", "effect"]


class RuleSource(BaseModel):
    """A rule-element-bearing item: a feat, piece of gear, condition, spell or effect."""
    id: str
    name: str
    kind: SourceKind = "feat"
    level: Optional[int] = None
    description: Optional[str] = None
    rules: List[Dict[str, Any]] = Field(default_factory=list)

    def parsed_rules(self) -> List[RuleElement]:
        return [parse_rule_element(r) for r in self.rules]

    @model_validator(mode="after")
    def _check_rules(self):
        errs: List[str] = []
        for i, r in enumerate(self.rules):
            if not isinstance(r.get("key"), str):
                errs.append(f"rules[{i}] has no 'key'")
        if errs:
            raise ValueError("; ".join(errs))
        return self
