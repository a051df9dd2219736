from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict

from .schema_models import (
    ChoiceOption, DamageCategory, FastHealingType, ImmunityType, ModifierType,
    Predicate, PropertyMode, PropertyPhase, SenseAcuity, SizeCategory,
)

Number = Union[int, float]


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)


class Modifier(_Result):
    label: str
    source: str
    value: Number
    type: ModifierType = "untyped"
    selector: str
    predicate: Optional[Predicate] = None
    enabled: bool = True
    always_active: bool = True
    description: Optional[str] = None

    def is_bonus(self) -> bool:
        return self.value > 0

    def is_penalty(self) -> bool:
        return self.value < 0


class DamageDice(_Result):
    selector: str
    dice_number: int
    die_size: str
    damage_type: str
    category: Optional[DamageCategory] = None
    override: bool = False
    source: str
    predicate: Optional[Predicate] = None
    enabled: bool = True


class Speed(_Result):
    type: str
    value: Number
    source: str
    predicate: Optional[Predicate] = None


class Sense(_Result):
    type: str
    range: Optional[int] = None
    acuity: SenseAcuity
    source: str
    label: str
    predicate: Optional[Predicate] = None
    enabled: bool = True


class GrantedItem(_Result):
    uuid: Optional[str] = None
    item: Optional[Dict[str, Any]] = None
    source: str
    allow_duplicate: bool = False
    predicate: Optional[Predicate] = None


class ChoiceSetPrompt(_Result):
    flag: str
    prompt: str
    choices: List[ChoiceOption]
    source: str
    selection_count: int = 1
    adjust_name: bool = False
    selection: Optional[Union[str, List[str]]] = None
    predicate: Optional[Predicate] = None

    def selected_values(self) -> List[str]:
        if self.selection is None:
            return []
        if isinstance(self.selection, str):
            return [self.selection]
        return list(self.selection)


class PropertyModification(_Result):
    path: str
    mode: PropertyMode
    value: Number
    phase: PropertyPhase = "applyAEs"
    priority: int = 100
    source: str
    predicate: Optional[Predicate] = None


class RollOptionResult(_Result):
    option: str
    domain: str = "all"
    toggleable: bool = False
    enabled: bool = True
    label: Optional[str] = None
    source: str
    predicate: Optional[Predicate] = None


class TogglePropertyResult(_Result):
    property: str
    label: str
    enabled: bool = False
    source: str
    predicate: Optional[Predicate] = None
    roll_option: Optional[str] = None
    description: Optional[str] = None


class WeaponPotencyResult(_Result):
    potency: int
    attack_modifier: Modifier
    damage_modifier: Modifier
    source: str
    predicate: Optional[Predicate] = None


class StrikingResult(_Result):
    extra_dice: int
    selector: str
    source: str
    predicate: Optional[Predicate] = None


class TempHPResult(_Result):
    value: Number
    source: str
    events: List[str] = ["effect-start"]
    predicate: Optional[Predicate] = None


class FastHealingResult(_Result):
    value: Number
    type: FastHealingType = "fast-healing"
    source: str
    deactivated_by: List[str] = []
    predicate: Optional[Predicate] = None
    active: bool = True


class ResistanceResult(_Result):
    types: List[str]
    value: Number
    exceptions: List[str] = []
    source: str
    predicate: Optional[Predicate] = None


class WeaknessResult(_Result):
    types: List[str]
    value: Number
    source: str
    predicate: Optional[Predicate] = None


class ImmunityResult(_Result):
    type: ImmunityType
    values: List[str]
    source: str
    predicate: Optional[Predicate] = None


class CreatureSizeResult(_Result):
    size: Optional[SizeCategory] = None
    resize_by: int = 0
    maximum_size: Optional[SizeCategory] = None
    minimum_size: Optional[SizeCategory] = None
    source: str
    predicate: Optional[Predicate] = None


class ActorTraitsResult(_Result):
    add: List[str] = []
    remove: List[str] = []
    source: str
    predicate: Optional[Predicate] = None


@dataclass
class ProcessedRuleElements:
    """Aggregate result: one ordered bucket per category, plus processing log lines."""
    modifiers: List[Modifier] = field(default_factory=list)
    damage_dice: List[DamageDice] = field(default_factory=list)
    speeds: List[Speed] = field(default_factory=list)
    senses: List[Sense] = field(default_factory=list)
    granted_items: List[GrantedItem] = field(default_factory=list)
    choice_sets: List[ChoiceSetPrompt] = field(default_factory=list)
    property_modifications: List[PropertyModification] = field(default_factory=list)
    roll_options: List[RollOptionResult] = field(default_factory=list)
    toggle_properties: List[TogglePropertyResult] = field(default_factory=list)
    weapon_potencies: List[WeaponPotencyResult] = field(default_factory=list)
    striking_bonuses: List[StrikingResult] = field(default_factory=list)
    temp_hp: List[TempHPResult] = field(default_factory=list)
    fast_healing: List[FastHealingResult] = field(default_factory=list)
    resistances: List[ResistanceResult] = field(default_factory=list)
    weaknesses: List[WeaknessResult] = field(default_factory=list)
    immunities: List[ImmunityResult] = field(default_factory=list)
    size_modifiers: List[CreatureSizeResult] = field(default_factory=list)
    trait_modifications: List[ActorTraitsResult] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @classmethod
    def bucket_names(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.name != "logs"]

    def total(self) -> int:
        return sum(len(getattr(self, name)) for name in self.bucket_names())

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in self.bucket_names():
            out[name] = [r.model_dump(mode="json") for r in getattr(self, name)]
        out["logs"] = list(self.logs)
        return out
