from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from .aggregation import (
    apply_resistance, apply_weakness, calculate_resistance, calculate_weakness, is_immune_to_damage,
)
from .predicates import PredicateContext
from .registry import filter_by_predicate
from .results import ProcessedRuleElements


@dataclass
class DamagePacket:
    amount: int
    damage_type: str
    # named origin used for resistance exceptions (e.g. "adamantine", "ghost-touch")
    source: Optional[str] = None


@dataclass
class PacketOutcome:
    packet: DamagePacket
    final: int


@dataclass
class PipelineResult:
    total: int
    outcomes: List[PacketOutcome]
    logs: List[str]


class DamageEngine:
    """
    Adjusts incoming damage by the character's standing defenses:
      1) Immunity
      2) Resistance (highest matching, honoring exceptions)
      3) Weakness (only if damage remains)
    No rolling and no HP bookkeeping: the caller owns both.
    """

    def __init__(self, processed: ProcessedRuleElements, ctx: Optional[PredicateContext] = None):
        self.defenses = filter_by_predicate(processed, ctx) if ctx is not None else processed

    def apply_packets(self, packets: List[DamagePacket]) -> PipelineResult:
        logs: List[str] = []
        outcomes: List[PacketOutcome] = []
        for p in packets:
            amount = max(0, int(p.amount))
            if is_immune_to_damage(self.defenses.immunities, p.damage_type):
                logs.append(f"[Dmg] Immune to {p.damage_type} (ignored {amount})")
                outcomes.append(PacketOutcome(p, 0))
                continue

            resist = calculate_resistance(self.defenses.resistances, p.damage_type, damage_source=p.source)
            if resist:
                after = int(apply_resistance(amount, resist))
                logs.append(f"[Dmg] Resist {p.damage_type} {resist} → {amount}->{after}")
                amount = after

            weak = calculate_weakness(self.defenses.weaknesses, p.damage_type)
            if weak and amount > 0:
                after = int(apply_weakness(amount, weak))
                logs.append(f"[Dmg] Weakness {p.damage_type} {weak} → {amount}->{after}")
                amount = after

            outcomes.append(PacketOutcome(p, amount))
        total = sum(o.final for o in outcomes)
        logs.append(f"[Dmg] Total {total}")
        return PipelineResult(total=total, outcomes=outcomes, logs=logs)
