from __future__ import annotations
from dataclasses import fields
from typing import Any, Iterable, List, Optional
import logging

from .context import ActorSnapshot, RuleElementContext
from .choices import ChoiceStore
from .predicates import PredicateContext, evaluate_predicate
from .processors import PROCESSORS, process_adjust_modifier
from .results import ProcessedRuleElements, WeaponPotencyResult
from .schema_models import (
    SUPPORTED_KEYS, AdjustModifierRuleElement, UnrecognizedRuleElement, parse_rule_element,
)
from .values import resolve_value

logger = logging.getLogger(__name__)


def _note(result: ProcessedRuleElements, line: str, warn: bool = True) -> None:
    result.logs.append(line)
    if warn:
        logger.warning(line)
    else:
        logger.debug(line)


def process_rule_elements(elements: Iterable[Any], context: RuleElementContext) -> ProcessedRuleElements:
    """
    Route each rule element (typed model or raw dict) to its processor, in source order.
    Unrecognized, malformed and inert elements are logged and skipped; nothing here raises.
    """
    result = ProcessedRuleElements()
    for raw in elements:
        el = parse_rule_element(raw)
        if isinstance(el, UnrecognizedRuleElement):
            _note(result, f"[Rules] Skipped '{el.key or '?'}' from {context.source}: {el.reason}")
            continue

        if isinstance(el, AdjustModifierRuleElement):
            if el.value is not None and resolve_value(el.value, context) is None:
                _note(result, f"[Rules] AdjustModifier '{el.selector}' from {context.source} has unresolvable value {el.value!r}")
                continue
            before = result.modifiers
            result.modifiers = process_adjust_modifier(el, before, context)
            if result.modifiers is before:
                _note(result, f"[Rules] AdjustModifier '{el.selector}' from {context.source} matched nothing", warn=False)
            else:
                _note(result, f"[Rules] AdjustModifier '{el.selector}' from {context.source} applied", warn=False)
            continue

        processor, bucket = PROCESSORS[el.key]
        try:
            out = processor(el, context)
        except (ValueError, TypeError, ArithmeticError) as e:
            _note(result, f"[Rules] {el.key} from {context.source} failed: {e}")
            continue
        if out is None:
            _note(result, f"[Rules] {el.key} from {context.source} has no effect", warn=False)
            continue

        getattr(result, bucket).append(out)
        if isinstance(out, WeaponPotencyResult):
            # potency feeds the modifier pool too, so later adjustments can see it
            result.modifiers.append(out.attack_modifier)
            result.modifiers.append(out.damage_modifier)
    return result


def process_source_rule_elements(source_name: str, rules: Iterable[Any], level: int = 1,
                                 actor: Optional[ActorSnapshot] = None,
                                 choices: Optional[ChoiceStore] = None) -> ProcessedRuleElements:
    ctx = RuleElementContext(source=source_name, level=level, actor=actor, choices=choices)
    return process_rule_elements(rules, ctx)


def merge_processed_rule_elements(*results: ProcessedRuleElements) -> ProcessedRuleElements:
    merged = ProcessedRuleElements()
    for r in results:
        for f in fields(ProcessedRuleElements):
            getattr(merged, f.name).extend(getattr(r, f.name))
    return merged


def filter_by_predicate(processed: ProcessedRuleElements, ctx: PredicateContext) -> ProcessedRuleElements:
    """Copy of `processed` keeping only entries whose predicate holds for `ctx`."""
    out = ProcessedRuleElements(logs=list(processed.logs))
    for name in ProcessedRuleElements.bucket_names():
        kept = [r for r in getattr(processed, name) if evaluate_predicate(r.predicate, ctx)]
        setattr(out, name, kept)
    return out


def is_rule_element_supported(key: str) -> bool:
    return key in SUPPORTED_KEYS


def get_supported_rule_elements() -> List[str]:
    return list(SUPPORTED_KEYS)
