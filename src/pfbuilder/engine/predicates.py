from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set
import logging

from pydantic import BaseModel
from .schema_models import PredicateObject

logger = logging.getLogger(__name__)

LEVEL_COMPARATORS = ("exact", "gte", "lte", "gt", "lt")


@dataclass(frozen=True)
class PredicateContext:
    """Snapshot a predicate is evaluated against. Rebuild it when game state changes."""
    options: Set[str] = field(default_factory=set)
    level: Optional[int] = None
    traits: Optional[List[str]] = None
    effects: Optional[List[str]] = None


def create_predicate_context(options: Optional[Iterable[str]] = None,
                             level: Optional[int] = None,
                             traits: Optional[Iterable[str]] = None,
                             effects: Optional[Iterable[str]] = None) -> PredicateContext:
    return PredicateContext(
        options=set(options or ()),
        level=level,
        traits=list(traits) if traits is not None else None,
        effects=list(effects) if effects is not None else None,
    )


def add_roll_option(ctx: PredicateContext, option: str) -> PredicateContext:
    return replace(ctx, options=set(ctx.options) | {option})


def remove_roll_option(ctx: PredicateContext, option: str) -> PredicateContext:
    return replace(ctx, options=set(ctx.options) - {option})


def has_roll_option(ctx: PredicateContext, option: str) -> bool:
    return option in ctx.options


# -------- evaluation --------
def evaluate_predicate(predicate: Optional[Sequence[Any]], ctx: PredicateContext) -> bool:
    """
    Evaluate a predicate (list of statements, implicit AND). No predicate is always true.
    """
    if not predicate:
        return True
    return all(evaluate_statement(stmt, ctx) for stmt in predicate)


def evaluate_statement(stmt: Any, ctx: PredicateContext) -> bool:
    if isinstance(stmt, str):
        return _evaluate_string(stmt, ctx)
    if isinstance(stmt, PredicateObject):
        return _evaluate_composite(stmt.not_, stmt.and_, stmt.or_, ctx)
    if isinstance(stmt, Mapping):
        return _evaluate_composite(stmt.get("not"), stmt.get("and"), stmt.get("or"), ctx)
    if isinstance(stmt, BaseModel):
        data = stmt.model_dump(by_alias=True)
        return _evaluate_composite(data.get("not"), data.get("and"), data.get("or"), ctx)
    logger.warning("Unsupported predicate statement %r", stmt)
    return False


def _evaluate_composite(not_: Any, and_: Optional[Sequence[Any]], or_: Optional[Sequence[Any]],
                        ctx: PredicateContext) -> bool:
    # Only the first present key counts: not, then and, then or
    if not_ is not None:
        return not evaluate_statement(not_, ctx)
    if and_ is not None:
        return all(evaluate_statement(s, ctx) for s in and_)
    if or_ is not None:
        return any(evaluate_statement(s, ctx) for s in or_)
    return True


def _evaluate_string(stmt: str, ctx: PredicateContext) -> bool:
    if stmt in ctx.options:
        return True

    parts = stmt.split(":")
    if len(parts) < 3 or parts[0] != "self":
        return False

    scope, name = parts[1], parts[2]
    if scope == "effect":
        return bool(ctx.effects) and name in ctx.effects
    if scope == "trait":
        return bool(ctx.traits) and name in ctx.traits
    if scope == "level":
        return _evaluate_level(parts[2:], ctx.level)
    return False


def _parse_int(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        return None


def _evaluate_level(args: List[str], level: Optional[int]) -> bool:
    if level is None:
        return False
    if len(args) == 1:
        # self:level:<n>
        n = _parse_int(args[0])
        return n is not None and level == n
    cmp, n = args[0], _parse_int(args[1])
    if n is None or cmp not in LEVEL_COMPARATORS:
        return False
    if cmp == "exact":
        return level == n
    if cmp == "gte":
        return level >= n
    if cmp == "lte":
        return level <= n
    if cmp == "gt":
        return level > n
    return level < n
