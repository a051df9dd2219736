from __future__ import annotations
from typing import Optional, Union
from functools import lru_cache
import logging
import math
import re

from py_expression_eval import Parser
from .context import RuleElementContext

logger = logging.getLogger(__name__)

Number = Union[int, float]

# Accepted formula grammar. Each pattern maps onto a canonical expression for the parser;
# nothing outside these shapes is ever handed to it.
_LEVEL_RE = re.compile(r"^@actor\.level$")
_LEVEL_MUL_RE = re.compile(r"^@actor\.level\s*\*\s*(\d+)$")
_LEVEL_DIV_RE = re.compile(r"^@actor\.level\s*/\s*(\d+)$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")

_parser = Parser()
_parser.functions["floor"] = math.floor


@lru_cache(maxsize=1024)
def _compile_expr(expr: str):
    return _parser.parse(expr)


def _normalize(value: float) -> Number:
    f = float(value)
    return int(f) if f.is_integer() else f


def formula_to_expr(formula: str) -> Optional[str]:
    """
    Translate an accepted formula into a parser expression over `level`.
    Returns None when the formula is outside the grammar.
    """
    s = formula.strip()
    if _LEVEL_RE.match(s):
        return "level"
    m = _LEVEL_MUL_RE.match(s)
    if m:
        return f"level * {int(m.group(1))}"
    m = _LEVEL_DIV_RE.match(s)
    if m:
        divisor = int(m.group(1))
        if divisor == 0:
            return None
        return f"floor(level / {divisor})"
    return None


def resolve_value(value: Union[Number, str, None], context: Optional[RuleElementContext] = None) -> Optional[Number]:
    """
    Resolve a rule-element operand: numbers pass through, formula strings are matched
    against the fixed grammar (@actor.level, level * N, level / N, numeric strings).
    Unresolvable operands give None; the owning rule element is then inert.
    """
    if isinstance(value, bool) or value is None:
        logger.warning("Cannot resolve rule element value %r", value)
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        logger.warning("Cannot resolve rule element value %r", value)
        return None

    s = value.strip()
    if _NUMBER_RE.match(s):
        return _normalize(float(s))

    expr = formula_to_expr(s)
    if expr is None:
        logger.warning("Unsupported formula %r", value)
        return None
    level = context.level if context is not None else 0
    return _normalize(_compile_expr(expr).evaluate({"level": level}))


def is_formula(value: object) -> bool:
    return isinstance(value, str) and formula_to_expr(value) is not None
