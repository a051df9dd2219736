from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .choices import ChoiceStore


@dataclass
class ActorSnapshot:
    level: int = 1
    abilities: Dict[str, int] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleElementContext:
    """Per-pass processing context. Created by the caller, never persisted."""
    source: str
    level: int = 1
    actor: Optional[ActorSnapshot] = None
    # Caller-owned selection/toggle store; read and written through its accessors only
    choices: Optional["ChoiceStore"] = None
