from __future__ import annotations
from typing import Dict, List, Optional, Set, Union, TYPE_CHECKING
import re

from pydantic import BaseModel, Field
from .predicates import PredicateContext, evaluate_predicate
from .schema_models import ChoiceOption

if TYPE_CHECKING:
    from .results import ChoiceSetPrompt, ProcessedRuleElements, RollOptionResult, TogglePropertyResult

Selection = Union[str, List[str]]

PLACEHOLDER_RE = re.compile(r"\{item\|([^}]+)\}")


class ChoiceStore(BaseModel):
    """
    User-resolved selections (by flag) and toggle states (by key). Owned by the caller and
    passed into processing; the engine only goes through these accessors.
    """
    selections: Dict[str, Selection] = Field(default_factory=dict)
    toggles: Dict[str, bool] = Field(default_factory=dict)

    def get_selection(self, flag: str) -> Optional[Selection]:
        return self.selections.get(flag)

    def set_selection(self, flag: str, value: Selection) -> None:
        self.selections[flag] = value

    def clear_selection(self, flag: str) -> None:
        self.selections.pop(flag, None)

    def is_resolved(self, flag: str) -> bool:
        return flag in self.selections

    def get_toggle(self, key: str) -> Optional[bool]:
        return self.toggles.get(key)

    def set_toggle(self, key: str, value: bool) -> None:
        self.toggles[key] = bool(value)


# -------- placeholders --------
def resolve_placeholders(text: str, store: Optional[ChoiceStore]) -> Optional[str]:
    """
    Substitute `{item|flags.pf2e.rulesSelections.<flag>}` with the stored selection for <flag>.
    Returns None if any referenced selection is missing.
    """
    missing = False

    def _sub(m: re.Match) -> str:
        nonlocal missing
        flag = m.group(1).split(".")[-1]
        sel = store.get_selection(flag) if store is not None else None
        if isinstance(sel, list):
            # multi-selections substitute their first value
            sel = sel[0] if sel else None
        if sel is None:
            missing = True
            return m.group(0)
        return str(sel)

    out = PLACEHOLDER_RE.sub(_sub, text)
    return None if missing else out


# -------- choice prompts --------
def _as_list(selection: Selection) -> List[str]:
    return [selection] if isinstance(selection, str) else list(selection)


def get_available_choices(prompt: "ChoiceSetPrompt", ctx: PredicateContext) -> List[ChoiceOption]:
    return [c for c in prompt.choices if evaluate_predicate(c.predicate, ctx)]


def validate_selection(prompt: "ChoiceSetPrompt", selection: Selection) -> bool:
    values = _as_list(selection)
    if len(values) != prompt.selection_count or len(set(values)) != len(values):
        return False
    valid = {c.value for c in prompt.choices}
    return all(v in valid for v in values)


def apply_selection(prompt: "ChoiceSetPrompt", selection: Selection) -> "ChoiceSetPrompt":
    return prompt.model_copy(update={"selection": selection})


def get_selection_label(prompt: "ChoiceSetPrompt") -> str:
    values = prompt.selected_values()
    if not values:
        return "Not selected"
    labels = {c.value: c.label for c in prompt.choices}
    return ", ".join(labels.get(v, v) for v in values)


def is_choice_set_complete(prompt: "ChoiceSetPrompt") -> bool:
    return len(prompt.selected_values()) == prompt.selection_count


def get_incomplete_choice_sets(prompts: List["ChoiceSetPrompt"]) -> List["ChoiceSetPrompt"]:
    return [p for p in prompts if not is_choice_set_complete(p)]


def record_selection(store: ChoiceStore, prompt: "ChoiceSetPrompt", selection: Selection) -> "ChoiceSetPrompt":
    if not validate_selection(prompt, selection):
        raise ValueError(
            f"Invalid selection {selection!r} for '{prompt.flag}': expected {prompt.selection_count} of "
            f"{[c.value for c in prompt.choices]}"
        )
    store.set_selection(prompt.flag, selection)
    return apply_selection(prompt, selection)


# -------- toggles & roll options --------
def is_toggle_available(toggle: "TogglePropertyResult", ctx: PredicateContext) -> bool:
    return evaluate_predicate(toggle.predicate, ctx)


def get_toggle_roll_options(toggle: "TogglePropertyResult") -> List[str]:
    """Roll options an enabled toggle contributes: explicit, or derived from flags.pf2e.<cat>.<name>."""
    if not toggle.enabled:
        return []
    if toggle.roll_option:
        return [toggle.roll_option]
    parts = toggle.property.split(".")
    if len(parts) >= 4 and parts[0] == "flags" and parts[1] == "pf2e":
        return [":".join(parts[2:])]
    return []


def is_roll_option_active(option: "RollOptionResult", ctx: PredicateContext) -> bool:
    if not option.enabled:
        return False
    return evaluate_predicate(option.predicate, ctx)


def toggle_roll_option(store: ChoiceStore, result: Union["RollOptionResult", "TogglePropertyResult"]) -> bool:
    """Flip a toggleable roll option or toggle property in the store; returns the new state."""
    key = getattr(result, "option", None) or getattr(result, "property")
    new_state = not result.enabled
    store.set_toggle(key, new_state)
    return new_state


def collect_active_roll_options(processed: "ProcessedRuleElements", ctx: PredicateContext) -> Set[str]:
    out: Set[str] = set()
    for ro in processed.roll_options:
        if is_roll_option_active(ro, ctx):
            out.add(ro.option)
    for tp in processed.toggle_properties:
        if is_toggle_available(tp, ctx):
            out.update(get_toggle_roll_options(tp))
    return out
