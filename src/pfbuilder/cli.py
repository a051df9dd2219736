from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import json
import logging

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pfbuilder.engine.loader import (
    DEFAULT_CONTENT_DIR, RuleSourceAdapter, iter_source_files, load_character, load_sources, read_source_docs,
)
from pfbuilder.engine.registry import get_supported_rule_elements, merge_processed_rule_elements, process_source_rule_elements
from pfbuilder.engine.schema_models import (
    ChoiceSetRuleElement, GrantItemRuleElement, UnrecognizedRuleElement, parse_rule_element,
)
from pfbuilder.engine.settings import SETTINGS_PATH, EngineSettings, load_settings
from pfbuilder.engine.sheet import build_sheet
from pfbuilder.engine.values import resolve_value

app = typer.Typer()
console = Console()


def _setup(settings_path: Path) -> EngineSettings:
    settings = load_settings(settings_path)
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.WARNING),
                        format="%(levelname)s %(name)s: %(message)s")
    return settings


def _content_dir(content: Optional[Path], settings: EngineSettings) -> Path:
    if content is not None:
        return content
    if settings.content_dir:
        return Path(settings.content_dir)
    return DEFAULT_CONTENT_DIR


@app.command()
def sheet(character: Path,
          content: Optional[Path] = typer.Option(None, help="Rule source directory"),
          option: List[str] = typer.Option([], "--option", "-o", help="Extra active roll option"),
          as_json: bool = typer.Option(False, "--json", help="Print the sheet as JSON"),
          settings_path: Path = typer.Option(SETTINGS_PATH, "--settings")):
    """Build and print the character sheet for CHARACTER."""
    settings = _setup(settings_path)
    index = load_sources(_content_dir(content, settings))
    state, sources = load_character(character, index)
    if "size" not in state.model_fields_set:
        state = state.model_copy(update={"size": settings.default_size})
    if option:
        state = state.model_copy(update={"roll_options": state.roll_options + list(option)})
    result = build_sheet(state, sources)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return

    t = Table(title=f"{result.name} (level {result.level})")
    t.add_column("Field")
    t.add_column("Value")
    t.add_row("Traits", ", ".join(result.traits) or "-")
    t.add_row("Size", f"{result.size} (space {result.space} ft, reach {result.reach} ft)")
    t.add_row("Speed", result.speed_text or "-")
    t.add_row("Senses", ", ".join(s.label for s in result.senses) or "-")
    t.add_row("Resistances", ", ".join(f"{k} {v}" for k, v in result.resistances.items()) or "-")
    t.add_row("Weaknesses", ", ".join(f"{k} {v}" for k, v in result.weaknesses.items()) or "-")
    t.add_row("Temp HP", str(result.temp_hp.value if result.temp_hp else 0))
    t.add_row("Fast healing", str(result.fast_healing))
    for sel, dice in result.damage_dice.items():
        t.add_row(f"Dice: {sel}", dice)
    for sel, stat in result.statistics.items():
        t.add_row(stat.label or sel, f"{stat.total:+}")
    for p in result.pending_choices:
        t.add_row("Pending choice", f"{p.prompt} [{p.flag}]")
    for tg in result.toggles:
        t.add_row("Toggle", f"{tg.label}: {'on' if tg.enabled else 'off'}")
    console.print(t)
    if settings.show_logs:
        for line in result.logs:
            typer.echo(line)


@app.command()
def process(path: Path,
            level: int = typer.Option(1, help="Character level for formulas and level gates"),
            settings_path: Path = typer.Option(SETTINGS_PATH, "--settings")):
    """Process every rule source in PATH and dump the merged aggregate as JSON."""
    _setup(settings_path)
    index = load_sources(path)
    merged = merge_processed_rule_elements(*[
        process_source_rule_elements(src.name, src.rules, level=level) for src in index.sources.values()
    ])
    typer.echo(json.dumps(merged.to_dict(), indent=2))


def lint_rule(raw: dict) -> List[str]:
    """Problems that would make a rule element inert at processing time."""
    el = parse_rule_element(raw)
    if isinstance(el, UnrecognizedRuleElement):
        return [f"{el.key or '?'}: {el.reason}"]
    problems: List[str] = []
    value = getattr(el, "value", None)
    if isinstance(value, str) and resolve_value(value) is None:
        problems.append(f"{el.key}: unsupported formula {value!r}")
    if isinstance(el, GrantItemRuleElement) and not el.uuid and not el.item:
        problems.append("GrantItem: needs uuid or item")
    if isinstance(el, ChoiceSetRuleElement) and not el.choices:
        problems.append("ChoiceSet: no choices")
    return problems


@app.command()
def validate(paths: List[Path],
             strict: Optional[bool] = typer.Option(None, "--strict/--lenient", help="Fail on unknown kinds and inert elements"),
             settings_path: Path = typer.Option(SETTINGS_PATH, "--settings")):
    """Validate rule source files (YAML/JSON)."""
    settings = _setup(settings_path)
    strict = settings.strict_validation if strict is None else strict
    errors: List[str] = []
    warnings: List[str] = []
    for root in paths:
        for fp in iter_source_files(root):
            try:
                docs = read_source_docs(fp)
            except (OSError, ValueError, yaml.YAMLError) as e:
                errors.append(f"{fp}: cannot read: {e}")
                continue
            for doc in docs:
                try:
                    src = RuleSourceAdapter.validate_python(doc)
                except ValidationError as e:
                    errors.append(f"{fp}: {e}")
                    continue
                for i, raw in enumerate(src.rules):
                    for problem in lint_rule(raw):
                        msg = f"{fp}:{src.id}.rules[{i}]: {problem}"
                        (errors if strict else warnings).append(msg)
    for w in warnings:
        typer.echo(f"WARN {w}")
    for e in errors:
        typer.echo(f"ERROR {e}", err=True)
    if errors:
        raise typer.Exit(code=1)
    typer.echo("OK")


@app.command()
def kinds():
    """List the supported rule element kinds."""
    for key in get_supported_rule_elements():
        typer.echo(key)


if __name__ == "__main__":
    app()
