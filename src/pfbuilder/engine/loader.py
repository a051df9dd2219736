from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple
import json
import yaml
from pydantic import TypeAdapter

from .schema_models import RuleSource
from .sheet import CharacterState

RuleSourceAdapter = TypeAdapter(RuleSource)
CharacterAdapter = TypeAdapter(CharacterState)

DEFAULT_CONTENT_DIR = Path(__file__).resolve().parents[1] / "content" / "sources"


def _load_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in [".yaml", ".yml"]:
        return yaml.safe_load(text) or {}
    return json.loads(text)


def _iter_files(root: Path, exts: Tuple[str, ...] = (".json", ".yaml", ".yml")) -> Iterable[Path]:
    if not root.exists():
        return []
    if root.is_file():
        return [root]
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in exts)


def _source_docs(data: Any) -> List[Dict[str, Any]]:
    # a file may hold one source or a list of them
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and "sources" in data:
        return list(data["sources"])
    return [data]


@dataclass
class SourceIndex:
    sources: Dict[str, RuleSource]

    def get(self, source_id: str) -> RuleSource:
        return self.sources[source_id]

    def resolve(self, ids: Iterable[str]) -> List[RuleSource]:
        missing = [i for i in ids if i not in self.sources]
        if missing:
            raise KeyError(f"Unknown source id(s): {', '.join(missing)}")
        return [self.sources[i] for i in ids]

    def by_kind(self, kind: str) -> List[RuleSource]:
        return [s for s in self.sources.values() if s.kind == kind]


def load_sources(base_dir: Path = DEFAULT_CONTENT_DIR) -> SourceIndex:
    sources: Dict[str, RuleSource] = {}
    for fp in _iter_files(base_dir):
        for doc in _source_docs(_load_file(fp)):
            src = RuleSourceAdapter.validate_python(doc)
            if src.id in sources:
                raise RuntimeError(f"Duplicate source id {src.id} in {fp}")
            sources[src.id] = src
    return SourceIndex(sources=sources)


def load_character(path: Path, index: SourceIndex) -> Tuple[CharacterState, List[RuleSource]]:
    """
    Read a character file: CharacterState fields, plus `source_ids` from the index and
    optional inline `sources`.
    """
    data = dict(_load_file(path))
    inline = [RuleSourceAdapter.validate_python(d) for d in data.pop("sources", []) or []]
    state = CharacterAdapter.validate_python(data)
    return state, index.resolve(state.source_ids) + inline


def iter_source_files(root: Path) -> Iterable[Path]:
    return _iter_files(root)


def read_source_docs(path: Path) -> List[Dict[str, Any]]:
    return _source_docs(_load_file(path))
