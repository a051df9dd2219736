from __future__ import annotations
from pathlib import Path
from pydantic import BaseModel
from typing import Optional

from .schema_models import SizeCategory

SETTINGS_PATH = Path.home() / ".pfbuilder" / "settings.json"

class EngineSettings(BaseModel):
    log_level: str = "WARNING"
    content_dir: Optional[str] = None  # defaults to the bundled content
    default_size: SizeCategory = "medium"
    strict_validation: bool = False  # validate: treat inert elements as errors
    show_logs: bool = False

def load_settings(path: Path = SETTINGS_PATH) -> EngineSettings:
    if path.exists():
        return EngineSettings.model_validate_json(path.read_text(encoding="utf-8"))
    path.parent.mkdir(parents=True, exist_ok=True)
    s = EngineSettings()
    path.write_text(s.model_dump_json(indent=2), encoding="utf-8")
    return s

def save_settings(s: EngineSettings, path: Path = SETTINGS_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(s.model_dump_json(indent=2), encoding="utf-8")
