import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "BOTGRADER_"


class AnalyzerSettings(BaseModel):
    chat_api_base: str = "https://api.poe.com/v1"
    profile_base_url: str = "https://poe.com"
    # Wall-clock budget per chunk invocation, measured from chunk entry
    chunk_time_budget_sec: float = 8.0
    inter_check_delay_sec: float = 0.2
    metadata_timeout_sec: float = 5.0
    chat_timeout_sec: float = 10.0
    # Single prompts sent through /test-bot
    prompt_timeout_sec: float = 30.0
    session_ttl_sec: float = 900.0
    lease_ttl_sec: float = 120.0

    model_config = ConfigDict(extra="ignore")


def default_config_path() -> Path:
    # From apps/api/botgrader/ -> repo root is parents[3]
    override = os.environ.get(f"{ENV_PREFIX}CONFIG", "").strip()
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[3] / "config" / "analyzer.yaml"


def _env_overrides() -> dict:
    out = {}
    for name in AnalyzerSettings.model_fields:
        raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None and raw.strip():
            out[name] = raw.strip()
    return out


def load_settings(path: Optional[Path] = None) -> AnalyzerSettings:
    """YAML file (if present) first, then BOTGRADER_<FIELD> env vars on top."""
    path = path or default_config_path()
    data: dict = {}
    if path.is_file():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at top level")
    else:
        logger.info("No analyzer config at %s, using defaults", path)
    data.update(_env_overrides())
    return AnalyzerSettings(**data)
