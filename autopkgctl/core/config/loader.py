"""
Configuration loader — environment settings and pipeline definitions.

Two sources feed a run:

    - ``Settings``: process-wide knobs read once from ``AUTOPKG_*``
      environment variables. Immutable; passed explicitly to whatever
      needs it.
    - ``PipelineDefinition``: the ordered steps of a pipeline, read from
      a YAML file and validated against Pydantic schemas.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

# Default pipeline filename
PIPELINE_CONFIG_FILE = "pipeline.yml"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""


def _env_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{key} must be a boolean (got {raw!r})")


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer (got {raw!r})") from e


class Settings(BaseModel):
    """Immutable run settings, usually built by ``from_env``."""

    model_config = ConfigDict(frozen=True)

    prefs_path: str = ""
    autopkg_bin: str = "autopkg"
    max_concurrent: int = 4
    timeout_minutes: int = 60
    stop_on_first_error: bool = False
    report_file: str | None = None
    webhook_url: str | None = None
    notify_on_error: bool = False
    notify_on_completion: bool = False
    cache_dir: str | None = None
    log_level: str = "WARNING"
    log_file: str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Read settings from ``AUTOPKG_*`` variables.

        Raises:
            ConfigError: If a numeric or boolean variable is malformed.
        """
        env = os.environ if env is None else env
        return cls(
            prefs_path=env.get("AUTOPKG_PREFS", ""),
            autopkg_bin=env.get("AUTOPKG_BIN") or "autopkg",
            max_concurrent=_env_int(env, "AUTOPKG_MAX_CONCURRENT", 4),
            timeout_minutes=_env_int(env, "AUTOPKG_TIMEOUT_MINUTES", 60),
            stop_on_first_error=_env_bool(env, "AUTOPKG_STOP_ON_FIRST_ERROR"),
            report_file=env.get("AUTOPKG_REPORT_FILE") or None,
            webhook_url=env.get("AUTOPKG_WEBHOOK_URL") or None,
            notify_on_error=_env_bool(env, "AUTOPKG_NOTIFY_ON_ERROR"),
            notify_on_completion=_env_bool(env, "AUTOPKG_NOTIFY_ON_COMPLETION"),
            cache_dir=env.get("AUTOPKG_CACHE_DIR") or None,
            log_level=env.get("AUTOPKG_LOG_LEVEL", "WARNING"),
            log_file=env.get("AUTOPKG_LOG_FILE") or None,
        )


class StepDefinition(BaseModel):
    """One step as written in pipeline.yml."""

    kind: str
    custom_kind: str = ""           # handler tag when kind is "custom"
    targets: list[str] = Field(default_factory=list)
    options: dict[str, Any] | None = None
    continue_on_error: bool = False
    name: str = ""
    description: str = ""


class PipelineDefinition(BaseModel):
    """A pipeline as written in pipeline.yml."""

    options: dict[str, Any] = Field(default_factory=dict)
    steps: list[StepDefinition] = Field(default_factory=list)


def load_pipeline(path: Path) -> PipelineDefinition:
    """Load and validate a pipeline definition.

    Expected shape::

        options:
          prefs_path: /tmp/autopkg.plist
          stop_on_first_error: true
        steps:
          - kind: import
            targets: [https://github.com/autopkg/recipes.git]
          - kind: run
            targets: [Firefox.download]
            continue_on_error: true

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if not path.is_file():
        raise ConfigError(f"Pipeline file not found: {path}")

    logger.debug("Loading pipeline from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # Accept both a top-level mapping and one wrapped under "pipeline"
    pipeline_data = data.get("pipeline", data)

    try:
        definition = PipelineDefinition.model_validate(pipeline_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid pipeline configuration: {e}") from e

    logger.info("Loaded pipeline with %d steps from %s", len(definition.steps), path)
    return definition
