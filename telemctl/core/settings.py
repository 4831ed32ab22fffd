"""User settings loaded from the XDG config directory."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from telemctl.core.errors import SettingsError
from telemctl.core.script_engine import DEFAULT_STEP_LIMIT
from telemctl.core.yaml_io import load_schema_validator, read_document, validate_document

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_BUFFER_BYTES = 1024 * 1024


@dataclass(frozen=True)
class Settings:
    max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES
    reconnect_initial_s: float = 0.5
    reconnect_factor: float = 2.0
    reconnect_max_s: float = 10.0
    read_chunk_size: int = 4096
    replay_max_delay_ms: float = 10_000.0
    queue_size: int = 1024
    script_step_limit: int = DEFAULT_STEP_LIMIT


def settings_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "telemctl/settings.yaml"


def load_settings(path: Path | None = None) -> Settings:
    """Return defaults overridden by the user's settings file, if one exists."""
    source = path or settings_path()
    if not source.exists():
        return Settings()

    doc = read_document(source, load_error=SettingsError, validation_error=SettingsError)
    validate_document(
        load_schema_validator("settings.schema.json"),
        doc,
        source=str(source),
        validation_error=SettingsError,
    )

    settings = replace(Settings(), **doc)
    if settings.reconnect_max_s < settings.reconnect_initial_s:
        raise SettingsError(
            f"{source}: reconnect_max_s must not be smaller than reconnect_initial_s"
        )
    LOGGER.debug("Loaded settings from %s", source)
    return settings
