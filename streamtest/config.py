"""Settings loaded from ``config/settings.toml``."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import tomllib
from pydantic import BaseModel, Field

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
SETTINGS_ENV_VAR = "STREAMTEST_SETTINGS"


class CheckpointSettings(BaseModel):
    root: Path = Path("data/checkpoints")


class ClusterSettings(BaseModel):
    max_workers: int = Field(default=4, gt=0)


class HarnessSettings(BaseModel):
    """Timeouts for the blocking waits in the run harness; None waits forever."""

    cancel_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    result_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class Settings(BaseModel):
    checkpoints: CheckpointSettings = Field(default_factory=CheckpointSettings)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    harness: HarnessSettings = Field(default_factory=HarnessSettings)


def settings_path() -> Path:
    """Return the settings file path, honouring ``STREAMTEST_SETTINGS``."""
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else DEFAULT_SETTINGS_PATH


def load_settings(path: Path) -> Settings:
    """Read and validate the TOML configuration file."""
    if not path.exists():
        return Settings()
    with path.open("rb") as handle:
        return Settings.model_validate(tomllib.load(handle))
