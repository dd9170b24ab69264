"""Enforcer parameter loading from YAML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from pxguard.config.enforcer_config import EnforcementConfig
from pxguard.config.settings import settings
from pxguard.core.errors import ConfigError
from pxguard.util.logger import logger


def load_params(path: str | Path) -> dict[str, Any]:
    """Read a YAML mapping of ``px_*`` parameters.

    Regex entries are written as ``{regex: "^/api/", flags: "i"}``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"enforcer config not found: {config_path}")
    try:
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid yaml in {config_path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"invalid enforcer config format: {config_path}")
    logger.info("enforcer params loaded path=%s keys=%d", config_path, len(loaded))
    return loaded


def load_config(path: str | Path | None = None, overrides: dict[str, Any] | None = None) -> EnforcementConfig:
    resolved = path or settings.config_path
    params: dict[str, Any] = {}
    if resolved:
        params.update(load_params(resolved))
    if overrides:
        params.update(overrides)
    return EnforcementConfig.from_params(params)
