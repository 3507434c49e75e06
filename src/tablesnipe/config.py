"""YAML configuration loading and validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from tablesnipe.errors import ConfigError
from tablesnipe.models import SniperSettings, SnipeRequest


def _load_yaml_mapping(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a YAML mapping, got {type(data).__name__}")
    return data


def load_settings(path: str | Path | None = None) -> SniperSettings:
    """Load sniper settings from a YAML file, or defaults when no path is given."""
    if path is None:
        return SniperSettings()

    data = _load_yaml_mapping(path)
    try:
        return SniperSettings.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid config: {e}") from e


def load_snipe_request(path: str | Path) -> SnipeRequest:
    """Load and validate a snipe request from a YAML file.

    Accepts either a nested ``restaurant`` mapping or flat ``platform`` and
    ``restaurant_id`` keys.
    """
    data = _load_yaml_mapping(path)
    if "restaurant" not in data and "restaurant_id" in data:
        data["restaurant"] = {
            "platform": data.pop("platform", None),
            "restaurant_id": str(data.pop("restaurant_id")),
        }

    try:
        return SnipeRequest.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid snipe request: {e}") from e
