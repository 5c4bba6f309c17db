"""Engine config loader (core): light, cached, and the single source of thresholds.

If I/O has to leave the core, the infra layer can read the JSON itself and hand
the dictionary to :func:`parse_config_dict`. This module offers both paths.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping, Tuple

from ilit_tracker.core.common.columns import build_alias_table
from ilit_tracker.core.common.types import DEFAULT_REMINDER_LEAD_DAYS, validate_lead_days

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_CONFIG_VERSION",
    "EngineConfig",
    "get_engine_config",
    "load_engine_config",
    "parse_config_dict",
]

DEFAULT_CONFIG_VERSION = "1.0.0"
DEFAULT_CONFIG_PATH = "config/engine.json"

_DEFAULT_DUE_SOON_DAYS = 7
_DEFAULT_LETTER_WINDOW_DAYS = 30
_DEFAULT_PREMIUM_WINDOW_DAYS = 60


@dataclass(frozen=True)
class EngineConfig:
    """Validated engine thresholds and the effective column alias table."""

    version: str = DEFAULT_CONFIG_VERSION
    default_reminder_lead_days: int = DEFAULT_REMINDER_LEAD_DAYS
    due_soon_days: int = _DEFAULT_DUE_SOON_DAYS
    letter_window_days: int = _DEFAULT_LETTER_WINDOW_DAYS
    premium_window_days: int = _DEFAULT_PREMIUM_WINDOW_DAYS
    column_aliases: Mapping[str, Tuple[str, ...]] = field(default_factory=build_alias_table)


def _parse_semver(value: str) -> tuple[int, int, int]:
    try:
        major, minor, patch = value.split(".")
        return int(major), int(minor), int(patch)
    except (ValueError, TypeError, AttributeError) as exc:
        raise ValueError(f"Invalid semantic version: '{value}'") from exc


def _version_gate(loaded_version: str, expected_version: str | None) -> None:
    if expected_version is None or loaded_version == expected_version:
        return
    if _parse_semver(loaded_version)[0] != _parse_semver(expected_version)[0]:
        raise ValueError(
            f"Engine config version mismatch: loaded='{loaded_version}' "
            f"expected='{expected_version}' (major incompatible)"
        )


def _ensure_non_negative_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"'{name}' must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"'{name}' must be >= 0, got {value}")
    return value


def _normalize_column_aliases(value: object) -> Dict[str, Tuple[str, ...]]:
    if value is None:
        return build_alias_table()
    if not isinstance(value, Mapping):
        raise TypeError("'column_aliases' must be an object of field -> [aliases]")
    cleaned: Dict[str, Tuple[str, ...]] = {}
    for name, aliases in value.items():
        if isinstance(aliases, str):
            aliases = [aliases]
        if not isinstance(aliases, (list, tuple)) or not all(isinstance(item, str) for item in aliases):
            raise TypeError(f"Aliases for '{name}' must be a list of strings")
        cleaned[str(name)] = tuple(aliases)
    return build_alias_table(cleaned)


def parse_config_dict(
    data: Mapping[str, object],
    expected_version: str | None = DEFAULT_CONFIG_VERSION,
) -> EngineConfig:
    """Pure path from an already-read dictionary to :class:`EngineConfig`.

    Missing keys take their defaults.

    Example::

        >>> parse_config_dict({"due_soon_days": 5}).due_soon_days
        5

    Raises:
        TypeError: a key has the wrong type.
        ValueError: a value is out of range or the major version differs.
    """

    if not isinstance(data, Mapping):
        raise TypeError("Engine config must be a JSON object")
    version = str(data.get("version", DEFAULT_CONFIG_VERSION))
    _version_gate(version, expected_version)

    lead_days = validate_lead_days(data.get("default_reminder_lead_days", DEFAULT_REMINDER_LEAD_DAYS))
    return EngineConfig(
        version=version,
        default_reminder_lead_days=lead_days,
        due_soon_days=_ensure_non_negative_int("due_soon_days", data.get("due_soon_days", _DEFAULT_DUE_SOON_DAYS)),
        letter_window_days=_ensure_non_negative_int(
            "letter_window_days", data.get("letter_window_days", _DEFAULT_LETTER_WINDOW_DAYS)
        ),
        premium_window_days=_ensure_non_negative_int(
            "premium_window_days", data.get("premium_window_days", _DEFAULT_PREMIUM_WINDOW_DAYS)
        ),
        column_aliases=_normalize_column_aliases(data.get("column_aliases")),
    )


@lru_cache(maxsize=8)
def _load_config_cached(
    resolved_path: str,
    raw: str,
    mtime_ns: int,
    expected_version: str | None,
) -> EngineConfig:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in engine config: {resolved_path}") from exc
    return parse_config_dict(data, expected_version)


def load_engine_config(
    path: str | Path = DEFAULT_CONFIG_PATH,
    *,
    expected_version: str | None = DEFAULT_CONFIG_VERSION,
) -> EngineConfig:
    """Load the engine config from JSON; cached per path and modification time."""

    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
        mtime_ns = config_path.stat().st_mtime_ns
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Engine config not found: {config_path}") from exc

    return _load_config_cached(str(config_path.resolve()), raw, mtime_ns, expected_version)


load_engine_config.cache_clear = _load_config_cached.cache_clear  # type: ignore[attr-defined]
load_engine_config.cache_info = _load_config_cached.cache_info  # type: ignore[attr-defined]


def get_engine_config(path: str | Path | None = None) -> EngineConfig:
    """Config from ``path`` when it exists, otherwise built-in defaults."""

    if path is None:
        path = DEFAULT_CONFIG_PATH
    if not Path(path).exists():
        return EngineConfig()
    return load_engine_config(path)
