"""Logic helpers for the `wfmaint config` command."""

from __future__ import annotations

from dataclasses import asdict
from typing import Sequence

from ..config import CONFIG_KEYS, Config, load_config, update_config_from_json
from ..errors import InvalidArgument
from ..text import Messages


def parse_assignments(values: Sequence[str]) -> dict[str, str]:
    """Split ``KEY=VALUE`` strings into a mapping, rejecting unknown keys."""

    updates: dict[str, str] = {}
    for raw in values:
        key, sep, value = raw.partition("=")
        key = key.strip()
        if not sep or not key:
            raise InvalidArgument(Messages.ERROR_CONFIG_ASSIGNMENT.format(value=raw))
        if key not in CONFIG_KEYS:
            raise InvalidArgument(
                Messages.ERROR_CONFIG_KEY_INVALID.format(key=key, allowed=", ".join(CONFIG_KEYS))
            )
        updates[key] = value.strip()
    return updates


def apply_config_updates(values: Sequence[str]) -> Config:
    """Persist every assignment in one validated write."""

    updates = parse_assignments(values)
    if not updates:
        return load_config()
    return update_config_from_json(updates)


def get_config_snapshot() -> Config:
    """Return the current configuration dataclass."""

    return load_config()


def config_rows(config: Config) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for key, value in asdict(config).items():
        rows.append((key, "-" if value is None else str(value)))
    return rows
