"""Named settings stored as JSON documents."""

from __future__ import annotations

import dataclasses
import json
import sqlite3
from typing import Any

from photoblog.hashed import NotFoundError, augment_error

SETTINGS_TABLE = "settings"

SCHEMA = (
    f"CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} "
    "(name TEXT PRIMARY KEY, value TEXT NOT NULL)"
)


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class SettingsRepository:
    """Reads and writes settings values by name."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _run(self, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.Error as err:
            augmented = augment_error(err)
            if augmented is err:
                raise
            raise augmented from err

    def _fetch(self, name: str) -> str | None:
        row = self._run(
            f"SELECT value FROM {SETTINGS_TABLE} WHERE name = ?", (name,)
        ).fetchone()
        return None if row is None else row[0]

    def get(self, name: str) -> Any:
        """Return the decoded value stored under the name."""
        raw = self._fetch(name)
        if raw is None:
            raise NotFoundError(f'get settings "{name}": not found')
        try:
            return json.loads(raw)
        except ValueError as err:
            raise ValueError(f"unmarshal settings {name}: {err}") from err

    def set(self, name: str, value: Any) -> None:
        """Store the value under the name, replacing any earlier one."""
        try:
            encoded = json.dumps(value, default=_json_default)
        except (TypeError, ValueError) as err:
            raise TypeError(f"marshal settings {name}: {err}") from err

        if self._fetch(name) is not None:
            self._run(
                f"UPDATE {SETTINGS_TABLE} SET value = ? WHERE name = ?", (encoded, name)
            )
        else:
            self._run(
                f"INSERT INTO {SETTINGS_TABLE} (name, value) VALUES (?, ?)",
                (name, encoded),
            )