"""Site visitor records."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from photoblog.hashed import HashedRepo

VISITOR_TABLE = "visitor"

SCHEMA = (
    f"CREATE TABLE IF NOT EXISTS {VISITOR_TABLE} ("
    "hash INTEGER PRIMARY KEY, created_at TEXT, last_seen TEXT, "
    "lang TEXT NOT NULL DEFAULT '', ip_addr TEXT NOT NULL DEFAULT '', "
    "user_agent TEXT NOT NULL DEFAULT '', device TEXT NOT NULL DEFAULT '', "
    "is_bot INTEGER NOT NULL DEFAULT 0, is_admin INTEGER NOT NULL DEFAULT 0, "
    "referer TEXT NOT NULL DEFAULT '', scr_h INTEGER NOT NULL DEFAULT 0, "
    "scr_w INTEGER NOT NULL DEFAULT 0, px_r REAL NOT NULL DEFAULT 0)"
)


@dataclass
class Visitor:
    """A visitor identified by a hash, with what is known of its client."""

    hash: int = 0
    created_at: datetime | None = None
    last_seen: datetime | None = None
    lang: str = ""
    ip_addr: str = ""
    user_agent: str = ""
    device: str = ""
    is_bot: bool = False
    is_admin: bool = False
    referer: str = ""
    screen_height: int = field(default=0, metadata={"db": "scr_h"})
    screen_width: int = field(default=0, metadata={"db": "scr_w"})
    pixel_ratio: float = field(default=0.0, metadata={"db": "px_r"})


class VisitorRepository(HashedRepo[Visitor]):
    """Stores visitors in the visitor table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn, VISITOR_TABLE, Visitor)