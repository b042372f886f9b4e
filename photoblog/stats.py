"""Visit statistics of pages, images and visitors."""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import parse_qsl

from photoblog.hashed import EnsureOption
from photoblog.visitor import SCHEMA as VISITOR_SCHEMA
from photoblog.visitor import VISITOR_TABLE, Visitor, VisitorRepository

_log = logging.getLogger(__name__)

IMAGE_STATS_TABLE = "image_stats"
IMAGE_VISITORS_TABLE = "image_visitors"
PAGE_VISITORS_TABLE = "page_visitors"
PAGE_STATS_TABLE = "page_stats"
DAILY_PAGE_STATS_TABLE = "daily_page_stats"
REFERS_TABLE = "refers"

_DAY = 24 * 60 * 60
_MAX_IP_HISTORY = 240

SCHEMA = (
    f"CREATE TABLE IF NOT EXISTS {IMAGE_STATS_TABLE} ("
    "hash INTEGER PRIMARY KEY, view_ms INTEGER NOT NULL DEFAULT 0, "
    "thumb_ms INTEGER NOT NULL DEFAULT 0, thumb_prt_ms INTEGER NOT NULL DEFAULT 0, "
    "views INTEGER NOT NULL DEFAULT 0, zooms INTEGER NOT NULL DEFAULT 0, "
    "uniq INTEGER NOT NULL DEFAULT 0)",
    f"CREATE TABLE IF NOT EXISTS {IMAGE_VISITORS_TABLE} ("
    "visitor INTEGER NOT NULL, image INTEGER NOT NULL, PRIMARY KEY (visitor, image))",
    f"CREATE TABLE IF NOT EXISTS {PAGE_STATS_TABLE} ("
    "hash INTEGER PRIMARY KEY, views INTEGER NOT NULL DEFAULT 0, "
    "uniq INTEGER NOT NULL DEFAULT 0, refers INTEGER NOT NULL DEFAULT 0)",
    f"CREATE TABLE IF NOT EXISTS {DAILY_PAGE_STATS_TABLE} ("
    "hash INTEGER NOT NULL, date INTEGER NOT NULL, "
    "views INTEGER NOT NULL DEFAULT 0, uniq INTEGER NOT NULL DEFAULT 0, "
    "refers INTEGER NOT NULL DEFAULT 0, PRIMARY KEY (hash, date))",
    f"CREATE TABLE IF NOT EXISTS {PAGE_VISITORS_TABLE} ("
    "visitor INTEGER NOT NULL, page INTEGER NOT NULL, date INTEGER NOT NULL, "
    "PRIMARY KEY (visitor, page, date))",
    f"CREATE TABLE IF NOT EXISTS {REFERS_TABLE} ("
    "ts INTEGER NOT NULL, visitor INTEGER NOT NULL, "
    "referer TEXT NOT NULL DEFAULT '', url TEXT NOT NULL DEFAULT '')",
    VISITOR_SCHEMA,
)


@dataclass
class ImageStats:
    """Accumulated views of one image."""

    hash: int = 0
    view_ms: int = 0
    thumb_ms: int = 0
    thumb_prt_ms: int = 0
    views: int = 0
    zooms: int = 0
    uniq: int = 0


@dataclass
class PageVisitor:
    """A visit of a page (album hash, 0 for the main page) on a day."""

    visitor: int = 0
    page: int = 0
    date: int = 0


@dataclass
class PageStats:
    """Accumulated views of a page (album hash, 0 for the main page)."""

    hash: int = 0
    views: int = 0
    uniq: int = 0
    refers: int = 0


@dataclass
class DailyPageStats(PageStats):
    """Views of a page on one day, the day given as a truncated unix timestamp."""

    date: int = 0


@dataclass
class Refer:
    """A visit that came with a referer."""

    ts: int = 0
    visitor: int = 0
    referer: str = ""
    url: str = ""


@dataclass
class CollectStats:
    """A beacon sent by the page script."""

    visitor: int = 0
    referer: str = ""
    screen_width: int = 0
    screen_height: int = 0
    pixel_ratio: float = 0.0
    main: bool = False
    album: str = ""
    thumb: dict[int, int] = field(default_factory=dict)
    mobile_portrait_mode: bool = False
    image: int = 0
    width: int = 0
    height: int = 0
    max_width: int = 0
    max_height: int = 0
    time: int = 0


_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(key: str, text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"query {key}: invalid boolean {text!r}")


def _parse_int(key: str, text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"query {key}: invalid integer {text!r}") from None


def _parse_float(key: str, text: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"query {key}: invalid number {text!r}") from None


def _parse_hash(key: str, text: str) -> int:
    """Decode a base-36 hash into a signed 64-bit integer."""
    try:
        value = int(text, 36)
    except ValueError:
        raise ValueError(f"query {key}: invalid hash {text!r}") from None
    if value < 0 or value >= 1 << 64:
        raise ValueError(f"query {key}: hash {text!r} out of range")
    return value - (1 << 64) if value >= 1 << 63 else value


def _parse_thumbs(key: str, text: str) -> dict[int, int]:
    try:
        raw = json.loads(text)
    except ValueError:
        raise ValueError(f"query {key}: invalid JSON") from None
    if not isinstance(raw, dict):
        raise ValueError(f"query {key}: expected a JSON object")
    thumbs = {}
    for hash_text, ms in raw.items():
        if not isinstance(ms, int) or isinstance(ms, bool):
            raise ValueError(f"query {key}: invalid time for {hash_text!r}")
        thumbs[_parse_hash(key, hash_text)] = ms
    return thumbs


_QUERY_FIELDS = {
    "v": ("visitor", _parse_hash),
    "ref": ("referer", lambda _k, t: t),
    "sw": ("screen_width", _parse_int),
    "sh": ("screen_height", _parse_int),
    "px": ("pixel_ratio", _parse_float),
    "main": ("main", _parse_bool),
    "album": ("album", lambda _k, t: t),
    "thumb": ("thumb", _parse_thumbs),
    "prt": ("mobile_portrait_mode", _parse_bool),
    "img": ("image", _parse_hash),
    "w": ("width", _parse_int),
    "h": ("height", _parse_int),
    "mw": ("max_width", _parse_int),
    "mh": ("max_height", _parse_int),
    "time": ("time", _parse_int),
}


def _first_values(query: str | Mapping[str, Any]) -> dict[str, str]:
    if isinstance(query, str):
        values: dict[str, str] = {}
        for key, value in parse_qsl(query.lstrip("?"), keep_blank_values=True):
            values.setdefault(key, value)
        return values
    result = {}
    for key, value in query.items():
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[0]
        result[key] = str(value)
    return result


def parse_collect_stats(query: str | Mapping[str, Any]) -> CollectStats:
    """Read a beacon from a query string or a mapping of query parameters.

    Raises ValueError for a malformed parameter.
    """
    kwargs: dict[str, Any] = {}
    for key, text in _first_values(query).items():
        spec = _QUERY_FIELDS.get(key)
        if spec is None or text == "":
            continue
        name, parse = spec
        kwargs[name] = parse(key, text)
    return CollectStats(**kwargs)


def date_ts(moment: datetime) -> int:
    """Return the unix timestamp of the start of the UTC day of the moment."""
    seconds = int(moment.timestamp())
    return seconds - seconds % _DAY


def _atoi(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def _atof(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def _lookup(values: Mapping[str, Any] | None, name: str) -> str:
    if not values:
        return ""
    wanted = name.lower()
    for key, value in values.items():
        if key.lower() == wanted:
            if isinstance(value, (list, tuple)):
                return str(value[0]) if value else ""
            return str(value)
    return ""


def _skip_update(candidate: Visitor, existing: Visitor | None) -> bool:
    """Merge what is known of a visitor and tell whether nothing new is left."""
    if existing is None:
        return False

    skip = True

    if existing.is_admin:
        candidate.is_admin = True
    if existing.is_bot:
        candidate.is_bot = True
    if candidate.device == "":
        candidate.device = existing.device
    if candidate.lang == "":
        candidate.lang = existing.lang
    if candidate.referer == "":
        candidate.referer = existing.referer

    if candidate.ip_addr == "":
        candidate.ip_addr = existing.ip_addr
    elif (
        candidate.ip_addr not in existing.ip_addr
        and len(existing.ip_addr) < _MAX_IP_HISTORY
    ):
        skip = False
        merged = existing.ip_addr + "," + candidate.ip_addr
        candidate.ip_addr = merged.removeprefix(",")

    if skip and candidate.is_bot and not existing.is_bot:
        skip = False
    if skip and candidate.is_admin and not existing.is_admin:
        skip = False
    if skip and candidate.device and not existing.device:
        skip = False
    if skip and candidate.lang and not existing.lang:
        skip = False
    if skip and candidate.referer and not existing.referer:
        skip = False
    if skip and candidate.screen_width and not existing.screen_width:
        skip = False
    if (
        skip
        and candidate.last_seen is not None
        and existing.last_seen is not None
        and candidate.last_seen - existing.last_seen > timedelta(minutes=1)
    ):
        skip = False

    return skip


class StatsRepository:
    """Collects visit statistics; failures are logged, never raised."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        with conn:
            for statement in SCHEMA:
                conn.execute(statement)
        self._visitors = VisitorRepository(conn)
        self._lock = threading.Lock()
        self._recent_visitors: dict[int, Visitor] = {}
        self._admins: set[int] = set()
        self._populate_admins()

    @property
    def conn(self) -> sqlite3.Connection:
        """The connection statistics are stored in."""
        return self._conn

    def _populate_admins(self) -> None:
        rows = self._conn.execute(
            f"SELECT hash FROM {VISITOR_TABLE} WHERE is_admin = 1"
        ).fetchall()
        with self._lock:
            self._admins.update(row[0] for row in rows)

    def _run(self, failure: str, sql: str, params: Iterable[Any] = ()) -> None:
        try:
            with self._conn:
                self._conn.execute(sql, tuple(params))
        except sqlite3.Error:
            _log.exception(failure)

    def is_admin(self, visitor: int) -> bool:
        """Tell whether the visitor is known to be an admin."""
        with self._lock:
            return visitor in self._admins

    def collect_main(self, visitor: int, referer: str, date: datetime) -> None:
        """Count a view of the main page."""
        self.collect_album(visitor, 0, referer, date)

    def collect_album(
        self, visitor: int, album: int, referer: str, date: datetime
    ) -> None:
        """Count a view of an album page."""
        refers = 1 if referer else 0
        self._run(
            "failed to collect page stats",
            f"INSERT INTO {PAGE_STATS_TABLE} (hash, views, uniq, refers) "
            "VALUES (?, 1, 0, ?) ON CONFLICT(hash) DO UPDATE SET "
            "refers = refers + excluded.refers, views = views + 1",
            (album, refers),
        )

        day = date_ts(date)
        self._run(
            "failed to collect daily page stats",
            f"INSERT INTO {DAILY_PAGE_STATS_TABLE} (hash, views, uniq, refers, date) "
            "VALUES (?, 1, 0, ?, ?) ON CONFLICT(hash, date) DO UPDATE SET "
            "refers = refers + excluded.refers, views = views + 1",
            (album, refers, day),
        )
        self._run(
            "failed to collect page visitor",
            f"INSERT OR IGNORE INTO {PAGE_VISITORS_TABLE} (visitor, page, date) "
            "VALUES (?, ?, ?)",
            (visitor, album, day),
        )

        self._run(
            "failed to update page uniq",
            f"INSERT INTO {PAGE_STATS_TABLE} (hash, uniq) "
            f"SELECT page, count(DISTINCT visitor) AS uniq FROM {PAGE_VISITORS_TABLE} "
            "WHERE page IN (?) GROUP BY page "
            "ON CONFLICT(hash) DO UPDATE SET uniq = excluded.uniq",
            (album,),
        )
        self._run(
            "failed to update daily page uniq",
            f"INSERT INTO {DAILY_PAGE_STATS_TABLE} (hash, date, uniq) "
            "SELECT page, date, count(DISTINCT visitor) AS uniq "
            f"FROM {PAGE_VISITORS_TABLE} WHERE page IN (?) AND date = ? GROUP BY page "
            "ON CONFLICT(hash, date) DO UPDATE SET uniq = excluded.uniq",
            (album, day),
        )

    def collect_image(
        self, visitor: int, image: int, view_time_ms: int, zoomed_in: bool
    ) -> None:
        """Count a focused view of an image."""
        self._run(
            "failed to collect image stats",
            f"INSERT INTO {IMAGE_STATS_TABLE} (hash, view_ms, views, zooms) "
            "VALUES (?, ?, 1, ?) ON CONFLICT(hash) DO UPDATE SET "
            "views = views + 1, view_ms = view_ms + excluded.view_ms, "
            "zooms = zooms + excluded.zooms",
            (image, view_time_ms, 1 if zoomed_in else 0),
        )
        self._run(
            "failed to collect image visitor",
            f"INSERT OR IGNORE INTO {IMAGE_VISITORS_TABLE} (visitor, image) "
            "VALUES (?, ?)",
            (visitor, image),
        )
        self._run(
            "failed to update image uniq",
            f"INSERT INTO {IMAGE_STATS_TABLE} (hash, uniq) "
            f"SELECT image, count(DISTINCT visitor) AS uniq FROM {IMAGE_VISITORS_TABLE} "
            "WHERE image IN (?) GROUP BY image "
            "ON CONFLICT(hash) DO UPDATE SET uniq = excluded.uniq",
            (image,),
        )

    def collect_thumbs(
        self, visitor: int, mobile_portrait_mode: bool, thumbs: Mapping[int, int]
    ) -> None:
        """Add on-screen times of thumbnails, in ms, keyed by image hash."""
        if not thumbs:
            return
        column = "thumb_prt_ms" if mobile_portrait_mode else "thumb_ms"
        try:
            with self._conn:
                self._conn.executemany(
                    f"INSERT INTO {IMAGE_STATS_TABLE} (hash, {column}) VALUES (?, ?) "
                    "ON CONFLICT(hash) DO UPDATE SET "
                    "thumb_ms = thumb_ms + excluded.thumb_ms, "
                    "thumb_prt_ms = thumb_prt_ms + excluded.thumb_prt_ms",
                    list(thumbs.items()),
                )
        except sqlite3.Error:
            _log.exception("failed to collect thumbs stats")

    def collect_refer(
        self, visitor: int, ts: datetime, referer: str, url: str
    ) -> None:
        """Record a visit that came from another site."""
        self._run(
            "failed to collect referer visitor",
            f"INSERT INTO {REFERS_TABLE} (ts, visitor, referer, url) VALUES (?, ?, ?, ?)",
            (int(ts.timestamp()), visitor, referer, url),
        )

    def collect_visitor(
        self,
        hash_: int,
        is_bot: bool,
        is_admin: bool,
        ts: datetime,
        headers: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
    ) -> None:
        """Create or refresh the record of a visitor from request details."""
        device = " ".join(
            _lookup(headers, name).strip('"')
            for name in ("Sec-Ch-Ua-Model", "Sec-Ch-Ua-Platform", "Sec-Ch-Ua-Platform-Version")
        ).strip()
        visitor = Visitor(
            hash=hash_,
            created_at=ts,
            last_seen=ts,
            lang=_lookup(headers, "Accept-Language"),
            ip_addr=_lookup(headers, "X-Forwarded-For"),
            user_agent=_lookup(headers, "User-Agent"),
            device=device,
            is_bot=is_bot,
            is_admin=is_admin,
            referer=_lookup(headers, "Referer"),
            screen_width=_atoi(_lookup(query, "sw")),
            screen_height=_atoi(_lookup(query, "sh")),
            pixel_ratio=_atof(_lookup(query, "px")),
        )

        with self._lock:
            cached = self._recent_visitors.get(hash_)
        if cached is not None and _skip_update(copy.deepcopy(visitor), cached):
            _log.info("skip cached visitor %s", hash_)
            return

        _log.info("collect visitor %s", hash_)
        try:
            stored = self._visitors.ensure(visitor, EnsureOption(prepare=_skip_update))
        except Exception:
            _log.exception("failed to ensure visitor")
            return

        with self._lock:
            self._recent_visitors[stored.hash] = stored
            if stored.is_admin:
                self._admins.add(stored.hash)