"""Read-only reports over collected visit statistics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from photoblog.stats import (
    DAILY_PAGE_STATS_TABLE,
    IMAGE_STATS_TABLE,
    PAGE_STATS_TABLE,
    PAGE_VISITORS_TABLE,
    REFERS_TABLE,
    DailyPageStats,
    ImageStats,
    PageStats,
    PageVisitor,
    Refer,
    StatsRepository,
    date_ts,
)
from photoblog.visitor import Visitor, VisitorRepository

_TOP_IMAGES_LIMIT = 300
_LATEST_REFERS_LIMIT = 100


@dataclass
class DPSVisitors(DailyPageStats):
    """Daily page stats with the comma separated hashes of their visitors."""

    visitors: str = ""


class StatsReports:
    """Queries the statistics gathered by a StatsRepository."""

    def __init__(self, repository: StatsRepository) -> None:
        self._conn = repository.conn
        self._visitors = VisitorRepository(self._conn)

    def daily_total(self, min_date: datetime, max_date: datetime) -> list[DPSVisitors]:
        """Return per-day page stats between the days of the two moments."""
        rows = self._conn.execute(
            f"SELECT d.hash, d.views, d.uniq, d.refers, d.date, "
            f"GROUP_CONCAT(p.visitor) AS visitors "
            f"FROM {DAILY_PAGE_STATS_TABLE} AS d "
            f"LEFT JOIN {PAGE_VISITORS_TABLE} AS p "
            f"ON d.hash = p.page AND d.date = p.date "
            f"WHERE d.date >= ? AND d.date <= ? "
            f"GROUP BY d.hash, d.date "
            f"ORDER BY d.date DESC, d.uniq DESC, d.views DESC, d.hash != 0 ASC",
            (date_ts(min_date), date_ts(max_date)),
        ).fetchall()
        return [
            DPSVisitors(
                hash=hash_,
                views=views,
                uniq=uniq,
                refers=refers,
                date=date,
                visitors=visitors or "",
            )
            for hash_, views, uniq, refers, date, visitors in rows
        ]

    def top_albums(self) -> list[PageStats]:
        """Return page stats, most unique visitors first."""
        rows = self._conn.execute(
            f"SELECT hash, views, uniq, refers FROM {PAGE_STATS_TABLE} "
            "ORDER BY uniq DESC"
        ).fetchall()
        return [PageStats(*row) for row in rows]

    def top_images(self, *args: int) -> list[ImageStats]:
        """Return image stats, most unique viewers first, optionally for some images."""
        sql = (
            "SELECT hash, view_ms, thumb_ms, thumb_prt_ms, views, zooms, uniq "
            f"FROM {IMAGE_STATS_TABLE}"
        )
        params: tuple[int, ...] = ()
        if args:
            sql += f" WHERE hash IN ({', '.join('?' for _ in args)})"
            params = args
        sql += f" ORDER BY uniq DESC LIMIT {_TOP_IMAGES_LIMIT}"
        return [ImageStats(*row) for row in self._conn.execute(sql, params).fetchall()]

    def latest_refers(self) -> list[Refer]:
        """Return the most recent referred visits, newest first."""
        rows = self._conn.execute(
            f"SELECT ts, visitor, referer, url FROM {REFERS_TABLE} "
            f"ORDER BY ts DESC LIMIT {_LATEST_REFERS_LIMIT}"
        ).fetchall()
        return [Refer(*row) for row in rows]

    def visitor_info(self, hash_: int) -> Visitor:
        """Return the visitor with the hash or raise NotFoundError."""
        return self._visitors.find_by_hash(hash_)

    def page_visits(self, hash_: int) -> list[PageVisitor]:
        """Return the pages a visitor saw, latest day first."""
        rows = self._conn.execute(
            f"SELECT visitor, page, date FROM {PAGE_VISITORS_TABLE} "
            "WHERE visitor = ? ORDER BY date DESC",
            (hash_,),
        ).fetchall()
        return [PageVisitor(*row) for row in rows]

    def album_views(self, hash_: int) -> PageStats:
        """Return the stats of a page, all zero when it was never viewed."""
        row = self._conn.execute(
            f"SELECT hash, views, uniq, refers FROM {PAGE_STATS_TABLE} WHERE hash = ?",
            (hash_,),
        ).fetchone()
        return PageStats() if row is None else PageStats(*row)