import sqlite3
from datetime import datetime, timezone

import pytest

from photoblog.hashed import EnsureOption, NotFoundError
from photoblog.visitor import SCHEMA, Visitor, VisitorRepository


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.execute(SCHEMA)
    yield connection
    connection.close()


@pytest.fixture
def repo(conn):
    return VisitorRepository(conn)


def test_round_trip(repo):
    seen = datetime(2024, 7, 13, 10, 0, tzinfo=timezone.utc)
    stored = repo.ensure(
        Visitor(
            hash=123,
            last_seen=seen,
            lang="en",
            ip_addr="10.0.0.1",
            user_agent="agent",
            device="Mac",
            is_bot=False,
            is_admin=True,
            referer="https://example.com/",
            screen_height=1080,
            screen_width=1920,
            pixel_ratio=2.0,
        )
    )
    found = repo.find_by_hash(123)
    assert found == stored
    assert found.last_seen == seen
    assert found.is_admin is True
    assert found.is_bot is False


def test_screen_fields_use_short_columns(repo, conn):
    stored = repo.add(Visitor(hash=5, screen_width=800, screen_height=600, pixel_ratio=1.5))
    assert (stored.screen_width, stored.screen_height, stored.pixel_ratio) == (800, 600, 1.5)
    row = conn.execute("SELECT scr_w, scr_h, px_r FROM visitor WHERE hash = 5").fetchone()
    assert row == (stored.screen_width, stored.screen_height, stored.pixel_ratio)


def test_admin_lookup_by_column(repo, conn):
    repo.add(Visitor(hash=1, is_admin=True))
    repo.add(Visitor(hash=2))
    admins = [v.hash for v in repo.find_all() if v.is_admin]
    assert admins == [1]
    rows = conn.execute("SELECT hash FROM visitor WHERE is_admin = 1").fetchall()
    assert rows == [(h,) for h in admins]


def test_ensure_merges_with_existing(repo):
    repo.ensure(Visitor(hash=9, lang="de"))

    def keep_lang(candidate, existing):
        if existing is not None and not candidate.lang:
            candidate.lang = existing.lang
        return False

    repo.ensure(Visitor(hash=9, device="Phone"), EnsureOption(prepare=keep_lang))
    found = repo.find_by_hash(9)
    assert (found.lang, found.device) == ("de", "Phone")


def test_missing_visitor(repo):
    with pytest.raises(NotFoundError):
        repo.find_by_hash(404)