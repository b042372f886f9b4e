import sqlite3

import pytest

from photoblog import settings_store
from photoblog.settings import (
    Appearance,
    MenuItem,
    Privacy,
    Security,
    SettingsError,
    SettingsManager,
    Storage,
    Visitors,
)
from photoblog.settings_store import SettingsRepository


@pytest.fixture
def repo():
    conn = sqlite3.connect(":memory:")
    conn.execute(settings_store.SCHEMA)
    yield SettingsRepository(conn)
    conn.close()


class FailingRepo:
    def __init__(self, failing):
        self.failing = failing
        self.stored = {}

    def get(self, name):
        if name == self.failing:
            raise RuntimeError(f"broken {name}")
        if name in self.stored:
            return self.stored[name]
        from photoblog.hashed import NotFoundError

        raise NotFoundError(name)

    def set(self, name, value):
        self.stored[name] = value


def test_defaults_applied_when_nothing_stored(repo):
    manager = SettingsManager(repo)
    assert manager.appearance().featured_album_name == "featured"
    assert manager.security().disabled() is True
    assert manager.privacy() == Privacy()
    assert manager.storage().web_dav is False


def test_security_disabled():
    assert Security().disabled() is True
    assert Security(pass_hash="abc").disabled() is False
    assert Security(pass_salt="abc").disabled() is False


def test_security_round_trip_through_repository(repo):
    manager = SettingsManager(repo)
    manager.set_security(Security(pass_hash="h", pass_salt="s"))
    assert manager.security() == Security(pass_hash="h", pass_salt="s")
    reloaded = SettingsManager(repo)
    assert reloaded.security() == Security(pass_hash="h", pass_salt="s")
    assert repo.get("security") == {"pass_hash": "h", "pass_salt": "s"}


def test_appearance_round_trip_and_json_keys(repo):
    manager = SettingsManager(repo)
    value = Appearance(
        site_title="Title",
        languages=["en", "de"],
        main_menu=[MenuItem(text="Home", url="/"), MenuItem(text="A", url="/a", admin_only=True)],
    )
    manager.set_appearance(value)
    stored = repo.get("appearance")
    assert stored["site_title"] == "Title"
    assert stored["main_menu"][0] == {"text": "Home", "url": "/"}
    assert stored["main_menu"][1]["admin"] is True
    assert SettingsManager(repo).appearance() == value


def test_empty_main_menu_is_omitted(repo):
    manager = SettingsManager(repo)
    manager.set_appearance(Appearance(site_title="x"))
    assert "main_menu" not in repo.get("appearance")


def test_stored_appearance_without_featured_name_keeps_it_empty(repo):
    repo.set("appearance", {"site_title": "t"})
    manager = SettingsManager(repo)
    assert manager.appearance().featured_album_name == ""
    assert manager.appearance().site_title == "t"


def test_invalid_language_rejected_and_old_value_kept(repo):
    manager = SettingsManager(repo)
    manager.set_appearance(Appearance(site_title="old"))
    with pytest.raises(SettingsError, match="parse language"):
        manager.set_appearance(Appearance(site_title="new", languages=["en", "not a tag"]))
    assert manager.appearance().site_title == "old"
    assert repo.get("appearance")["site_title"] == "old"


def test_language_tags():
    assert Appearance(languages=["en"]).language_tags() == []
    tags = Appearance(languages=["en-us", "de"]).language_tags()
    assert tags == ["en-US", "de"]


def test_single_invalid_language_is_not_checked():
    assert Appearance(languages=["???"]).language_tags() == []


def test_invalid_stored_languages_fail_loading(repo):
    repo.set("appearance", {"languages": ["en", "!!"]})
    with pytest.raises(SettingsError, match="parse language !!"):
        SettingsManager(repo)


def test_corrupt_json_fails_loading(repo):
    repo._conn.execute(
        "INSERT INTO settings (name, value) VALUES (?, ?)", ("privacy", "{bad")
    )
    with pytest.raises(SettingsError, match="unmarshal settings privacy"):
        SettingsManager(repo)


def test_wrong_type_fails_loading(repo):
    repo.set("storage", {"web_dav": "yes"})
    with pytest.raises(SettingsError, match="unmarshal settings storage"):
        SettingsManager(repo)


def test_repository_errors_are_joined():
    with pytest.raises(SettingsError, match="broken visitors"):
        SettingsManager(FailingRepo("visitors"))


def test_on_change_called_after_each_set(repo):
    calls = []
    manager = SettingsManager(repo, on_change=lambda: calls.append(1))
    manager.set_privacy(Privacy(public_help=True))
    manager.set_visitors(Visitors(tag=True))
    assert len(calls) == 2


def test_on_change_failure_is_wrapped(repo):
    def fail():
        raise RuntimeError("boom")

    manager = SettingsManager(repo, on_change=fail)
    with pytest.raises(SettingsError, match="invalidate settings cache deps: boom"):
        manager.set_storage(Storage(web_dav=True))
    assert manager.storage().web_dav is False


def test_privacy_storage_visitors_round_trip(repo):
    manager = SettingsManager(repo)
    manager.set_privacy(Privacy(hide_original=True, hide_login_button=True))
    manager.set_storage(Storage(web_dav=True))
    manager.set_visitors(Visitors(tag=True, access_log=True))
    reloaded = SettingsManager(repo)
    assert reloaded.privacy() == Privacy(hide_original=True, hide_login_button=True)
    assert reloaded.storage() == Storage(web_dav=True)
    assert reloaded.visitors() == Visitors(tag=True, access_log=True)


def test_returned_values_are_copies(repo):
    manager = SettingsManager(repo)
    manager.set_appearance(Appearance(languages=["en"]))
    got = manager.appearance()
    got.languages.append("fr")
    assert manager.appearance().languages == ["en"]