"""Site settings kept in a repository and cached in memory."""

from __future__ import annotations

import copy
import dataclasses
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, TypeVar

from photoblog.hashed import NotFoundError

S = TypeVar("S")


class SettingsError(Exception):
    """Raised when settings cannot be loaded, validated or stored."""


class SettingsBackend(Protocol):
    """Storage for named settings documents."""

    def get(self, name: str) -> Any: ...

    def set(self, name: str, value: Any) -> None: ...


def _json(name: str, *, omitempty: bool = False, **extra: Any) -> dict[str, Any]:
    return {"json": name, "omitempty": omitempty, **extra}


@dataclass
class MenuItem:
    """An entry of the main menu."""

    text: str = field(default="", metadata=_json("text"))
    url: str = field(default="", metadata=_json("url"))
    admin_only: bool = field(default=False, metadata=_json("admin", omitempty=True))


_TAG_RE = re.compile(
    r"^(?P<lang>[a-z]{2,3}(?:-[a-z]{3}){0,3}|[a-z]{5,8})"
    r"(?:-(?P<script>[a-z]{4}))?"
    r"(?:-(?P<region>[a-z]{2}|\d{3}))?"
    r"(?P<variants>(?:-(?:[a-z0-9]{5,8}|\d[a-z0-9]{3}))*)$",
    re.IGNORECASE,
)


def _parse_language(text: str) -> str:
    match = _TAG_RE.match(text.replace("_", "-"))
    if match is None:
        raise SettingsError(f"parse language {text}: language: tag is not well-formed")
    tag = match["lang"].lower()
    if match["script"]:
        tag += "-" + match["script"].title()
    if match["region"]:
        tag += "-" + match["region"].upper()
    if match["variants"]:
        tag += match["variants"].lower()
    return tag


@dataclass
class Appearance:
    """Look of the site and the languages of its content."""

    site_title: str = field(default="", metadata=_json("site_title"))
    site_favicon: str = field(default="", metadata=_json("site_favicon"))
    site_head: str = field(default="", metadata=_json("site_head"))
    site_header: str = field(default="", metadata=_json("site_header"))
    site_footer: str = field(default="", metadata=_json("site_footer"))
    featured_album_name: str = field(
        default="", metadata=_json("featured_album_name", default="featured")
    )
    languages: list[str] = field(
        default_factory=list, metadata=_json("languages", item=str)
    )
    thumb_base_url: str = field(default="", metadata=_json("thumb_base_url"))
    image_base_url: str = field(default="", metadata=_json("image_base_url"))
    main_menu: list[MenuItem] = field(
        default_factory=list,
        metadata=_json("main_menu", omitempty=True, item=MenuItem),
    )

    def language_tags(self) -> list[str]:
        """Return normalized language tags to match against.

        With at most one language there is nothing to match and the list is
        empty. Raises SettingsError for a malformed language.
        """
        if len(self.languages) <= 1:
            return []
        return [_parse_language(language) for language in self.languages]


@dataclass
class Privacy:
    """What the site hides from guests."""

    hide_tech_details: bool = field(default=False, metadata=_json("hide_tech_details"))
    hide_geo_position: bool = field(default=False, metadata=_json("hide_geo_position"))
    hide_original: bool = field(default=False, metadata=_json("hide_original"))
    hide_batch_download: bool = field(
        default=False, metadata=_json("hide_batch_download")
    )
    hide_login_button: bool = field(default=False, metadata=_json("hide_login_button"))
    public_help: bool = field(default=False, metadata=_json("public_help"))


@dataclass
class Security:
    """Admin password hash and salt."""

    pass_hash: str = field(default="", metadata=_json("pass_hash"))
    pass_salt: str = field(default="", metadata=_json("pass_salt"))

    def disabled(self) -> bool:
        """Tell whether no admin password is configured."""
        return self.pass_hash == "" and self.pass_salt == ""


@dataclass
class Storage:
    """Storage access options."""

    web_dav: bool = field(default=False, metadata=_json("web_dav"))


@dataclass
class Visitors:
    """Visitor tracking options."""

    tag: bool = field(default=False, metadata=_json("tag"))
    access_log: bool = field(default=False, metadata=_json("access_log"))


def _dump(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        out = {}
        for f in dataclasses.fields(value):
            key = f.metadata.get("json")
            if key is None:
                continue
            item = getattr(value, f.name)
            if f.metadata.get("omitempty") and not item:
                continue
            out[key] = _dump(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_dump(item) for item in value]
    return value


def _convert_value(kind: type, raw: Any, key: str) -> Any:
    if dataclasses.is_dataclass(kind):
        if raw is None:
            return kind()
        return _load(kind, raw)
    if raw is None:
        return kind()
    if kind is bool and not isinstance(raw, bool):
        raise SettingsError(f"field {key}: expected a boolean")
    if kind is str and not isinstance(raw, str):
        raise SettingsError(f"field {key}: expected a string")
    return raw


def _convert(f: dataclasses.Field, raw: Any, key: str) -> Any:
    if f.default_factory is list:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise SettingsError(f"field {key}: expected a list")
        item_kind = f.metadata.get("item", str)
        return [_convert_value(item_kind, item, key) for item in raw]
    return _convert_value(type(f.default), raw, key)


def _load(cls: type[S], data: Any) -> S:
    if not isinstance(data, dict):
        raise SettingsError(f"expected an object for {cls.__name__}")
    kwargs = {}
    for f in dataclasses.fields(cls):
        key = f.metadata.get("json")
        if key is None or key not in data:
            continue
        kwargs[f.name] = _convert(f, data[key], key)
    return cls(**kwargs)


def _with_defaults(cls: type[S]) -> S:
    return cls(
        **{
            f.name: f.metadata["default"]
            for f in dataclasses.fields(cls)
            if "default" in f.metadata
        }
    )


class SettingsManager:
    """Loads every settings section on start and writes changes through."""

    def __init__(
        self,
        repository: SettingsBackend,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._repository = repository
        self._on_change = on_change
        self._lock = threading.Lock()

        problems: list[str] = []
        self._security = self._read("security", Security, problems)
        self._appearance = self._read("appearance", Appearance, problems)
        try:
            self._appearance.language_tags()
        except SettingsError as err:
            problems.append(str(err))
        self._visitors = self._read("visitors", Visitors, problems)
        self._storage = self._read("storage", Storage, problems)
        self._privacy = self._read("privacy", Privacy, problems)

        if problems:
            raise SettingsError(", ".join(problems))

    def _read(self, name: str, cls: type[S], problems: list[str]) -> S:
        try:
            raw = self._repository.get(name)
        except NotFoundError:
            return _with_defaults(cls)
        except Exception as err:  # every failure is reported together
            problems.append(str(err))
            return cls()
        try:
            return _load(cls, raw)
        except SettingsError as err:
            problems.append(f"unmarshal settings {name}: {err}")
            return cls()

    def _store(self, name: str, value: Any) -> None:
        self._repository.set(name, _dump(value))
        if self._on_change is not None:
            try:
                self._on_change()
            except Exception as err:
                raise SettingsError(f"invalidate settings cache deps: {err}") from err

    def security(self) -> Security:
        """Return the security settings."""
        with self._lock:
            return copy.deepcopy(self._security)

    def set_security(self, value: Security) -> None:
        """Store new security settings."""
        with self._lock:
            value = copy.deepcopy(value)
            self._store("security", value)
            self._security = value

    def appearance(self) -> Appearance:
        """Return the appearance settings."""
        with self._lock:
            return copy.deepcopy(self._appearance)

    def set_appearance(self, value: Appearance) -> None:
        """Validate and store new appearance settings."""
        with self._lock:
            value = copy.deepcopy(value)
            value.language_tags()
            self._store("appearance", value)
            self._appearance = value

    def privacy(self) -> Privacy:
        """Return the privacy settings."""
        with self._lock:
            return copy.deepcopy(self._privacy)

    def set_privacy(self, value: Privacy) -> None:
        """Store new privacy settings."""
        with self._lock:
            value = copy.deepcopy(value)
            self._store("privacy", value)
            self._privacy = value

    def storage(self) -> Storage:
        """Return the storage settings."""
        with self._lock:
            return copy.deepcopy(self._storage)

    def set_storage(self, value: Storage) -> None:
        """Store new storage settings."""
        with self._lock:
            value = copy.deepcopy(value)
            self._store("storage", value)
            self._storage = value

    def visitors(self) -> Visitors:
        """Return the visitor tracking settings."""
        with self._lock:
            return copy.deepcopy(self._visitors)

    def set_visitors(self, value: Visitors) -> None:
        """Store new visitor tracking settings."""
        with self._lock:
            value = copy.deepcopy(value)
            self._store("visitors", value)
            self._visitors = value