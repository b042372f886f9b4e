"""Generic repository for entities identified by an integer hash."""

from __future__ import annotations

import copy
import dataclasses
import json
import sqlite3
import threading
import types
import typing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

# SQLITE_CONSTRAINT_UNIQUE and SQLITE_CONSTRAINT_PRIMARYKEY extended codes.
_DUPLICATE_CODES = frozenset({2067, 1555})


class NotFoundError(LookupError):
    """Raised when a requested row does not exist."""


class AlreadyExistsError(Exception):
    """Raised when a row with the same unique key is already stored."""


class MissingHashError(ValueError):
    """Raised when an entity without a hash is written."""

    def __init__(self, message: str = "missing hash") -> None:
        super().__init__(message)


def augment_error(err: BaseException | None) -> BaseException | None:
    """Map a database error to a domain error where one applies."""
    if err is None:
        return None
    if isinstance(err, (NotFoundError, AlreadyExistsError)):
        return err
    if isinstance(err, sqlite3.IntegrityError):
        code = getattr(err, "sqlite_errorcode", None)
        message = str(err)
        if code in _DUPLICATE_CODES or message.startswith("UNIQUE constraint failed"):
            augmented = AlreadyExistsError(message)
            augmented.__cause__ = err
            return augmented
    return err


@dataclass
class EnsureOption(Generic[T]):
    """Hooks applied by HashedRepo.ensure.

    ``prepare`` receives the candidate and the stored value (``None`` on insert);
    on update its result tells whether to skip writing. ``on_insert`` and
    ``on_update`` receive the column mapping about to be written and return the
    mapping to write.
    """

    prepare: Callable[[T, T | None], bool] | None = None
    on_insert: Callable[[dict[str, Any]], dict[str, Any]] | None = None
    on_update: Callable[[dict[str, Any]], dict[str, Any]] | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def _strip_optional(hint: Any) -> Any:
    if typing.get_origin(hint) in (typing.Union, types.UnionType):
        args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def _base_name(annotation: Any) -> str:
    """Name of the annotated type with Optional and generic arguments removed."""
    if isinstance(annotation, str):
        text = annotation.strip()
        if text.startswith("Optional[") and text.endswith("]"):
            text = text[len("Optional[") : -1].strip()
        parts = [part.strip() for part in text.split("|") if part.strip() != "None"]
        if len(parts) == 1:
            text = parts[0]
        return text.split("[", 1)[0].rsplit(".", 1)[-1]
    base = _strip_optional(annotation)
    origin = typing.get_origin(base) or base
    return getattr(origin, "__name__", "")


def _decoder(annotation: Any) -> Callable[[Any], Any]:
    name = _base_name(annotation).lower()

    if name == "datetime":
        return lambda v: datetime.fromisoformat(v) if isinstance(v, str) else v
    if name == "bool":
        return lambda v: None if v is None else bool(v)
    if name in ("dict", "list"):
        return lambda v: json.loads(v) if isinstance(v, str) else v
    return lambda v: v


@dataclass(frozen=True)
class _Column:
    attr: str
    name: str
    decode: Callable[[Any], Any]


class HashedRepo(Generic[T]):
    """Stores dataclass entities having ``hash`` and ``created_at`` fields.

    A field maps to the column named by its ``db`` metadata, or by its own name.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        table: str,
        entity_type: type[T],
        prepare: Callable[[T], None] | None = None,
    ) -> None:
        if not dataclasses.is_dataclass(entity_type):
            raise TypeError(f"{entity_type!r} is not a dataclass")

        self._columns = [
            _Column(f.name, f.metadata.get("db", f.name), _decoder(f.type))
            for f in dataclasses.fields(entity_type)
        ]
        by_attr = {c.attr: c.name for c in self._columns}
        if "hash" not in by_attr or "created_at" not in by_attr:
            raise TypeError(f"{entity_type.__name__} needs hash and created_at fields")

        self._conn = conn
        self.table = table
        self.entity_type = entity_type
        self.prepare = prepare
        self._hash_col = by_attr["hash"]
        self._lock = threading.Lock()
        names = ", ".join(_quote(c.name) for c in self._columns)
        self._select = f"SELECT {names} FROM {_quote(table)}"

    def _to_entity(self, row: tuple) -> T:
        return self.entity_type(
            **{col.attr: col.decode(value) for col, value in zip(self._columns, row)}
        )

    def _to_row(self, value: T) -> dict[str, Any]:
        return {c.name: _encode(getattr(value, c.attr)) for c in self._columns}

    def _execute(self, sql: str, params: typing.Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            with self._conn:
                return self._conn.execute(sql, params)
        except sqlite3.Error as err:
            augmented = augment_error(err)
            if augmented is err:
                raise
            raise augmented from err

    def _find(self, hash_: int) -> T:
        cursor = self._execute(
            f"{self._select} WHERE {_quote(self._hash_col)} = ?", (hash_,)
        )
        row = cursor.fetchone()
        if row is None:
            raise NotFoundError(f"find {self.entity_type.__name__}: not found")
        return self._to_entity(row)

    def _insert(self, row: dict[str, Any]) -> None:
        columns = ", ".join(_quote(name) for name in row)
        marks = ", ".join("?" for _ in row)
        self._execute(
            f"INSERT INTO {_quote(self.table)} ({columns}) VALUES ({marks})",
            list(row.values()),
        )

    def _update(self, hash_: int, row: dict[str, Any]) -> None:
        if not row:
            return
        assignments = ", ".join(f"{_quote(name)} = ?" for name in row)
        self._execute(
            f"UPDATE {_quote(self.table)} SET {assignments} "
            f"WHERE {_quote(self._hash_col)} = ?",
            [*row.values(), hash_],
        )

    def exists(self, hash_: int) -> bool:
        """Tell whether an entity with the hash is stored."""
        cursor = self._execute(
            f"SELECT 1 FROM {_quote(self.table)} "
            f"WHERE {_quote(self._hash_col)} = ? LIMIT 1",
            (hash_,),
        )
        return cursor.fetchone() is not None

    def find_by_hash(self, hash_: int) -> T:
        """Return the entity with the hash or raise NotFoundError."""
        return self._find(hash_)

    def find_by_hashes(self, *args: int) -> list[T]:
        """Return the stored entities among the given hashes."""
        if not args:
            return []
        marks = ", ".join("?" for _ in args)
        cursor = self._execute(
            f"{self._select} WHERE {_quote(self._hash_col)} IN ({marks})", args
        )
        return [self._to_entity(row) for row in cursor.fetchall()]

    def find_all(self) -> list[T]:
        """Return every stored entity."""
        return [self._to_entity(row) for row in self._execute(self._select).fetchall()]

    def ensure(self, value: T, *args: EnsureOption[T]) -> T:
        """Insert the value or update the stored one, returning what was kept."""
        candidate = copy.deepcopy(value)
        hash_ = candidate.hash
        if not hash_:
            raise MissingHashError()

        with self._lock:
            try:
                existing = self._find(hash_)
            except NotFoundError:
                existing = None

            if existing is not None:
                candidate.created_at = existing.created_at
                skip = False
                for option in args:
                    if option.prepare is not None:
                        skip = option.prepare(candidate, existing)
                if skip:
                    return candidate

                if self.prepare is not None:
                    self.prepare(candidate)
                row = self._to_row(candidate)
                for option in args:
                    if option.on_update is not None:
                        row = option.on_update(row)
                self._update(hash_, row)
            else:
                for option in args:
                    if option.prepare is not None:
                        option.prepare(candidate, None)
                candidate.created_at = _now()
                if self.prepare is not None:
                    self.prepare(candidate)
                row = self._to_row(candidate)
                for option in args:
                    if option.on_insert is not None:
                        row = option.on_insert(row)
                self._insert(row)

        return candidate

    def add(self, value: T) -> T:
        """Insert a new entity; raise AlreadyExistsError on a duplicate hash."""
        candidate = copy.deepcopy(value)
        if not candidate.hash:
            raise MissingHashError()
        candidate.created_at = _now()
        if self.prepare is not None:
            self.prepare(candidate)
        self._insert(self._to_row(candidate))
        return candidate

    def update(self, value: T) -> None:
        """Overwrite the stored entity having the value's hash."""
        candidate = copy.deepcopy(value)
        if not candidate.hash:
            raise MissingHashError()
        if self.prepare is not None:
            self.prepare(candidate)
        self._update(candidate.hash, self._to_row(candidate))

    def delete(self, hash_: int) -> None:
        """Remove the entity having the hash."""
        self._execute(
            f"DELETE FROM {_quote(self.table)} WHERE {_quote(self._hash_col)} = ?",
            (hash_,),
        )