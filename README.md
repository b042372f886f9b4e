# photoblog

Building blocks for a self-hosted photo blog, stored in SQLite through the
standard library `sqlite3` module. The package has no runtime dependencies.

## Modules

### `photoblog.hashed`

`HashedRepo(conn, table, entity_type, prepare=None)` stores dataclass entities
that have `hash` and `created_at` fields. Each field maps to the column named
by its `db` metadata, or to its own name. `prepare`, if given, is called on a
copy of the value before it is written.

- `exists(hash_)`, `find_by_hash(hash_)`, `find_by_hashes(*hashes)`, `find_all()`
- `ensure(value, *options)` inserts the value, or updates the stored one while
  keeping its `created_at`, and returns what was written. Each `EnsureOption`
  may carry `prepare(candidate, existing)` (on update, its result tells whether
  to skip writing), `on_insert(row)` and `on_update(row)`.
- `add(value)`, `update(value)`, `delete(hash_)`

A hash of 0 raises `MissingHashError`; a missing row raises `NotFoundError`.
`augment_error(err)` turns an SQLite unique or primary key violation into
`AlreadyExistsError`. The repository does not create its table.

### `photoblog.settings_store`

`SettingsRepository(conn)` keeps named settings as JSON documents. `get(name)`
returns the decoded value or raises `NotFoundError`; `set(name, value)` inserts
or replaces it. The table is created by executing `photoblog.settings_store.SCHEMA`.

### `photoblog.settings`

`SettingsManager(repository, on_change=None)` loads the `Security`,
`Appearance`, `Privacy`, `Storage` and `Visitors` sections on start. A section
that is not stored gets its defaults (for example
`Appearance.featured_album_name` is `"featured"`). Every loading problem is
collected and raised together as one `SettingsError`.

Each section has a reader (`security()`, `appearance()`, ...) returning a copy
and a setter (`set_security(value)`, `set_appearance(value)`, ...) that writes
through to the repository and then calls `on_change`; a failing callback is
raised as `SettingsError`. `set_appearance` first checks the languages with
`Appearance.language_tags()`, which returns normalized language tags when more
than one language is set and raises `SettingsError` for a malformed one.
`Security.disabled()` tells whether no admin password hash or salt is set.

### `photoblog.config`

`load_config(environ=None)` returns a `Config` whose `storage_path` comes from
the `STORAGE_PATH` variable, `./photo-blog-data/` by default.

### `photoblog.visitor`

The `Visitor` record, `VisitorRepository(conn)` and the table's `SCHEMA`.

### `photoblog.stats`

`StatsRepository(conn)` creates its tables and collects statistics:
`collect_main`, `collect_album`, `collect_image`, `collect_thumbs`,
`collect_refer` and `collect_visitor`. Database failures while collecting are
logged, not raised. `collect_visitor` merges new request details into the
stored visitor and skips the write when nothing new is known. `is_admin(hash)`
tells whether a visitor was recorded as an admin.

`parse_collect_stats(query)` reads a `/stats` beacon from a query string or a
mapping into a `CollectStats`, raising `ValueError` for a malformed parameter;
hashes are given in base 36. `date_ts(moment)` returns the unix timestamp of
the start of the moment's UTC day.

### `photoblog.stats_reports`

`StatsReports(repository)` reads the statistics back: `daily_total(min_date,
max_date)`, `top_albums()`, `top_images(*hashes)` (at most 300),
`latest_refers()` (at most 100), `visitor_info(hash_)`, `page_visits(hash_)`
and `album_views(hash_)`.

### `photoblog.upload`

`album_path(name)` and `album_file_path(path, file_name)` build album paths.
`move_album_upload(source, album_name, filename, root=".")` moves a finished
upload into `album/<name>/` (or into `site/` when the album name is empty) and
`move_site_upload(source, filename, root=".")` moves one into `site/`.
`tus_uploads_button()` and `tus_album_html_button(album_name)` return the HTML
of the upload buttons.

## Example

```python
import sqlite3

from photoblog import settings_store
from photoblog.settings import SettingsManager

conn = sqlite3.connect(":memory:")
conn.execute(settings_store.SCHEMA)
manager = SettingsManager(settings_store.SettingsRepository(conn))

print(manager.appearance().featured_album_name)  # featured

appearance = manager.appearance()
appearance.site_title = "My photos"
manager.set_appearance(appearance)
```

## What this package does not do

There is no HTTP server, no command line, no upload protocol endpoint and no
WebDAV access here, and no storage of albums, images or thumbnails beyond the
generic `HashedRepo`. It provides storage, settings, statistics and file
placement for an application to build on.

## Running the tests

```
pip install -e .[test]
pytest
```