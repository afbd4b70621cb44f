from __future__ import annotations

import json
import os
import sqlite3
import sys
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Iterable, Iterator

from .settings import settings


_schema_lock = Lock()
_schema_ready: set[str] = set()

SCHEMA = """
CREATE TABLE IF NOT EXISTS applications (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  namespace TEXT NOT NULL,
  name TEXT NOT NULL,
  uid TEXT NOT NULL UNIQUE,
  generation INTEGER NOT NULL,
  spec TEXT NOT NULL, -- json
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(namespace, name)
);

CREATE TABLE IF NOT EXISTS objects (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  kind TEXT NOT NULL,
  namespace TEXT NOT NULL,
  name TEXT NOT NULL,
  uid TEXT NOT NULL UNIQUE,
  resource_version INTEGER NOT NULL,
  owner_uid TEXT, -- uid of the controller owner link
  labels TEXT NOT NULL, -- json
  annotations TEXT NOT NULL, -- json
  owner_links TEXT NOT NULL, -- json
  spec TEXT NOT NULL, -- json
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  UNIQUE(kind, namespace, name)
);

CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  ts TEXT NOT NULL,
  level TEXT NOT NULL,
  application TEXT,
  kind TEXT,
  message TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
CREATE INDEX IF NOT EXISTS idx_objects_owner_uid ON objects(owner_uid);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def resolve_db_path(path: str | None = None) -> str:
    """Return a file path usable by sqlite.

    If the configured path is an existing directory (a bind mount created by
    Docker for a missing file, typically) the DB file is placed inside it.
    """
    p = os.path.abspath(path or settings.db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "appop.db")
    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)
    return p


def init_db(path: str | None = None) -> str:
    """Create tables if they do not exist. Returns the resolved path."""
    p = resolve_db_path(path)
    with _schema_lock:
        if p in _schema_ready:
            return p
        with closing(sqlite3.connect(p)) as conn:
            conn.executescript(SCHEMA)
        _schema_ready.add(p)
    return p


@contextmanager
def connect(path: str | None = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection that commits on success and is always closed."""
    conn = sqlite3.connect(init_db(path), check_same_thread=False, timeout=5.0)
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def log_event(level: str, message: str, application: str | None = None, kind: str | None = None) -> None:
    """Append to the event log. A failing log never fails the caller."""
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, application, kind, message) VALUES (?, ?, ?, ?, ?)",
                (utc_now(), level.upper(), application, kind, message),
            )
    except sqlite3.Error as e:
        print(f"event log unavailable ({e}): {level.upper()} {message}", file=sys.stderr)


def latest_events(limit: int = 100, application: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if application:
            rows = conn.execute(
                "SELECT * FROM events WHERE application=? ORDER BY id DESC LIMIT ?", (application, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


@dataclass(frozen=True)
class ApplicationRow:
    id: int
    namespace: str
    name: str
    uid: str
    generation: int
    spec: dict[str, Any]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ObjectRow:
    id: int
    kind: str
    namespace: str
    name: str
    uid: str
    resource_version: int
    owner_uid: str | None
    labels: dict[str, str]
    annotations: dict[str, str]
    owner_links: list[dict[str, Any]]
    spec: dict[str, Any]
    created_at: str
    updated_at: str


_JSON_COLUMNS = {"spec", "labels", "annotations", "owner_links"}


def _decode(row: sqlite3.Row) -> dict[str, Any]:
    d = dict(row)
    for k in _JSON_COLUMNS & d.keys():
        d[k] = json.loads(d[k])
    return d


def _rows_to_dataclass(rows: Iterable[sqlite3.Row], cls: Any) -> list[Any]:
    return [cls(**_decode(r)) for r in rows]


# --- applications ---


def get_application(namespace: str, name: str, path: str | None = None) -> ApplicationRow | None:
    with connect(path) as conn:
        row = conn.execute("SELECT * FROM applications WHERE namespace=? AND name=?", (namespace, name)).fetchone()
        return ApplicationRow(**_decode(row)) if row else None


def list_applications(path: str | None = None) -> list[ApplicationRow]:
    with connect(path) as conn:
        rows = conn.execute("SELECT * FROM applications ORDER BY namespace, name").fetchall()
        return _rows_to_dataclass(rows, ApplicationRow)


def upsert_application(
    namespace: str, name: str, uid: str, spec: dict[str, Any], path: str | None = None
) -> ApplicationRow:
    """Insert, or update the spec of, an application. Generation moves only on spec change."""
    encoded = json.dumps(spec, sort_keys=True)
    now = utc_now()
    with connect(path) as conn:
        conn.execute(
            """
            INSERT INTO applications (namespace, name, uid, generation, spec, created_at, updated_at)
            VALUES (?, ?, ?, 1, ?, ?, ?)
            ON CONFLICT(namespace, name) DO UPDATE SET
              generation=CASE WHEN spec=excluded.spec THEN generation ELSE generation+1 END,
              updated_at=CASE WHEN spec=excluded.spec THEN updated_at ELSE excluded.updated_at END,
              spec=excluded.spec
            """,
            (namespace, name, uid, encoded, now, now),
        )
        row = conn.execute("SELECT * FROM applications WHERE namespace=? AND name=?", (namespace, name)).fetchone()
        return ApplicationRow(**_decode(row))


def delete_application(namespace: str, name: str, path: str | None = None) -> ApplicationRow | None:
    with connect(path) as conn:
        row = conn.execute("SELECT * FROM applications WHERE namespace=? AND name=?", (namespace, name)).fetchone()
        if not row:
            return None
        conn.execute("DELETE FROM applications WHERE id=?", (row["id"],))
        return ApplicationRow(**_decode(row))


# --- dependent objects ---


def get_object(kind: str, namespace: str, name: str, path: str | None = None) -> ObjectRow | None:
    with connect(path) as conn:
        row = conn.execute(
            "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?", (kind, namespace, name)
        ).fetchone()
        return ObjectRow(**_decode(row)) if row else None


def list_objects(
    kind: str | None = None,
    namespace: str | None = None,
    owner_uid: str | None = None,
    path: str | None = None,
) -> list[ObjectRow]:
    clauses: list[str] = []
    params: list[Any] = []
    for column, value in (("kind", kind), ("namespace", namespace), ("owner_uid", owner_uid)):
        if value:
            clauses.append(f"{column}=?")
            params.append(value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with connect(path) as conn:
        rows = conn.execute(f"SELECT * FROM objects {where} ORDER BY kind, namespace, name", params).fetchall()
        return _rows_to_dataclass(rows, ObjectRow)


def list_orphan_objects(path: str | None = None) -> list[ObjectRow]:
    """Objects whose controller owner no longer exists."""
    with connect(path) as conn:
        rows = conn.execute(
            """
            SELECT o.* FROM objects o
            LEFT JOIN applications a ON a.uid = o.owner_uid
            WHERE o.owner_uid IS NOT NULL AND a.id IS NULL
            ORDER BY o.kind, o.namespace, o.name
            """
        ).fetchall()
        return _rows_to_dataclass(rows, ObjectRow)


def insert_object(
    kind: str,
    namespace: str,
    name: str,
    uid: str,
    owner_uid: str | None,
    labels: dict[str, str],
    annotations: dict[str, str],
    owner_links: list[dict[str, Any]],
    spec: dict[str, Any],
    path: str | None = None,
) -> ObjectRow:
    """Insert a new object at resource_version 1. Raises sqlite3.IntegrityError if the key exists."""
    now = utc_now()
    with connect(path) as conn:
        conn.execute(
            """
            INSERT INTO objects (kind, namespace, name, uid, resource_version, owner_uid,
                                 labels, annotations, owner_links, spec, created_at, updated_at)
            VALUES (?, ?, ?, ?, 1, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                kind,
                namespace,
                name,
                uid,
                owner_uid,
                json.dumps(labels),
                json.dumps(annotations),
                json.dumps(owner_links),
                json.dumps(spec),
                now,
                now,
            ),
        )
        row = conn.execute(
            "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?", (kind, namespace, name)
        ).fetchone()
        return ObjectRow(**_decode(row))


def update_object(
    kind: str,
    namespace: str,
    name: str,
    owner_uid: str | None,
    labels: dict[str, str],
    annotations: dict[str, str],
    owner_links: list[dict[str, Any]],
    spec: dict[str, Any],
    expected_version: int | None = None,
    path: str | None = None,
) -> ObjectRow | None:
    """Compare-and-set update; bumps resource_version.

    Returns None when no row matched (missing object, or ``expected_version``
    is stale).
    """
    sql = """
        UPDATE objects
        SET owner_uid=?, labels=?, annotations=?, owner_links=?, spec=?,
            resource_version=resource_version+1, updated_at=?
        WHERE kind=? AND namespace=? AND name=?
    """
    params: list[Any] = [
        owner_uid,
        json.dumps(labels),
        json.dumps(annotations),
        json.dumps(owner_links),
        json.dumps(spec),
        utc_now(),
        kind,
        namespace,
        name,
    ]
    if expected_version:
        sql += " AND resource_version=?"
        params.append(expected_version)
    with connect(path) as conn:
        cur = conn.execute(sql, params)
        if cur.rowcount == 0:
            return None
        row = conn.execute(
            "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?", (kind, namespace, name)
        ).fetchone()
        return ObjectRow(**_decode(row))


def delete_object(kind: str, namespace: str, name: str, path: str | None = None) -> ObjectRow | None:
    with connect(path) as conn:
        row = conn.execute(
            "SELECT * FROM objects WHERE kind=? AND namespace=? AND name=?", (kind, namespace, name)
        ).fetchone()
        if not row:
            return None
        conn.execute("DELETE FROM objects WHERE id=?", (row["id"],))
        return ObjectRow(**_decode(row))
