from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, replace
from threading import Lock
from typing import Iterator, Protocol, Union

from . import db
from .models import APPLICATION_KIND, Application, ObjectKey, OwnerLink, Resource


class StoreError(Exception):
    """A store call failed. Transient: the caller retries the whole pass."""


class NotFound(StoreError):
    pass


class Conflict(StoreError):
    """The object already exists, or was modified since it was read."""


@dataclass(frozen=True)
class WatchEvent:
    type: str  # ADDED|MODIFIED|DELETED
    kind: str
    obj: Union[Application, Resource]


WatchCallback = Callable[[WatchEvent], None]


class ObjectStore(Protocol):
    def get(self, kind: str, namespace: str, name: str) -> Resource: ...

    def create(self, obj: Resource) -> Resource: ...

    def update(self, obj: Resource) -> Resource: ...

    def delete(self, kind: str, namespace: str, name: str) -> None: ...

    def list(self, kind: str | None = None, namespace: str | None = None, owner_uid: str | None = None) -> list[Resource]: ...

    def get_application(self, namespace: str, name: str) -> Application: ...

    def put_application(self, app: Application) -> Application: ...

    def delete_application(self, namespace: str, name: str) -> None: ...

    def list_applications(self) -> list[Application]: ...

    def collect_garbage(self) -> list[ObjectKey]: ...

    def watch(self, callback: WatchCallback) -> None: ...


def new_uid() -> str:
    return str(uuid.uuid4())


class _Watchable:
    def __init__(self) -> None:
        self._watchers: list[WatchCallback] = []
        self._watch_lock = Lock()

    def watch(self, callback: WatchCallback) -> None:
        with self._watch_lock:
            self._watchers.append(callback)

    def _notify(self, type_: str, obj: Application | Resource) -> None:
        kind = APPLICATION_KIND if isinstance(obj, Application) else obj.kind
        with self._watch_lock:
            watchers = list(self._watchers)
        event = WatchEvent(type=type_, kind=kind, obj=obj)
        for cb in watchers:
            cb(event)


class MemoryStore(_Watchable):
    """Thread-safe in-process store.

    ``history`` records every write as ``(verb, key)`` so callers can check how
    many writes a pass issued.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock = Lock()
        self._objects: dict[ObjectKey, Resource] = {}
        self._apps: dict[tuple[str, str], Application] = {}
        self.history: list[tuple[str, ObjectKey]] = []

    def get(self, kind: str, namespace: str, name: str) -> Resource:
        key = ObjectKey(kind, namespace, name)
        with self._lock:
            obj = self._objects.get(key)
            if obj is None:
                raise NotFound(f"{key} not found")
            return obj.copy()

    def create(self, obj: Resource) -> Resource:
        with self._lock:
            if obj.key in self._objects:
                raise Conflict(f"{obj.key} already exists")
            stored = replace(obj.copy(), uid=new_uid(), resource_version=1)
            self._objects[obj.key] = stored
            self.history.append(("create", obj.key))
            out = stored.copy()
        self._notify("ADDED", out)
        return out

    def update(self, obj: Resource) -> Resource:
        with self._lock:
            existing = self._objects.get(obj.key)
            if existing is None:
                raise NotFound(f"{obj.key} not found")
            if obj.resource_version and obj.resource_version != existing.resource_version:
                raise Conflict(
                    f"{obj.key} was modified (have version {obj.resource_version}, store has {existing.resource_version})"
                )
            stored = replace(obj.copy(), uid=existing.uid, resource_version=existing.resource_version + 1)
            self._objects[obj.key] = stored
            self.history.append(("update", obj.key))
            out = stored.copy()
        self._notify("MODIFIED", out)
        return out

    def delete(self, kind: str, namespace: str, name: str) -> None:
        key = ObjectKey(kind, namespace, name)
        with self._lock:
            obj = self._objects.pop(key, None)
            if obj is None:
                raise NotFound(f"{key} not found")
            self.history.append(("delete", key))
        self._notify("DELETED", obj)

    def list(self, kind: str | None = None, namespace: str | None = None, owner_uid: str | None = None) -> list[Resource]:
        with self._lock:
            objs = [o.copy() for _, o in sorted(self._objects.items())]
        if kind:
            objs = [o for o in objs if o.kind == kind]
        if namespace:
            objs = [o for o in objs if o.namespace == namespace]
        if owner_uid:
            objs = [o for o in objs if (link := o.controller_link()) and link.uid == owner_uid]
        return objs

    def get_application(self, namespace: str, name: str) -> Application:
        with self._lock:
            app = self._apps.get((namespace, name))
            if app is None:
                raise NotFound(f"{APPLICATION_KIND}/{namespace}/{name} not found")
            return replace(app)

    def put_application(self, app: Application) -> Application:
        with self._lock:
            existing = self._apps.get(app.key)
            if existing is None:
                stored = replace(app, uid=new_uid(), generation=1)
                type_ = "ADDED"
            elif existing.spec_dict() == app.spec_dict():
                return replace(existing)
            else:
                stored = replace(app, uid=existing.uid, generation=existing.generation + 1)
                type_ = "MODIFIED"
            self._apps[app.key] = stored
            out = replace(stored)
        self._notify(type_, out)
        return out

    def delete_application(self, namespace: str, name: str) -> None:
        with self._lock:
            app = self._apps.pop((namespace, name), None)
            if app is None:
                raise NotFound(f"{APPLICATION_KIND}/{namespace}/{name} not found")
        self._notify("DELETED", app)
        self._cascade(app.uid)

    def list_applications(self) -> list[Application]:
        with self._lock:
            return [replace(a) for _, a in sorted(self._apps.items())]

    def _cascade(self, owner_uid: str) -> list[ObjectKey]:
        deleted: list[ObjectKey] = []
        for obj in self.list(owner_uid=owner_uid):
            try:
                self.delete(*obj.key)
            except NotFound:
                continue
            deleted.append(obj.key)
        return deleted

    def collect_garbage(self) -> list[ObjectKey]:
        with self._lock:
            live = {a.uid for a in self._apps.values()}
            owners = {link.uid for o in self._objects.values() if (link := o.controller_link())}
        deleted: list[ObjectKey] = []
        for uid in sorted(owners - live):
            deleted.extend(self._cascade(uid))
        return deleted


def _row_to_resource(row: db.ObjectRow) -> Resource:
    return Resource(
        kind=row.kind,
        namespace=row.namespace,
        name=row.name,
        uid=row.uid,
        resource_version=row.resource_version,
        labels=row.labels,
        annotations=row.annotations,
        owner_links=[OwnerLink(**x) for x in row.owner_links],
        spec=row.spec,
    )


def _row_to_application(row: db.ApplicationRow) -> Application:
    return Application(namespace=row.namespace, name=row.name, uid=row.uid, generation=row.generation, **row.spec)


class SqliteStore(_Watchable):
    """Store backed by the ``applications`` and ``objects`` tables.

    Updates are compare-and-set on ``resource_version``; dependents are indexed
    by the uid of their controller owner, which backs cascade delete.
    """

    def __init__(self, path: str | None = None):
        super().__init__()
        self.path = db.init_db(path)

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.OperationalError as e:
            raise StoreError(f"sqlite: {e}") from e

    def get(self, kind: str, namespace: str, name: str) -> Resource:
        with self._errors():
            row = db.get_object(kind, namespace, name, path=self.path)
        if row is None:
            raise NotFound(f"{ObjectKey(kind, namespace, name)} not found")
        return _row_to_resource(row)

    def create(self, obj: Resource) -> Resource:
        link = obj.controller_link()
        try:
            with self._errors():
                row = db.insert_object(
                    obj.kind,
                    obj.namespace,
                    obj.name,
                    uid=new_uid(),
                    owner_uid=link.uid if link else None,
                    labels=obj.labels,
                    annotations=obj.annotations,
                    owner_links=[x.to_dict() for x in obj.owner_links],
                    spec=obj.spec,
                    path=self.path,
                )
        except sqlite3.IntegrityError as e:
            raise Conflict(f"{obj.key} already exists") from e
        out = _row_to_resource(row)
        self._notify("ADDED", out)
        return out

    def update(self, obj: Resource) -> Resource:
        link = obj.controller_link()
        with self._errors():
            row = db.update_object(
                obj.kind,
                obj.namespace,
                obj.name,
                owner_uid=link.uid if link else None,
                labels=obj.labels,
                annotations=obj.annotations,
                owner_links=[x.to_dict() for x in obj.owner_links],
                spec=obj.spec,
                expected_version=obj.resource_version or None,
                path=self.path,
            )
        if row is None:
            # Distinguish a missing object from a stale resource_version.
            self.get(*obj.key)
            raise Conflict(f"{obj.key} was modified since version {obj.resource_version}")
        out = _row_to_resource(row)
        self._notify("MODIFIED", out)
        return out

    def delete(self, kind: str, namespace: str, name: str) -> None:
        with self._errors():
            row = db.delete_object(kind, namespace, name, path=self.path)
        if row is None:
            raise NotFound(f"{ObjectKey(kind, namespace, name)} not found")
        self._notify("DELETED", _row_to_resource(row))

    def list(self, kind: str | None = None, namespace: str | None = None, owner_uid: str | None = None) -> list[Resource]:
        with self._errors():
            rows = db.list_objects(kind=kind, namespace=namespace, owner_uid=owner_uid, path=self.path)
        return [_row_to_resource(r) for r in rows]

    def get_application(self, namespace: str, name: str) -> Application:
        with self._errors():
            row = db.get_application(namespace, name, path=self.path)
        if row is None:
            raise NotFound(f"{APPLICATION_KIND}/{namespace}/{name} not found")
        return _row_to_application(row)

    def put_application(self, app: Application) -> Application:
        with self._errors():
            before = db.get_application(app.namespace, app.name, path=self.path)
            row = db.upsert_application(app.namespace, app.name, new_uid(), app.spec_dict(), path=self.path)
        out = _row_to_application(row)
        if before is None:
            self._notify("ADDED", out)
        elif before.generation != row.generation:
            self._notify("MODIFIED", out)
        return out

    def delete_application(self, namespace: str, name: str) -> None:
        with self._errors():
            row = db.delete_application(namespace, name, path=self.path)
        if row is None:
            raise NotFound(f"{APPLICATION_KIND}/{namespace}/{name} not found")
        self._notify("DELETED", _row_to_application(row))
        self._cascade(row.uid)

    def list_applications(self) -> list[Application]:
        with self._errors():
            rows = db.list_applications(path=self.path)
        return [_row_to_application(r) for r in rows]

    def _cascade(self, owner_uid: str) -> list[ObjectKey]:
        deleted: list[ObjectKey] = []
        for obj in self.list(owner_uid=owner_uid):
            try:
                self.delete(*obj.key)
            except NotFound:
                continue
            deleted.append(obj.key)
        return deleted

    def collect_garbage(self) -> list[ObjectKey]:
        with self._errors():
            orphans = db.list_orphan_objects(path=self.path)
        deleted: list[ObjectKey] = []
        for row in orphans:
            try:
                self.delete(row.kind, row.namespace, row.name)
            except NotFound:
                continue
            deleted.append(ObjectKey(row.kind, row.namespace, row.name))
        return deleted


def open_store(kind: str, path: str | None = None) -> ObjectStore:
    if kind == "memory":
        return MemoryStore()
    if kind == "sqlite":
        return SqliteStore(path)
    raise ValueError(f"unknown store {kind!r} (expected sqlite|memory)")
