from __future__ import annotations

from dataclasses import replace

from . import db
from .hashing import fingerprint
from .models import Resource
from .settings import settings
from .store import NotFound, ObjectStore

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def apply(store: ObjectStore, desired: Resource, hash_annotation: str | None = None) -> str:
    """Make the stored copy of ``desired`` match it, writing only when the hash differs.

    Returns one of CREATED, UPDATED or UNCHANGED. Store errors other than
    NotFound on the initial read propagate, as does FingerprintError.
    """
    hash_key = hash_annotation or settings.hash_annotation
    try:
        existing = store.get(*desired.key)
    except NotFound:
        existing = None

    desired_hash = fingerprint(desired)

    if existing is None:
        obj = replace(desired.copy(), uid="", resource_version=0)
        obj.annotations[hash_key] = desired_hash
        store.create(obj)
        db.log_event("INFO", f"Created {desired.key}", application=_owner(desired), kind=desired.kind)
        return CREATED

    if existing.annotations.get(hash_key) == desired_hash:
        return UNCHANGED

    # Update in place: keep server-assigned identity and any annotations
    # other writers put on the object.
    obj = desired.copy()
    obj.annotations = {**existing.annotations, **desired.annotations, hash_key: desired_hash}
    obj.uid = existing.uid
    obj.resource_version = existing.resource_version
    store.update(obj)
    db.log_event("INFO", f"Updated {desired.key}", application=_owner(desired), kind=desired.kind)
    return UPDATED


def _owner(obj: Resource) -> str | None:
    link = obj.controller_link()
    return f"{link.namespace}/{link.name}" if link else None
