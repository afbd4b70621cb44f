from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from typing import Any

from .models import Resource


class FingerprintError(Exception):
    pass


# Excluded from a Resource's fingerprint: the hash annotation lives in
# annotations, and uid/resourceVersion are assigned by the store.
_UNHASHED = ("annotations", "uid", "resourceVersion")


def _is_zero(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 0
    if isinstance(value, (str, list, dict)):
        return len(value) == 0
    return False


def _encode(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise FingerprintError(f"cannot encode value: {e}") from e


def canonicalize(value: Any) -> Any:
    """Return a JSON-ready form of ``value`` that ignores ordering and zero values.

    Mapping entries holding a zero value are dropped, so an absent field and an
    explicit zero produce the same form. Sequences and sets are treated as
    multisets and sorted by their encoded elements.
    """
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise FingerprintError(f"mapping keys must be strings, got {type(k).__name__}")
            c = canonicalize(v)
            if _is_zero(c):
                continue
            out[k] = c
        return out
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=_encode)
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    raise FingerprintError(f"cannot fingerprint value of type {type(value).__name__}")


def fingerprint(obj: Resource | Any) -> str:
    """64-bit content hash of a resource (or any JSON-like value) as a decimal string."""
    if isinstance(obj, Resource):
        payload = obj.to_dict()
        for k in _UNHASHED:
            payload.pop(k, None)
    else:
        payload = obj
    data = _encode(canonicalize(payload)).encode("utf-8")
    digest = hashlib.blake2b(data, digest_size=8).digest()
    return str(int.from_bytes(digest, "big"))
