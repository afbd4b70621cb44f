from __future__ import annotations

import copy
import re
from dataclasses import asdict, dataclass, field
from typing import Any, NamedTuple


APPLICATION_KIND = "Application"
DEPLOYMENT_KIND = "Deployment"
SERVICE_KIND = "Service"

NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?$")


def validate_name(value: str, what: str = "name") -> None:
    if not NAME_RE.match(value or ""):
        raise ValueError(
            f"Invalid {what} {value!r}. Use lowercase letters/numbers and hyphen, "
            "starting and ending with a letter or number (max 63 chars)."
        )


class ObjectKey(NamedTuple):
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass
class Application:
    """The intent object: one PodInfo application with an optional Redis cache."""

    namespace: str
    name: str
    uid: str = ""
    generation: int = 0
    replica_count: int = 2
    memory_limit: str = ""
    cpu_request: str = ""
    image_repository: str = ""
    image_tag: str = ""
    ui_color: str = ""
    ui_message: str = ""
    redis_enabled: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return self.namespace, self.name

    @property
    def image(self) -> str:
        return f"{self.image_repository}:{self.image_tag}"

    def spec_dict(self) -> dict[str, Any]:
        """The user-controlled part of the record (everything but identity)."""
        d = asdict(self)
        for k in ("namespace", "name", "uid", "generation"):
            d.pop(k)
        return d

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OwnerLink:
    kind: str
    namespace: str
    name: str
    uid: str
    controller: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Resource:
    """A dependent object: a freshly built descriptor, or the store's copy of one.

    ``uid`` and ``resource_version`` are assigned by the store and stay empty on
    descriptors.
    """

    kind: str
    namespace: str
    name: str
    spec: dict[str, Any] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_links: list[OwnerLink] = field(default_factory=list)
    uid: str = ""
    resource_version: int = 0

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.kind, self.namespace, self.name)

    def controller_link(self) -> OwnerLink | None:
        for link in self.owner_links:
            if link.controller:
                return link
        return None

    def copy(self) -> Resource:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "uid": self.uid,
            "resourceVersion": self.resource_version,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "ownerLinks": [link.to_dict() for link in self.owner_links],
            "spec": copy.deepcopy(self.spec),
        }


@dataclass
class ReconcileOutcome:
    namespace: str
    name: str
    state: str = "converged"  # converged|gone
    created: list[ObjectKey] = field(default_factory=list)
    updated: list[ObjectKey] = field(default_factory=list)
    unchanged: list[ObjectKey] = field(default_factory=list)
    deleted: list[ObjectKey] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    def record(self, action: str, key: ObjectKey) -> None:
        getattr(self, action).append(key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace": self.namespace,
            "name": self.name,
            "state": self.state,
            "created": [str(k) for k in self.created],
            "updated": [str(k) for k in self.updated],
            "unchanged": [str(k) for k in self.unchanged],
            "deleted": [str(k) for k in self.deleted],
        }
