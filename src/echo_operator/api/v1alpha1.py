"""Echo resource types, API group ``echo.martineg.net/v1alpha1``.

Defines the data structures the reconciler works on:

- ObjectKey: namespace + name identity of an Echo (the work-queue key)
- ObjectMeta / OwnerReference: the metadata fields the operator reads
- EchoSpec: desired state (the message to echo)
- EchoStatus / Condition: observed state, owned by the reconciler
- Echo: the full resource

Objects travel as plain dicts in the cluster's camelCase wire shape;
``from_dict`` / ``to_dict`` convert at the store boundary so that the rest
of the operator only sees typed dataclasses.

Phase graph::

    ∅ ──► Pending ──► Running ──► Completed
                         │
                         └──────► Failed

    Completed and Failed are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

GROUP = "echo.martineg.net"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "Echo"
PLURAL = "echoes"

MESSAGE_MAX_LENGTH = 1000


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime, truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def format_time(value: datetime | None) -> str | None:
    """Render a timestamp in the RFC 3339 form the API server stores."""
    if value is None:
        return None
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str | datetime | None) -> datetime | None:
    """Parse an RFC 3339 timestamp (``Z`` suffix accepted)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class EchoPhase(str, Enum):
    """Coarse lifecycle stage of an Echo."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (EchoPhase.COMPLETED, EchoPhase.FAILED)


@dataclass(frozen=True)
class UnrecognizedPhase:
    """A stored phase value outside :class:`EchoPhase` (corrupted state)."""

    raw: str


ObservedPhase = EchoPhase | UnrecognizedPhase | None
"""Result of reading ``status.phase``: a known phase, an unrecognized
value, or ``None`` when the resource has never been observed."""


def parse_phase(raw: str | None) -> ObservedPhase:
    """Classify a raw ``status.phase`` string.

    Example:
        >>> parse_phase("")
        >>> parse_phase("Running")
        <EchoPhase.RUNNING: 'Running'>
        >>> parse_phase("Bogus")
        UnrecognizedPhase(raw='Bogus')
    """
    if not raw:
        return None
    try:
        return EchoPhase(raw)
    except ValueError:
        return UnrecognizedPhase(raw)


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(str, Enum):
    """Condition types reported on an Echo."""

    READY = "Ready"
    PROGRESSING = "Progressing"
    FAILED = "Failed"


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Identity of a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ObjectKey:
        """Parse ``namespace/name``."""
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Expected 'namespace/name', got {value!r}")
        return cls(namespace=namespace, name=name)


@dataclass(frozen=True)
class OwnerReference:
    """Pointer from an owned object back to its owner."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OwnerReference:
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            uid=data.get("uid", ""),
            controller=bool(data.get("controller", False)),
            block_owner_deletion=bool(data.get("blockOwnerDeletion", False)),
        )


@dataclass
class ObjectMeta:
    """The subset of object metadata the operator reads and writes."""

    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    creation_timestamp: datetime | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            d["uid"] = self.uid
        if self.resource_version:
            d["resourceVersion"] = self.resource_version
        if self.generation:
            d["generation"] = self.generation
        if self.creation_timestamp:
            d["creationTimestamp"] = format_time(self.creation_timestamp)
        if self.labels:
            d["labels"] = dict(self.labels)
        if self.annotations:
            d["annotations"] = dict(self.annotations)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectMeta:
        return cls(
            name=data["name"],
            namespace=data.get("namespace") or "default",
            uid=data.get("uid", ""),
            resource_version=str(data.get("resourceVersion", "")),
            generation=int(data.get("generation", 0) or 0),
            creation_timestamp=parse_time(data.get("creationTimestamp")),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
        )


@dataclass(frozen=True)
class Condition:
    """One typed observation about the resource, keyed by ``type``."""

    type: str
    status: ConditionStatus
    reason: str
    message: str = ""
    last_transition_time: datetime | None = None
    observed_generation: int = 0

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": format_time(self.last_transition_time),
        }
        if self.observed_generation:
            d["observedGeneration"] = self.observed_generation
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data["type"],
            status=ConditionStatus(data.get("status", "Unknown")),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=parse_time(data.get("lastTransitionTime")),
            observed_generation=int(data.get("observedGeneration", 0) or 0),
        )


def set_condition(
    conditions: tuple[Condition, ...],
    new: Condition,
    now: datetime,
) -> tuple[Condition, ...]:
    """Merge ``new`` into ``conditions`` by type (last write wins).

    The existing position is kept. ``lastTransitionTime`` only moves when
    the condition's status flips, so re-asserting an unchanged condition
    yields an identical tuple.
    """
    merged: list[Condition] = []
    found = False
    for existing in conditions:
        if existing.type != new.type:
            merged.append(existing)
            continue
        found = True
        transition = (
            existing.last_transition_time
            if existing.status == new.status and existing.last_transition_time
            else now
        )
        merged.append(replace(new, last_transition_time=transition))
    if not found:
        merged.append(replace(new, last_transition_time=now))
    return tuple(merged)


def find_condition(conditions: tuple[Condition, ...], type_: str) -> Condition | None:
    for condition in conditions:
        if condition.type == type_:
            return condition
    return None


@dataclass(frozen=True)
class EchoSpec:
    """Desired state: the message to echo. Set once at creation."""

    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EchoSpec:
        return cls(message=data.get("message", ""))


@dataclass(frozen=True)
class EchoStatus:
    """Observed state, written only by the reconciler.

    ``phase`` keeps the raw stored string so a corrupted value survives
    the round trip and can be classified by :func:`parse_phase`.
    """

    phase: str = ""
    job_ref: str = ""
    message: str = ""
    conditions: tuple[Condition, ...] = ()
    last_execution_time: datetime | None = None

    @property
    def observed_phase(self) -> ObservedPhase:
        return parse_phase(self.phase)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        if self.phase:
            d["phase"] = self.phase
        if self.job_ref:
            d["jobName"] = self.job_ref
        if self.message:
            d["message"] = self.message
        if self.conditions:
            d["conditions"] = [c.to_dict() for c in self.conditions]
        if self.last_execution_time:
            d["lastExecutionTime"] = format_time(self.last_execution_time)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EchoStatus:
        data = data or {}
        return cls(
            phase=data.get("phase", "") or "",
            job_ref=data.get("jobName", "") or "",
            message=data.get("message", "") or "",
            conditions=tuple(Condition.from_dict(c) for c in data.get("conditions") or ()),
            last_execution_time=parse_time(data.get("lastExecutionTime")),
        )


@dataclass
class Echo:
    """The Echo custom resource."""

    metadata: ObjectMeta
    spec: EchoSpec
    status: EchoStatus = field(default_factory=EchoStatus)

    @property
    def key(self) -> ObjectKey:
        return self.metadata.key

    def with_status(self, status: EchoStatus) -> Echo:
        """Copy carrying a new status and the same resource version."""
        return replace(self, status=status)

    def owner_reference(self) -> OwnerReference:
        """Controller owner reference for objects this Echo owns."""
        return OwnerReference(
            api_version=API_VERSION,
            kind=KIND,
            name=self.metadata.name,
            uid=self.metadata.uid,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": API_VERSION,
            "kind": KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Echo:
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=EchoSpec.from_dict(data.get("spec") or {}),
            status=EchoStatus.from_dict(data.get("status")),
        )

    @classmethod
    def new(cls, name: str, message: str, namespace: str = "default") -> Echo:
        """Build an Echo as an external actor would submit it: spec only."""
        return cls(
            metadata=ObjectMeta(name=name, namespace=namespace),
            spec=EchoSpec(message=message),
        )
