"""Echo API types."""

from echo_operator.api.v1alpha1 import (
    API_VERSION,
    GROUP,
    KIND,
    PLURAL,
    VERSION,
    Condition,
    ConditionStatus,
    ConditionType,
    Echo,
    EchoPhase,
    EchoSpec,
    EchoStatus,
    ObjectKey,
    ObjectMeta,
    OwnerReference,
    UnrecognizedPhase,
    parse_phase,
)

__all__ = [
    "API_VERSION",
    "GROUP",
    "KIND",
    "PLURAL",
    "VERSION",
    "Condition",
    "ConditionStatus",
    "ConditionType",
    "Echo",
    "EchoPhase",
    "EchoSpec",
    "EchoStatus",
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "UnrecognizedPhase",
    "parse_phase",
]
