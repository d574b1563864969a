"""
Structured error types for the Echo operator.

Every failure the reconciler can observe is mapped onto a small, typed
hierarchy so that retry decisions never depend on message parsing.
Each error carries:

- **Category:** What kind of failure (network, conflict, not-found, ...)
- **Retryable:** Whether the controller should re-enqueue with backoff
- **Retry-after:** Optional hint for the delay before the next attempt
- **Cause:** Chained underlying exception for root cause analysis

Architecture:
    ::

        OperatorError
        ├── TransientError          (retryable=True)
        │   ├── StoreUnavailableError
        │   ├── BackendUnavailableError
        │   ├── CallTimeoutError
        │   ├── LostJobError
        │   └── ForeignJobError
        ├── NotFoundError           (resource absent)
        ├── ConflictError           (resource-version fencing failed)
        ├── AlreadyExistsError      (duplicate job creation)
        └── ConfigError             (operator misconfiguration)

Propagation:
    Only transient errors (and lost jobs, which are transient by type)
    leave the reconciler. Conflicts, duplicate creates and missing
    resources are resolved inside the pass.

Examples:
    >>> error = StoreUnavailableError("apiserver unreachable", retry_after=5)
    >>> error.retryable
    True
    >>> ConflictError("stale resourceVersion").retryable
    False
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and logging."""

    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    EXECUTION = "EXECUTION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


class OperatorError(Exception):
    """Base exception for all operator errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    callers only pass a message in the common case.

    Examples:
        >>> error = OperatorError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        cause: Exception | None = None,
        **metadata: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.metadata = metadata
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(OperatorError):
    """Temporary failure; the pass is retried with backoff.

    Transient errors never surface as a terminal resource phase.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class StoreUnavailableError(TransientError):
    """Resource store could not be reached or answered with a server error."""


class BackendUnavailableError(TransientError):
    """Job backend could not be reached or answered with a server error."""


class CallTimeoutError(TransientError):
    """A collaborator call exceeded its deadline."""

    default_category = ErrorCategory.TIMEOUT


class LostJobError(TransientError):
    """The job recorded in ``status.jobRef`` is gone while the Echo is Running.

    The job is not re-created, since that risks running its side effects
    twice. The existence check is retried with backoff instead.
    """

    default_category = ErrorCategory.EXECUTION

    def __init__(self, job_name: str, message: str | None = None, **kwargs: Any):
        self.job_name = job_name
        super().__init__(
            message or f"Job {job_name} not found while Echo is Running",
            job_name=job_name,
            **kwargs,
        )


class ForeignJobError(TransientError):
    """A job with the derived name is controlled by a different Echo.

    Seen when an Echo is deleted and re-created under the same name before
    garbage collection removes the old job. Retried until the old job is gone.
    """

    default_category = ErrorCategory.CONFLICT

    def __init__(self, job_name: str, owner_uid: str, **kwargs: Any):
        self.job_name = job_name
        self.owner_uid = owner_uid
        super().__init__(
            f"Job {job_name} belongs to Echo uid {owner_uid}; waiting for its removal",
            job_name=job_name,
            owner_uid=owner_uid,
            **kwargs,
        )


# =============================================================================
# RESOLVED-IN-PASS ERRORS (Not retried by the controller)
# =============================================================================


class NotFoundError(OperatorError):
    """Requested object does not exist."""

    default_category = ErrorCategory.NOT_FOUND


class ConflictError(OperatorError):
    """Conditional update rejected because the stored version moved on.

    Expected under concurrent writers. The pass is dropped and the next
    triggered reconciliation reads the newer state.
    """

    default_category = ErrorCategory.CONFLICT


class AlreadyExistsError(OperatorError):
    """Create rejected because an object with that name already exists."""

    default_category = ErrorCategory.ALREADY_EXISTS


class ConfigError(OperatorError):
    """Operator configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error should be retried with backoff."""
    if isinstance(error, OperatorError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, OSError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, OperatorError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "OperatorError",
    "TransientError",
    "StoreUnavailableError",
    "BackendUnavailableError",
    "CallTimeoutError",
    "LostJobError",
    "ForeignJobError",
    "NotFoundError",
    "ConflictError",
    "AlreadyExistsError",
    "ConfigError",
    "is_retryable",
    "categorize_error",
]
