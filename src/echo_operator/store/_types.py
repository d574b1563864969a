"""Resource store protocol.

The reconciler reads Echo objects and writes their status subresource
through this interface only. Writes are fenced by the resource version
read at fetch time.

.. code-block:: text

    EchoStore Protocol
    ┌────────────────────────────────────────────────────────────────┐
    │  get(key) → Echo                 NotFoundError if absent       │
    │  update_status(echo) → Echo      ConflictError if version moved │
    └────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from echo_operator.api.v1alpha1 import Echo, ObjectKey


@runtime_checkable
class EchoStore(Protocol):
    """Typed get / update-status access to Echo resources."""

    async def get(self, key: ObjectKey) -> Echo:
        """Fetch the latest committed Echo.

        Raises:
            NotFoundError: The Echo does not exist (deleted).
            StoreUnavailableError: Transient store failure.
        """
        ...

    async def update_status(self, echo: Echo) -> Echo:
        """Replace the status subresource, conditional on
        ``echo.metadata.resource_version``.

        Returns the stored object with its new resource version.

        Raises:
            ConflictError: The stored version differs from the one given.
            NotFoundError: The Echo was deleted meanwhile.
            StoreUnavailableError: Transient store failure.
        """
        ...
