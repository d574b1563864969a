"""Resource store clients for Echo objects."""

from echo_operator.store._types import EchoStore

__all__ = ["EchoStore"]
