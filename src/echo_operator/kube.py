"""Shared plumbing for the Kubernetes-backed store and job backend.

- ``load_config``: in-cluster or kubeconfig credentials
- ``translate_api_error``: ApiException / transport errors → operator errors
- ``watch_stream``: a blocking ``kubernetes.watch.Watch`` pumped from a
  thread into an async iterator, re-opened when the server closes it

The kubernetes client is synchronous; every call goes through
``asyncio.to_thread`` so the event loop never blocks on the API server.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable
from typing import Any

from kubernetes import config, watch
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as TransportError

from echo_operator.core.errors import (
    ConfigError,
    ConflictError,
    NotFoundError,
    OperatorError,
    TransientError,
)
from echo_operator.core.logging import get_logger

logger = get_logger(__name__)

_END = object()

# Throttling and server-side failures. The client reports connection
# failures as status 0.
_RETRYABLE_STATUS = {0, 429, 500, 502, 503, 504}


def load_config(in_cluster: bool | None = None) -> None:
    """Load API credentials.

    Args:
        in_cluster: True forces the service-account config, False forces
            kubeconfig, None tries in-cluster first.

    Raises:
        ConfigError: No usable configuration was found.
    """
    if in_cluster is not False:
        try:
            config.load_incluster_config()
            logger.info("kube_config_loaded", source="in-cluster")
            return
        except config.ConfigException as exc:
            if in_cluster:
                raise ConfigError("In-cluster configuration unavailable", cause=exc) from exc
            logger.debug("in_cluster_config_unavailable", error=str(exc))
    try:
        config.load_kube_config()
    except (config.ConfigException, OSError) as exc:
        raise ConfigError("No kubeconfig found", cause=exc) from exc
    logger.info("kube_config_loaded", source="kubeconfig")


def translate_api_error(
    exc: Exception,
    what: str,
    *,
    unavailable: type[TransientError] = TransientError,
    on_conflict: type[OperatorError] = ConflictError,
) -> OperatorError:
    """Map a client exception onto the operator's error hierarchy.

    Args:
        exc: The exception raised by the kubernetes client.
        what: Object description for the message, e.g. ``Echo default/hello``.
        unavailable: Transient error type for this collaborator.
        on_conflict: Error type for HTTP 409 (conflict on update,
            already-exists on create).
    """
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return NotFoundError(f"{what} not found", cause=exc)
        if exc.status == 409:
            return on_conflict(f"{what}: {exc.reason}", cause=exc)
        if exc.status in _RETRYABLE_STATUS:
            return unavailable(f"{what}: API server returned {exc.status} {exc.reason}", cause=exc)
        return OperatorError(f"{what}: API server rejected request ({exc.status} {exc.reason})", cause=exc)
    if isinstance(exc, (TransportError, OSError)):
        return unavailable(f"{what}: {exc}", cause=exc)
    return OperatorError(f"{what}: {exc}", cause=exc)


async def watch_stream(
    list_fn: Callable[..., Any],
    *,
    reopen_delay: float = 1.0,
    **kwargs: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Yield raw watch events from ``list_fn`` forever.

    The blocking stream runs in a daemon thread and hands events to the
    loop with ``call_soon_threadsafe``. When the server ends the stream,
    or it fails, it is reopened after ``reopen_delay`` seconds. Closing
    the async generator stops the underlying watch.
    """
    loop = asyncio.get_running_loop()
    while True:
        queue: asyncio.Queue[Any] = asyncio.Queue()
        stream = watch.Watch()

        def pump() -> None:
            try:
                for raw in stream.stream(list_fn, **kwargs):
                    loop.call_soon_threadsafe(queue.put_nowait, raw)
            except Exception as exc:
                loop.call_soon_threadsafe(queue.put_nowait, exc)
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, _END)

        thread = threading.Thread(target=pump, name=f"watch-{list_fn.__name__}", daemon=True)
        thread.start()
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if isinstance(item, Exception):
                    logger.warning("watch_failed", source=list_fn.__name__, error=str(item))
                    continue
                yield item
        finally:
            stream.stop()
        logger.debug("watch_reopening", source=list_fn.__name__, delay=reopen_delay)
        await asyncio.sleep(reopen_delay)
