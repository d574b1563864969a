"""Echo store backed by the Kubernetes API server.

Reads go through ``CustomObjectsApi.get_namespaced_custom_object``; status
writes through ``replace_namespaced_custom_object_status`` with the
``metadata.resourceVersion`` read at fetch time, so the API server
rejects stale writes with 409 (surfaced as :class:`ConflictError`).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from kubernetes import client

from echo_operator.api.v1alpha1 import GROUP, KIND, PLURAL, VERSION, Echo, EchoStatus, ObjectKey
from echo_operator.controller.triggers import EventType, WatchEvent
from echo_operator.core.errors import StoreUnavailableError
from echo_operator.core.logging import get_logger
from echo_operator.kube import translate_api_error, watch_stream

logger = get_logger(__name__)


class KubernetesEchoStore:
    """:class:`EchoStore` over the ``echoes`` custom resource.

    Args:
        api: CustomObjectsApi instance (one is created from the loaded
            configuration when omitted).
        namespace: Namespace to watch; None watches all namespaces.
    """

    def __init__(self, api: client.CustomObjectsApi | None = None, namespace: str | None = None) -> None:
        self._api = api or client.CustomObjectsApi()
        self._namespace = namespace

    async def get(self, key: ObjectKey) -> Echo:
        try:
            obj = await asyncio.to_thread(
                self._api.get_namespaced_custom_object,
                GROUP, VERSION, key.namespace, PLURAL, key.name,
            )
        except Exception as exc:
            raise translate_api_error(exc, f"Echo {key}", unavailable=StoreUnavailableError) from exc
        return Echo.from_dict(obj)

    async def update_status(self, echo: Echo) -> Echo:
        body = echo.to_dict()
        try:
            obj = await asyncio.to_thread(
                self._api.replace_namespaced_custom_object_status,
                GROUP, VERSION, echo.metadata.namespace, PLURAL, echo.metadata.name, body,
            )
        except Exception as exc:
            raise translate_api_error(exc, f"Echo {echo.key}", unavailable=StoreUnavailableError) from exc
        return Echo.from_dict(obj)

    def _list_fn(self) -> tuple[Any, dict[str, Any]]:
        if self._namespace:
            return self._api.list_namespaced_custom_object, {
                "group": GROUP, "version": VERSION, "namespace": self._namespace, "plural": PLURAL,
            }
        return self._api.list_cluster_custom_object, {
            "group": GROUP, "version": VERSION, "plural": PLURAL,
        }

    async def watch(self) -> AsyncIterator[WatchEvent]:
        list_fn, kwargs = self._list_fn()
        async for raw in watch_stream(list_fn, **kwargs):
            event = echo_event(raw)
            if event is not None:
                yield event


def echo_event(raw: dict[str, Any]) -> WatchEvent | None:
    """Convert a raw custom-object watch event; bookmarks and errors yield None."""
    try:
        event_type = EventType(raw.get("type"))
    except ValueError:
        logger.debug("watch_event_skipped", type=raw.get("type"))
        return None
    obj = raw.get("object") or {}
    metadata = obj.get("metadata") or {}
    return WatchEvent(
        type=event_type,
        kind=KIND,
        namespace=metadata.get("namespace", "default"),
        name=metadata.get("name", ""),
        labels=dict(metadata.get("labels") or {}),
        status=EchoStatus.from_dict(obj.get("status")),
    )
