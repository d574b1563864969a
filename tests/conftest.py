"""
Shared pytest fixtures and configuration for echo-operator tests.

This module provides:
- A fixed clock for deterministic status timestamps
- In-memory store / job backend pairs wired for owner-reference GC
- A reconciler over those collaborators
- Logging context cleanup between tests

Usage:
    async def test_something(store, job_backend, reconciler):
        echo = await store.create(Echo.new("hello", "hello"))
        await reconciler.reconcile(echo.key)
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import structlog

from echo_operator.api.v1alpha1 import ObjectKey
from echo_operator.controller.reconciler import EchoReconciler, JobTemplate
from echo_operator.runtimes.memory import InMemoryJobBackend
from echo_operator.store.memory import InMemoryEchoStore

FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_log_context() -> Generator[None, None, None]:
    """Clear structlog contextvars so bindings never leak between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def no_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run every test from an empty directory so a stray .env is never read."""
    monkeypatch.chdir(tmp_path)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def key() -> ObjectKey:
    return ObjectKey("default", "hello")


@pytest.fixture
def job_backend() -> InMemoryJobBackend:
    """Job backend whose jobs stay running until a test scripts them."""
    return InMemoryJobBackend()


@pytest.fixture
def store(job_backend: InMemoryJobBackend) -> InMemoryEchoStore:
    return InMemoryEchoStore(job_backend=job_backend)


@pytest.fixture
def reconciler(
    store: InMemoryEchoStore,
    job_backend: InMemoryJobBackend,
    fixed_now: datetime,
) -> EchoReconciler:
    return EchoReconciler(
        store,
        job_backend,
        poll_interval=5.0,
        call_timeout=1.0,
        template=JobTemplate(image="busybox:test"),
        clock=lambda: fixed_now,
    )
