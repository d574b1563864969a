"""Operator settings.

``OperatorSettings`` is read once at startup from ``ECHO_OPERATOR_*``
environment variables (and an optional ``.env`` file) and validated by
pydantic before any watch is opened.

Examples:
    >>> settings = OperatorSettings(workers=2, poll_interval=5)
    >>> settings.backend
    'kubernetes'

    $ ECHO_OPERATOR_BACKEND=memory ECHO_OPERATOR_WORKERS=8 echo-operator run
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OperatorSettings(BaseSettings):
    """Settings for the controller, its collaborators, and logging.

    Fields
    ──────
    workers            : Concurrent reconcile workers
    poll_interval      : Requeue delay while a job is still running
    reconcile_timeout  : Deadline for one reconciliation pass
    call_timeout       : Deadline for each store/backend call
    backoff_*          : Per-key exponential error backoff
    namespace          : Restrict watches to one namespace (None = all)
    job_*              : Shape of the batch/v1 Job created per Echo
    backend            : "kubernetes" or "memory"
    """

    model_config = SettingsConfigDict(
        env_prefix="ECHO_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Controller ───────────────────────────────────────────────
    workers: int = Field(default=4, ge=1)
    poll_interval: float = Field(default=10.0, gt=0)
    reconcile_timeout: float = Field(default=60.0, gt=0)
    call_timeout: float = Field(default=15.0, gt=0)

    # ── Error backoff ────────────────────────────────────────────
    backoff_base: float = Field(default=0.5, gt=0)
    backoff_max: float = Field(default=300.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    # ── Cluster ──────────────────────────────────────────────────
    backend: Literal["kubernetes", "memory"] = "kubernetes"
    namespace: str | None = None
    in_cluster: bool | None = None

    # ── Job template ─────────────────────────────────────────────
    job_image: str = "busybox:1.36"
    job_backoff_limit: int = Field(default=0, ge=0)
    job_ttl_seconds_after_finished: int | None = Field(default=None, ge=0)
    job_active_deadline_seconds: int | None = Field(default=None, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logs: bool | None = None
    service_name: str = "echo-operator"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_backoff(self) -> OperatorSettings:
        if self.backoff_base > self.backoff_max:
            raise ValueError("backoff_base must not exceed backoff_max")
        return self
