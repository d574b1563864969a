"""Job backends: where an Echo's message actually gets echoed."""

from echo_operator.runtimes._types import JobBackend, JobRequest, JobState, JobStatus

__all__ = ["JobBackend", "JobRequest", "JobState", "JobStatus"]
