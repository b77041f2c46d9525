"""Orchestrator exceptions."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base exception for orchestration errors."""


class PublishError(OrchestratorError):
    """One or more jobs of a fan-out could not be published.

    ``job_ids`` holds the jobs that did reach the queue; they are not
    withdrawn.
    """

    def __init__(
        self,
        run_id: str,
        errors: dict[str, BaseException],
        job_ids: list[str],
    ) -> None:
        self.run_id = run_id
        self.errors = errors
        self.job_ids = job_ids
        failed = ", ".join(f"{svc}: {exc}" for svc, exc in errors.items())
        super().__init__(f"Failed to publish {len(errors)} job(s) for run {run_id}: {failed}")
