"""Persistence collaborator for diagnostic run records."""

from __future__ import annotations

import abc
from typing import Any

from sitewarden.diagnostics.types import DiagnosticRecord


class DiagnosticsStore(abc.ABC):
    """Where diagnostic runs are written: one write per state transition."""

    @abc.abstractmethod
    async def create_diagnostic(self, record: DiagnosticRecord) -> None:
        """Insert the initial record for a run."""

    @abc.abstractmethod
    async def update_diagnostic(self, run_id: str, **fields: Any) -> None:
        """Overwrite the given top-level fields of an existing record."""

    @abc.abstractmethod
    async def get_diagnostic(self, run_id: str) -> DiagnosticRecord | None:
        """Fetch a record by run id."""


class InMemoryDiagnosticsStore(DiagnosticsStore):
    """Dict-backed store for tests and local runs."""

    def __init__(self) -> None:
        self._records: dict[str, DiagnosticRecord] = {}
        self.write_count = 0

    async def create_diagnostic(self, record: DiagnosticRecord) -> None:
        self._records[record.run_id] = record.model_copy(deep=True)
        self.write_count += 1

    async def update_diagnostic(self, run_id: str, **fields: Any) -> None:
        record = self._records.get(run_id)
        if record is None:
            raise KeyError(f"Unknown diagnostic run: {run_id}")
        self._records[run_id] = record.model_copy(update=fields, deep=True)
        self.write_count += 1

    async def get_diagnostic(self, run_id: str) -> DiagnosticRecord | None:
        record = self._records.get(run_id)
        return record.model_copy(deep=True) if record is not None else None

    def list_diagnostics(self) -> list[DiagnosticRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]
