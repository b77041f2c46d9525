"""Generic key-value configuration collaborator with an audit log."""

from __future__ import annotations

import abc
import copy
from typing import Any

from sitewarden.safety.types import AuditLogEntry


class ConfigStore(abc.ABC):
    """JSON values keyed by name, plus an append-only audit table.

    Writes are not transactional across keys.
    """

    @abc.abstractmethod
    async def get_value(self, key: str) -> Any | None:
        """Return the stored JSON value, or None if the key is unset."""

    @abc.abstractmethod
    async def set_value(self, key: str, value: Any) -> None:
        """Insert or overwrite a value."""

    @abc.abstractmethod
    async def append_audit(self, entry: AuditLogEntry) -> None:
        """Append one audit row.  Rows are never updated or pruned."""


class InMemoryConfigStore(ConfigStore):
    """Dict-backed store with a per-key version counter."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._versions: dict[str, int] = {key: 1 for key in self._values}
        self._audit: list[AuditLogEntry] = []

    @property
    def audit_log(self) -> list[AuditLogEntry]:
        return list(self._audit)

    def version(self, key: str) -> int:
        """Number of writes to *key* (0 if never written)."""
        return self._versions.get(key, 0)

    async def get_value(self, key: str) -> Any | None:
        return copy.deepcopy(self._values.get(key))

    async def set_value(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)
        self._versions[key] = self._versions.get(key, 0) + 1

    async def append_audit(self, entry: AuditLogEntry) -> None:
        self._audit.append(entry.model_copy(deep=True))
