"""Error taxonomy for mapping, tree assembly and dual-store writes."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from identity_sync.coordinator import WriteOutcome


class Store(str, Enum):
    DIRECTORY = "directory"
    RELATIONAL = "relational"


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


class StoreError(SyncError):
    """A store write failed. Carries the steps that completed before it."""

    store: Store

    def __init__(
        self,
        step: str,
        cause: BaseException,
        outcome: Optional["WriteOutcome"] = None,
    ) -> None:
        self.step = step
        self.cause = cause
        self.outcome = outcome
        super().__init__(f"{self.store.value} store failed at '{step}': {cause}")

    @property
    def succeeded_stores(self) -> set[Store]:
        if self.outcome is None:
            return set()
        return {s.store for s in self.outcome.steps}


class DirectoryError(StoreError):
    store = Store.DIRECTORY


class RelationalError(StoreError):
    store = Store.RELATIONAL


class MappingNotFound(SyncError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No field mapping rule stored for '{key}'")


class MappingParseError(SyncError):
    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Field mapping rule '{key}' is malformed: {reason}")


class TreeCycleError(SyncError):
    """The parent chain of the group list loops back on itself."""

    def __init__(self, source_dept_id: str) -> None:
        self.source_dept_id = source_dept_id
        super().__init__(f"Group hierarchy contains a cycle at '{source_dept_id}'")


class ProviderError(SyncError):
    """A provider API returned an error payload."""
