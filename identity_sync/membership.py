"""Group-membership deltas and the stored department-id list format."""

from __future__ import annotations

from typing import Iterable


def delta(old_ids: Iterable[int], new_ids: Iterable[int]) -> tuple[list[int], list[int]]:
    """Return (added, removed) between two membership id collections.

    Duplicates collapse and input order is ignored; both lists come back sorted.
    """
    old = set(old_ids)
    new = set(new_ids)
    return sorted(new - old), sorted(old - new)


def parse_ids(text: str) -> list[int]:
    """Parse a stored "3,7,12" department-id list. Blank entries are skipped."""
    return [int(part) for part in (p.strip() for p in (text or "").split(",")) if part]


def serialize_ids(ids: Iterable[int]) -> str:
    return ",".join(str(i) for i in ids)
