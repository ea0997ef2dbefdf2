"""Canonical entities shared by the mapper, the stores and the coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

OU_PREFIX = "ou="


def split_dn(dn: str) -> tuple[str, str]:
    """Split off the leading RDN, honouring backslash-escaped commas."""
    escaped = False
    for i, ch in enumerate(dn):
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ",":
            return dn[:i], dn[i + 1:]
    return dn, ""


@dataclass
class User:
    username: str = ""
    nickname: str = ""
    given_name: str = ""
    mail: str = ""
    job_number: str = ""
    mobile: str = ""
    avatar: str = ""
    postal_address: str = ""
    departments: str = ""
    position: str = ""
    introduction: str = ""
    creator: str = ""
    source: str = ""
    department_id: str = ""
    source_user_id: str = ""
    source_union_id: str = ""
    user_dn: str = ""
    id: Optional[int] = None
    # Written to the directory on creation, never persisted relationally
    password: str = field(default="", repr=False, compare=False)


@dataclass
class Group:
    group_name: str = ""
    remark: str = ""
    creator: str = ""
    group_type: str = ""
    parent_id: Optional[int] = None
    source: str = ""
    source_dept_id: str = ""
    source_dept_parent_id: str = ""
    group_dn: str = ""
    id: Optional[int] = None
    children: list["Group"] = field(default_factory=list, repr=False, compare=False)

    @property
    def is_organizational_unit(self) -> bool:
        return self.group_dn[: len(OU_PREFIX)].lower() == OU_PREFIX


# Persisted columns, in table order
USER_COLUMNS = [
    "username", "nickname", "given_name", "mail", "job_number", "mobile",
    "avatar", "postal_address", "departments", "position", "introduction",
    "creator", "source", "department_id", "source_user_id",
    "source_union_id", "user_dn",
]

GROUP_COLUMNS = [
    "group_name", "remark", "creator", "group_type", "parent_id", "source",
    "source_dept_id", "source_dept_parent_id", "group_dn",
]


@dataclass(frozen=True)
class MappingRule:
    """Compiled field mapping: ordered (canonical field, remote path) pairs."""

    key: str
    pairs: tuple[tuple[str, str], ...]
