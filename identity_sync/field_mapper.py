"""Project raw provider records onto canonical users and groups.

Each provider stores one mapping rule per entity kind under the key
``<flag>_user`` / ``<flag>_group``. A rule is a JSON object whose keys are
canonical field names and whose values are dotted paths into the provider's
record, e.g. ``{"username": "data.name", "sourceUserId": "userid"}``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Union

from identity_sync.db import RecordNotFound
from identity_sync.errors import MappingNotFound, MappingParseError
from identity_sync.membership import serialize_ids
from identity_sync.models import Group, MappingRule, User

logger = logging.getLogger("identity_sync.field_mapper")

USER = "user"
GROUP = "group"

# canonical rule field -> entity attribute
USER_FIELDS = {
    "username": "username",
    "nickname": "nickname",
    "givenName": "given_name",
    "mail": "mail",
    "jobNumber": "job_number",
    "mobile": "mobile",
    "avatar": "avatar",
    "postalAddress": "postal_address",
    "position": "position",
    "introduction": "introduction",
    "sourceUserId": "source_user_id",
    "sourceUnionId": "source_union_id",
}

GROUP_FIELDS = {
    "groupName": "group_name",
    "remark": "remark",
    "sourceDeptId": "source_dept_id",
    "sourceDeptParentId": "source_dept_parent_id",
}

# Namespaced by provider flag so numeric id spaces never collide
SOURCE_ID_FIELDS = frozenset(
    {"sourceUserId", "sourceUnionId", "sourceDeptId", "sourceDeptParentId"}
)

_ENTITIES = {USER: (User, USER_FIELDS), GROUP: (Group, GROUP_FIELDS)}


def query(document: Any, path: str) -> str:
    """Resolve a dotted *path* in a JSON document and render the hit as text.

    A missing path yields ``""``; this never raises. ``\\.`` escapes a literal
    dot, a numeric segment indexes into an array and ``#`` returns its length.
    """
    if not path:
        return ""
    node = document
    for segment in _split_path(path):
        if isinstance(node, dict):
            if segment not in node:
                return ""
            node = node[segment]
        elif isinstance(node, list):
            if segment == "#":
                node = len(node)
            elif segment.isdigit() and int(segment) < len(node):
                node = node[int(segment)]
            else:
                return ""
        else:
            return ""
    return _render(node)


def _split_path(path: str) -> list[str]:
    segments: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in path:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ".":
            segments.append("".join(current))
            current = []
        else:
            current.append(ch)
    segments.append("".join(current))
    return segments


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def compile_rule(key: str, text: Union[str, bytes, None]) -> MappingRule:
    """Parse stored rule text into an ordered MappingRule."""
    if not text:
        raise MappingParseError(key, "empty rule")
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MappingParseError(key, str(exc)) from exc
    if not isinstance(data, dict):
        raise MappingParseError(key, "expected a JSON object")
    for field_name, path in data.items():
        if not isinstance(path, str):
            raise MappingParseError(key, f"path for '{field_name}' is not a string")
    return MappingRule(key=key, pairs=tuple(data.items()))


class FieldMapper:
    """Loads mapping rules from the relational store and applies them."""

    def __init__(self, db) -> None:
        self.db = db

    def load_rule(self, flag: str, kind: str) -> MappingRule:
        key = f"{flag}_{kind}"
        try:
            text = self.db.find_mapping_rule(key)
        except RecordNotFound as exc:
            raise MappingNotFound(key) from exc
        return compile_rule(key, text)

    def map_record(self, flag: str, kind: str, raw: dict[str, Any]) -> Union[User, Group]:
        rule = self.load_rule(flag, kind)
        return apply_rule(rule, flag, kind, raw)

    def convert_departments(self, flag: str, records: list[dict[str, Any]]) -> list[Group]:
        rule = self.load_rule(flag, GROUP)
        return [apply_rule(rule, flag, GROUP, record) for record in records]

    def convert_users(self, flag: str, records: list[dict[str, Any]]) -> list[User]:
        """Map staff records and resolve their provider departments to group ids."""
        rule = self.load_rule(flag, USER)
        users = []
        for record in records:
            dept_ids = [f"{flag}_{d}" for d in record.get("department_ids") or []]
            group_ids = self.db.dept_ids_to_group_ids(dept_ids) if dept_ids else []
            user = apply_rule(rule, flag, USER, record)
            user.department_id = serialize_ids(group_ids)
            users.append(user)
        return users


def apply_rule(rule: MappingRule, flag: str, kind: str, raw: dict[str, Any]) -> Union[User, Group]:
    try:
        entity_cls, fields = _ENTITIES[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind: {kind}") from None

    # Serialize once so provider-specific value types become plain JSON
    document = json.loads(json.dumps(raw, ensure_ascii=False, default=str))
    entity = entity_cls()
    for field_name, path in rule.pairs:
        attr = fields.get(field_name)
        if attr is None:
            logger.debug("Ignoring unknown field %r in rule %s", field_name, rule.key)
            continue
        value = query(document, path)
        if field_name in SOURCE_ID_FIELDS:
            value = f"{flag}_{value}"
        setattr(entity, attr, value)
    return entity
