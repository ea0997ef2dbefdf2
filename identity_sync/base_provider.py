"""Abstract base class for all HR/IM providers."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from identity_sync.config import ProviderConfig, SyncConfig
from identity_sync.db import RecordNotFound
from identity_sync.directory import group_dn_for, user_dn_for
from identity_sync.membership import parse_ids
from identity_sync.models import Group, User
from identity_sync.services import Services
from identity_sync.tree import build_tree, walk

logger = logging.getLogger("identity_sync.provider")

SYSTEM_CREATOR = "system"


class BaseProvider(ABC):
    """Each provider implements the two pulls and declares PROVIDER_NAME.

    The pulls return raw records exactly as the provider API shapes them; the
    stored mapping rules decide which keys become which canonical fields.
    """

    PROVIDER_NAME: str = ""

    def __init__(self, config: SyncConfig, services: Services) -> None:
        settings = config.provider(self.PROVIDER_NAME)
        if settings is None:
            raise ValueError(f"{self.PROVIDER_NAME} config not set")
        self.config = config
        self.settings: ProviderConfig = settings
        self.flag = settings.flag
        self.db = services.db
        self.mapper = services.mapper
        self.coordinator = services.coordinator

    @abstractmethod
    def fetch_departments(self) -> list[dict[str, Any]]:
        """Return every department below the provider's root department."""

    @abstractmethod
    def fetch_users(self) -> list[dict[str, Any]]:
        """Return every staff record, each with a ``department_ids`` list."""

    # ------------------------------------------------------------------
    # Sync passes
    # ------------------------------------------------------------------

    def sync_departments(self) -> dict[str, int]:
        """Create or update one group per provider department, parents first."""
        started = time.monotonic()
        raw = self.fetch_departments()
        groups = self.mapper.convert_departments(self.flag, raw)
        tree = build_tree(self.settings.root_source_id, groups)

        counts = {"created": 0, "updated": 0}
        for group in walk(tree):
            counts[self._upsert_group(group)] += 1

        logger.info(
            "Department sync complete: %s", counts,
            extra={
                "provider": self.PROVIDER_NAME,
                "entity_kind": "group",
                "records": len(raw),
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return counts

    def sync_users(self) -> dict[str, int]:
        started = time.monotonic()
        raw = self.fetch_users()
        users = self.mapper.convert_users(self.flag, raw)

        counts = {"created": 0, "updated": 0, "skipped": 0}
        for user in users:
            if not user.username:
                logger.warning(
                    "Skipping %s user without a username (source id %s)",
                    self.PROVIDER_NAME, user.source_user_id,
                )
                counts["skipped"] += 1
                continue
            counts[self._upsert_user(user)] += 1

        logger.info(
            "User sync complete: %s", counts,
            extra={
                "provider": self.PROVIDER_NAME,
                "entity_kind": "user",
                "records": len(raw),
                "duration_s": round(time.monotonic() - started, 3),
            },
        )
        return counts

    def _upsert_group(self, group: Group) -> str:
        parent = self.db.find_group({"source_dept_id": group.source_dept_parent_id})
        group.parent_id = parent.id
        group.source = self.flag
        group.creator = SYSTEM_CREATOR
        group.group_type = "cn"
        group.group_dn = group_dn_for(group.group_name, parent.group_dn)

        try:
            existing = self.db.find_group({"source_dept_id": group.source_dept_id})
        except RecordNotFound:
            self.coordinator.create_group(group)
            return "created"
        self.coordinator.update_group(existing, group)
        return "updated"

    def _upsert_user(self, user: User) -> str:
        user.source = self.flag
        user.creator = SYSTEM_CREATOR
        user.password = self.config.ldap.user_init_password
        user.user_dn = user_dn_for(user.username, self.config.ldap.user_dn)

        group_ids = parse_ids(user.department_id)
        groups = self.db.get_groups_by_ids(group_ids)
        user.departments = ",".join(g.group_name for g in groups)

        try:
            existing = self.db.find_user({"source_user_id": user.source_user_id})
        except RecordNotFound:
            self.coordinator.create_user(user, groups)
            return "created"
        self.coordinator.update_user(existing, user, group_ids)
        return "updated"
