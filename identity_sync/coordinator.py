"""Ordered writes of users, groups and memberships to both backing stores.

Every operation runs its steps strictly in sequence and stops at the first
failure. Nothing is rolled back: when the directory write succeeded and the
relational write failed (or the other way round) the raised StoreError names
the failing store and step, and its ``outcome`` lists the steps that did land,
so the caller can decide whether to compensate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from identity_sync.config import SyncConfig
from identity_sync.errors import DirectoryError, RelationalError, Store
from identity_sync.membership import delta, parse_ids, serialize_ids
from identity_sync.models import Group, User, split_dn

logger = logging.getLogger("identity_sync.coordinator")

# Placeholders for user fields a provider left blank. given_name and
# introduction fall back to the (already defaulted) nickname.
DEFAULT_NICKNAME = "anonymous"
DEFAULT_MAIL = "no-mail"
DEFAULT_JOB_NUMBER = "no-job-number"
DEFAULT_DEPARTMENTS = "default:R&D"
DEFAULT_POSITION = "default:engineer"
DEFAULT_POSTAL_ADDRESS = "default:earth"
DEFAULT_MOBILE = "emptyMobile"


@dataclass(frozen=True)
class WriteStep:
    store: Store
    step: str


@dataclass
class WriteOutcome:
    """The steps of one logical operation that completed, in order."""

    operation: str
    steps: list[WriteStep] = field(default_factory=list)

    def stores(self) -> set[Store]:
        return {s.store for s in self.steps}


class _WriteSequence:
    def __init__(self, operation: str) -> None:
        self.outcome = WriteOutcome(operation)

    def run(self, store: Store, step: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            result = fn(*args)
        except Exception as exc:
            error_cls = DirectoryError if store is Store.DIRECTORY else RelationalError
            # The job boundary logs the failure with its traceback
            logger.debug(
                "%s failed at %s: %s",
                self.outcome.operation, step, exc,
                extra={"store": store.value, "step": step},
            )
            raise error_cls(step, exc, self.outcome) from exc
        self.outcome.steps.append(WriteStep(store, step))
        return result


def apply_user_defaults(user: User) -> User:
    """Fill blank fields with placeholders. Nickname first: others derive from it."""
    if not user.nickname:
        user.nickname = DEFAULT_NICKNAME
    if not user.given_name:
        user.given_name = user.nickname
    if not user.introduction:
        user.introduction = user.nickname
    if not user.mail:
        user.mail = DEFAULT_MAIL
    if not user.job_number:
        user.job_number = DEFAULT_JOB_NUMBER
    if not user.departments:
        user.departments = DEFAULT_DEPARTMENTS
    if not user.position:
        user.position = DEFAULT_POSITION
    if not user.postal_address:
        user.postal_address = DEFAULT_POSTAL_ADDRESS
    if not user.mobile:
        user.mobile = DEFAULT_MOBILE
    return user


class DualWriteCoordinator:
    def __init__(self, config: SyncConfig, db, directory) -> None:
        self.config = config
        self.db = db
        self.directory = directory

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def create_group(self, group: Group) -> WriteOutcome:
        seq = _WriteSequence(f"create group {group.group_dn}")
        seq.run(Store.DIRECTORY, "add group", self.directory.add_group, group)
        seq.run(Store.RELATIONAL, "add group", self.db.add_group, group)

        # The bootstrap admin joins every new group, relationally only
        admin = seq.run(
            Store.RELATIONAL, "find admin user",
            self.db.find_user, {"id": self.config.admin_user_id},
        )
        seq.run(Store.RELATIONAL, "add admin to group", self.db.add_user_to_group, group, [admin])
        logger.info("Created group %s", group.group_dn)
        return seq.outcome

    def update_group(self, old: Group, new: Group) -> WriteOutcome:
        if not self.config.ldap.group_name_modify:
            # Keep the old RDN but follow a move to a new parent
            old_rdn, _ = split_dn(old.group_dn)
            _, new_superior = split_dn(new.group_dn or old.group_dn)
            new.group_name = old.group_name
            new.group_dn = f"{old_rdn},{new_superior}" if new_superior else old_rdn
        if new.id is None:
            new.id = old.id

        seq = _WriteSequence(f"update group {old.group_dn}")
        seq.run(Store.DIRECTORY, "update group", self.directory.update_group, old, new)
        seq.run(Store.RELATIONAL, "update group", self.db.update_group, new)
        if new.group_dn.lower() != old.group_dn.lower():
            # The directory moved the whole subtree along with the entry
            seq.run(Store.RELATIONAL, "rebase child groups", self.db.rebase_group_dns, old.group_dn, new.group_dn)
        logger.info("Updated group %s", new.group_dn)
        return seq.outcome

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, groups: list[Group]) -> WriteOutcome:
        apply_user_defaults(user)

        seq = _WriteSequence(f"create user {user.user_dn}")
        seq.run(Store.RELATIONAL, "add user", self.db.add_user, user)
        seq.run(Store.DIRECTORY, "add user", self.directory.add_user, user)
        for group in groups:
            self._add_member(seq, group, user)
        logger.info("Created user %s", user.user_dn)
        return seq.outcome

    def update_user(self, old: User, new: User, group_ids: list[int]) -> WriteOutcome:
        if not self.config.ldap.user_name_modify:
            new.username = old.username
            new.user_dn = old.user_dn
        if new.id is None:
            new.id = old.id
        new.department_id = serialize_ids(group_ids)

        seq = _WriteSequence(f"update user {old.user_dn}")
        seq.run(Store.DIRECTORY, "update user", self.directory.update_user, old.username, new)
        seq.run(Store.RELATIONAL, "update user", self.db.update_user, new)

        added, removed = delta(parse_ids(old.department_id), group_ids)
        if added:
            for group in seq.run(Store.RELATIONAL, "resolve added groups", self.db.get_groups_by_ids, added):
                self._add_member(seq, group, new)
        if removed:
            for group in seq.run(Store.RELATIONAL, "resolve removed groups", self.db.get_groups_by_ids, removed):
                self._remove_member(seq, group, new)
        logger.info(
            "Updated user %s (+%d/-%d groups)", new.user_dn, len(added), len(removed),
        )
        return seq.outcome

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _add_member(self, seq: _WriteSequence, group: Group, user: User) -> None:
        if group.is_organizational_unit:
            logger.debug("Skipping membership in organizational unit %s", group.group_dn)
            return
        step = f"add {user.username} to {group.group_dn}"
        seq.run(Store.RELATIONAL, step, self.db.add_user_to_group, group, [user])
        seq.run(Store.DIRECTORY, step, self.directory.add_user_to_group, group.group_dn, user.user_dn)

    def _remove_member(self, seq: _WriteSequence, group: Group, user: User) -> None:
        if group.is_organizational_unit:
            logger.debug("Skipping membership in organizational unit %s", group.group_dn)
            return
        step = f"remove {user.username} from {group.group_dn}"
        seq.run(Store.RELATIONAL, step, self.db.remove_user_from_group, group, [user])
        seq.run(Store.DIRECTORY, step, self.directory.remove_user_from_group, group.group_dn, user.user_dn)
