"""LDAP directory writes for users, groups and group membership."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from ldap3 import ALL, MODIFY_ADD, MODIFY_DELETE, MODIFY_REPLACE, SAFE_SYNC, Connection, Server
from ldap3.utils.dn import escape_rdn

from identity_sync.config import LdapConfig
from identity_sync.models import Group, User, split_dn

logger = logging.getLogger("identity_sync.directory")


class DirectoryOperationError(Exception):
    """The directory server answered a write with a non-success result."""

    def __init__(self, operation: str, dn: str, result: dict[str, Any]) -> None:
        self.operation = operation
        self.dn = dn
        self.result = result
        super().__init__(
            f"LDAP {operation} on '{dn}' failed: "
            f"{result.get('description', 'unknown')} {result.get('message', '')}".rstrip()
        )


def _escape(value: str) -> str:
    # escape_rdn indexes the first character
    return escape_rdn(value) if value else value


def user_dn_for(username: str, users_base_dn: str) -> str:
    return f"uid={_escape(username)},{users_base_dn}"


def group_dn_for(group_name: str, parent_dn: str) -> str:
    return f"cn={_escape(group_name)},{parent_dn}"


def _attrs(**values: Any) -> dict[str, Any]:
    # Directory servers reject empty attribute values
    return {k: v for k, v in values.items() if v not in ("", None)}


class Directory:
    """Writes against one bound ldap3 connection shared by all sync jobs.

    The connection uses the SAFE_SYNC strategy, so every operation returns
    its own ``(status, result, response, request)`` tuple and concurrent jobs
    never read each other's result.
    """

    def __init__(self, config: LdapConfig, connection: Optional[Connection] = None) -> None:
        self.config = config
        self._conn = connection
        self._bind_lock = threading.Lock()

    @property
    def conn(self) -> Connection:
        with self._bind_lock:
            if self._conn is None:
                server = Server(self.config.url, get_info=ALL)
                self._conn = Connection(
                    server,
                    user=self.config.admin_dn,
                    password=self.config.admin_password,
                    client_strategy=SAFE_SYNC,
                    auto_bind=True,
                )
                logger.info("Bound to LDAP server %s as %s", self.config.url, self.config.admin_dn)
            return self._conn

    def close(self) -> None:
        with self._bind_lock:
            if self._conn is not None:
                self._conn.unbind()
                self._conn = None

    def _run(self, operation: str, dn: str, method: str, *args: Any, **kwargs: Any) -> None:
        status, result, _, _ = getattr(self.conn, method)(*args, **kwargs)
        if not status:
            raise DirectoryOperationError(operation, dn, dict(result or {}))
        logger.debug("LDAP %s ok: %s", operation, dn)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def add_group(self, group: Group) -> None:
        if group.is_organizational_unit:
            object_class = ["organizationalUnit", "top"]
            attributes = _attrs(ou=group.group_name, description=group.remark)
        else:
            # groupOfUniqueNames requires at least one member
            object_class = ["groupOfUniqueNames", "top"]
            attributes = _attrs(
                cn=group.group_name,
                description=group.remark,
                uniqueMember=[self.config.admin_dn],
            )
        self._run("add group", group.group_dn, "add", group.group_dn, object_class, attributes)

    def update_group(self, old: Group, new: Group) -> None:
        dn = old.group_dn
        if new.group_dn and new.group_dn.lower() != old.group_dn.lower():
            dn = self._move(old.group_dn, new.group_dn, "rename group")

        changes = {"description": [(MODIFY_REPLACE, [new.remark] if new.remark else [])]}
        self._run("update group", dn, "modify", dn, changes)

    def add_user_to_group(self, group_dn: str, user_dn: str) -> None:
        self._run("add member", group_dn, "modify", group_dn, {"uniqueMember": [(MODIFY_ADD, [user_dn])]})

    def remove_user_from_group(self, group_dn: str, user_dn: str) -> None:
        self._run("remove member", group_dn, "modify", group_dn, {"uniqueMember": [(MODIFY_DELETE, [user_dn])]})

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(self, user: User) -> None:
        attributes = _attrs(
            uid=user.username,
            cn=user.username,
            sn=user.nickname,
            displayName=user.nickname,
            givenName=user.given_name,
            mail=user.mail,
            employeeNumber=user.job_number,
            mobile=user.mobile,
            postalAddress=user.postal_address,
            businessCategory=user.departments,
            departmentNumber=user.position,
            title=user.position,
            description=user.introduction,
            userPassword=user.password,
        )
        self._run("add user", user.user_dn, "add", user.user_dn, ["inetOrgPerson", "top"], attributes)

    def update_user(self, old_username: str, user: User) -> None:
        """Replace the user's attributes, renaming the entry if the username changed."""
        dn = user_dn_for(old_username, self.config.user_dn)
        if user.username != old_username:
            dn = self._move(dn, user.user_dn or user_dn_for(user.username, self.config.user_dn), "rename user")

        values = {
            "cn": user.username,
            "sn": user.nickname,
            "displayName": user.nickname,
            "givenName": user.given_name,
            "mail": user.mail,
            "employeeNumber": user.job_number,
            "mobile": user.mobile,
            "postalAddress": user.postal_address,
            "businessCategory": user.departments,
            "departmentNumber": user.position,
            "title": user.position,
            "description": user.introduction,
        }
        changes = {k: [(MODIFY_REPLACE, [v] if v else [])] for k, v in values.items()}
        self._run("update user", dn, "modify", dn, changes)

    def _move(self, old_dn: str, new_dn: str, operation: str) -> str:
        new_rdn, new_superior = split_dn(new_dn)
        _, old_superior = split_dn(old_dn)
        if new_superior.lower() != old_superior.lower():
            self._run(operation, old_dn, "modify_dn", old_dn, new_rdn, new_superior=new_superior)
        else:
            self._run(operation, old_dn, "modify_dn", old_dn, new_rdn)
        logger.info("Moved %s to %s", old_dn, new_dn)
        return new_dn
