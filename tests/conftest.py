"""Shared fixtures: in-memory stand-ins for the directory and relational store."""

import copy
import json
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from identity_sync.config import (  # noqa: E402
    DatabaseConfig,
    LdapConfig,
    ProviderConfig,
    SyncConfig,
)
from identity_sync.coordinator import DualWriteCoordinator  # noqa: E402
from identity_sync.db import RecordNotFound  # noqa: E402
from identity_sync.field_mapper import FieldMapper  # noqa: E402
from identity_sync.models import Group, User  # noqa: E402
from identity_sync.services import Services  # noqa: E402

BASE_DN = "dc=example,dc=com"
USERS_DN = f"ou=people,{BASE_DN}"


class FakeDatabase:
    """Relational store kept in dicts. ``fail_on`` names methods that raise."""

    def __init__(self, calls):
        self.calls = calls
        self.groups = {}
        self.users = {}
        self.members = set()
        self.rules = {}
        self.fail_on = set()
        self._next_id = 100

    def _record(self, name, *detail):
        self.calls.append(("relational", name) + detail)
        if name in self.fail_on:
            raise RuntimeError(f"relational {name} exploded")

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    def seed_group(self, **kwargs):
        group = Group(**kwargs)
        group.id = group.id or self._new_id()
        self.groups[group.id] = copy.copy(group)
        return group

    def seed_user(self, **kwargs):
        user = User(**kwargs)
        user.id = user.id or self._new_id()
        self.users[user.id] = copy.copy(user)
        return user

    def _match(self, entity, filters):
        return all(getattr(entity, k) == v for k, v in filters.items())

    def add_group(self, group):
        self._record("add_group", group.group_dn)
        group.id = self._new_id()
        self.groups[group.id] = copy.copy(group)
        return group.id

    def update_group(self, group):
        self._record("update_group", group.group_dn)
        if group.id not in self.groups:
            raise RecordNotFound(group.id)
        self.groups[group.id] = copy.copy(group)

    def rebase_group_dns(self, old_dn, new_dn):
        self._record("rebase_group_dns", old_dn, new_dn)
        suffix = f",{old_dn}".lower()
        moved = 0
        for group in self.groups.values():
            if group.group_dn.lower().endswith(suffix):
                group.group_dn = group.group_dn[: -len(old_dn)] + new_dn
                moved += 1
        return moved

    def find_group(self, filters):
        self._record("find_group")
        for group in self.groups.values():
            if self._match(group, filters):
                return copy.copy(group)
        raise RecordNotFound(filters)

    def list_groups(self, source=None):
        return [copy.copy(g) for g in self.groups.values() if source is None or g.source == source]

    def get_groups_by_ids(self, ids):
        self._record("get_groups_by_ids", tuple(ids))
        return [copy.copy(self.groups[i]) for i in sorted(ids) if i in self.groups]

    def dept_ids_to_group_ids(self, dept_ids):
        wanted = set(dept_ids)
        return sorted(g.id for g in self.groups.values() if g.source_dept_id in wanted)

    def add_user_to_group(self, group, users):
        self._record("add_user_to_group", group.group_dn, tuple(u.username for u in users))
        for user in users:
            self.members.add((group.id, user.id))
        return len(users)

    def remove_user_from_group(self, group, users):
        self._record("remove_user_from_group", group.group_dn, tuple(u.username for u in users))
        for user in users:
            self.members.discard((group.id, user.id))
        return len(users)

    def add_user(self, user):
        self._record("add_user", user.user_dn)
        user.id = self._new_id()
        self.users[user.id] = copy.copy(user)
        return user.id

    def update_user(self, user):
        self._record("update_user", user.user_dn)
        if user.id not in self.users:
            raise RecordNotFound(user.id)
        self.users[user.id] = copy.copy(user)

    def find_user(self, filters):
        self._record("find_user")
        for user in self.users.values():
            if self._match(user, filters):
                return copy.copy(user)
        raise RecordNotFound(filters)

    def find_mapping_rule(self, flag):
        if flag not in self.rules:
            raise RecordNotFound(flag)
        return self.rules[flag]

    def close(self):
        pass


class FakeDirectory:
    """Directory entries keyed by DN; groups hold a set of member DNs."""

    def __init__(self, calls):
        self.calls = calls
        self.entries = {}
        self.members = {}
        self.fail_on = set()

    def _record(self, name, *detail):
        self.calls.append(("directory", name) + detail)
        if name in self.fail_on:
            raise RuntimeError(f"directory {name} exploded")

    def add_group(self, group):
        self._record("add_group", group.group_dn)
        self.entries[group.group_dn] = {"cn": group.group_name, "description": group.remark}
        self.members[group.group_dn] = set()

    def update_group(self, old, new):
        self._record("update_group", old.group_dn)
        entry = self.entries.pop(old.group_dn, {})
        entry.update(cn=new.group_name, description=new.remark)
        self.entries[new.group_dn] = entry
        self.members[new.group_dn] = self.members.pop(old.group_dn, set())

    def add_user_to_group(self, group_dn, user_dn):
        self._record("add_user_to_group", group_dn, user_dn)
        self.members.setdefault(group_dn, set()).add(user_dn)

    def remove_user_from_group(self, group_dn, user_dn):
        self._record("remove_user_from_group", group_dn, user_dn)
        self.members.setdefault(group_dn, set()).discard(user_dn)

    def add_user(self, user):
        self._record("add_user", user.user_dn)
        self.entries[user.user_dn] = {"uid": user.username, "sn": user.nickname}

    def update_user(self, old_username, user):
        self._record("update_user", old_username)
        self.entries[user.user_dn] = {"uid": user.username, "sn": user.nickname}

    def close(self):
        pass


def make_config(group_name_modify=False, user_name_modify=False, **providers):
    ldap = LdapConfig(
        url="ldap://localhost:389",
        admin_dn=f"cn=admin,{BASE_DN}",
        admin_password="secret",
        base_dn=BASE_DN,
        user_dn=USERS_DN,
        group_name_modify=group_name_modify,
        user_name_modify=user_name_modify,
        user_init_password="init-pass",
    )
    return SyncConfig(
        ldap=ldap,
        database=DatabaseConfig(url="postgresql://localhost/test"),
        admin_user_id=1,
        **providers,
    )


@pytest.fixture
def calls():
    return []


@pytest.fixture
def db(calls):
    fake = FakeDatabase(calls)
    fake.seed_user(id=1, username="admin", user_dn=f"uid=admin,{USERS_DN}")
    return fake


@pytest.fixture
def directory(calls):
    return FakeDirectory(calls)


@pytest.fixture
def config():
    return make_config(
        dingtalk=ProviderConfig(flag="dingtalk", enable_sync=True, root_dept_id="1"),
    )


@pytest.fixture
def coordinator(config, db, directory):
    return DualWriteCoordinator(config, db, directory)


@pytest.fixture
def services(db, directory, coordinator):
    return Services(db=db, directory=directory, mapper=FieldMapper(db), coordinator=coordinator)


@pytest.fixture
def dingtalk_rules(db):
    db.rules["dingtalk_group"] = json.dumps({
        "groupName": "name",
        "remark": "name",
        "sourceDeptId": "dept_id",
        "sourceDeptParentId": "parent_id",
    })
    db.rules["dingtalk_user"] = json.dumps({
        "username": "userid",
        "nickname": "name",
        "mail": "email",
        "sourceUserId": "userid",
        "sourceUnionId": "unionid",
    })
    return db.rules
