"""Relational metadata store: connection pool, users, groups, mapping rules."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator, Iterable, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

from identity_sync.config import DatabaseConfig
from identity_sync.models import GROUP_COLUMNS, USER_COLUMNS, Group, User

logger = logging.getLogger("identity_sync.db")


class RecordNotFound(LookupError):
    """A find() matched no row."""


class Database:
    """Thin wrapper around a ThreadedConnectionPool with the store operations."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def add_group(self, group: Group) -> int:
        """Insert a group row and store the generated id on *group*."""
        values = [getattr(group, c) for c in GROUP_COLUMNS]
        with self.transaction() as cur:
            cur.execute(
                f"INSERT INTO groups ({', '.join(GROUP_COLUMNS)}) "
                f"VALUES ({', '.join(['%s'] * len(GROUP_COLUMNS))}) RETURNING id",
                values,
            )
            group.id = cur.fetchone()[0]
        return group.id

    def update_group(self, group: Group) -> None:
        set_clause = ", ".join(f"{c} = %s" for c in GROUP_COLUMNS)
        with self.transaction() as cur:
            cur.execute(
                f"UPDATE groups SET {set_clause}, updated_at = NOW() WHERE id = %s",
                [getattr(group, c) for c in GROUP_COLUMNS] + [group.id],
            )
            if cur.rowcount == 0:
                raise RecordNotFound(f"group id={group.id}")

    def rebase_group_dns(self, old_dn: str, new_dn: str) -> int:
        """Rewrite the DN suffix of every group below *old_dn* to *new_dn*.

        The directory moves a whole subtree on rename; this keeps the stored
        DNs of the descendants pointing at the moved entries.
        """
        suffix = f",{old_dn}"
        with self.transaction() as cur:
            cur.execute(
                """
                UPDATE groups
                SET group_dn = left(group_dn, length(group_dn) - %s) || %s,
                    updated_at = NOW()
                WHERE lower(right(group_dn, %s)) = lower(%s)
                """,
                (len(old_dn), new_dn, len(suffix), suffix),
            )
            return cur.rowcount

    def find_group(self, filters: dict[str, Any]) -> Group:
        rows = self._select("groups", GROUP_COLUMNS, filters, limit=1)
        if not rows:
            raise RecordNotFound(f"group {filters}")
        return Group(**rows[0])

    def list_groups(self, source: Optional[str] = None) -> list[Group]:
        filters = {"source": source} if source else {}
        return [Group(**row) for row in self._select("groups", GROUP_COLUMNS, filters)]

    def get_groups_by_ids(self, ids: Iterable[int]) -> list[Group]:
        ids = list(ids)
        if not ids:
            return []
        with self.transaction() as cur:
            cur.execute(
                f"SELECT id, {', '.join(GROUP_COLUMNS)} FROM groups "
                "WHERE id = ANY(%s) ORDER BY id",
                (ids,),
            )
            return [Group(**row) for row in _rows_as_dicts(cur)]

    def dept_ids_to_group_ids(self, dept_ids: Iterable[str]) -> list[int]:
        """Translate provider-prefixed department ids to relational group ids."""
        dept_ids = list(dept_ids)
        if not dept_ids:
            return []
        with self.transaction() as cur:
            cur.execute(
                "SELECT id FROM groups WHERE source_dept_id = ANY(%s) ORDER BY id",
                (dept_ids,),
            )
            return [row[0] for row in cur.fetchall()]

    def add_user_to_group(self, group: Group, users: list[User]) -> int:
        rows = [(group.id, u.id) for u in users]
        with self.transaction() as cur:
            psycopg2.extras.execute_values(
                cur,
                "INSERT INTO group_users (group_id, user_id) VALUES %s "
                "ON CONFLICT DO NOTHING",
                rows,
            )
            return cur.rowcount

    def remove_user_from_group(self, group: Group, users: list[User]) -> int:
        with self.transaction() as cur:
            cur.execute(
                "DELETE FROM group_users WHERE group_id = %s AND user_id = ANY(%s)",
                (group.id, [u.id for u in users]),
            )
            return cur.rowcount

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(self, user: User) -> int:
        values = [getattr(user, c) for c in USER_COLUMNS]
        with self.transaction() as cur:
            cur.execute(
                f"INSERT INTO users ({', '.join(USER_COLUMNS)}) "
                f"VALUES ({', '.join(['%s'] * len(USER_COLUMNS))}) RETURNING id",
                values,
            )
            user.id = cur.fetchone()[0]
        return user.id

    def update_user(self, user: User) -> None:
        set_clause = ", ".join(f"{c} = %s" for c in USER_COLUMNS)
        with self.transaction() as cur:
            cur.execute(
                f"UPDATE users SET {set_clause}, updated_at = NOW() WHERE id = %s",
                [getattr(user, c) for c in USER_COLUMNS] + [user.id],
            )
            if cur.rowcount == 0:
                raise RecordNotFound(f"user id={user.id}")

    def find_user(self, filters: dict[str, Any]) -> User:
        rows = self._select("users", USER_COLUMNS, filters, limit=1)
        if not rows:
            raise RecordNotFound(f"user {filters}")
        return User(**rows[0])

    # ------------------------------------------------------------------
    # Field mapping rules
    # ------------------------------------------------------------------

    def find_mapping_rule(self, flag: str) -> str:
        """Return the raw JSON text of the rule stored under *flag*."""
        with self.transaction() as cur:
            cur.execute("SELECT attributes FROM field_relations WHERE flag = %s", (flag,))
            row = cur.fetchone()
        if row is None:
            raise RecordNotFound(f"field relation {flag}")
        return row[0]

    # ------------------------------------------------------------------

    def _select(
        self,
        table: str,
        columns: list[str],
        filters: dict[str, Any],
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        allowed = set(columns) | {"id"}
        unknown = set(filters) - allowed
        if unknown:
            raise ValueError(f"Unknown filter columns for {table}: {sorted(unknown)}")

        sql = f"SELECT id, {', '.join(columns)} FROM {table}"
        params: list[Any] = []
        if filters:
            sql += " WHERE " + " AND ".join(f"{c} = %s" for c in filters)
            params.extend(filters.values())
        sql += " ORDER BY id"
        if limit:
            sql += " LIMIT %s"
            params.append(limit)

        with self.transaction() as cur:
            cur.execute(sql, params)
            return _rows_as_dicts(cur)


def _rows_as_dicts(cur) -> list[dict[str, Any]]:
    cols = [d[0] for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]
