from __future__ import annotations

import re
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner

DEFAULT_ROLE_PERMISSIONS: dict[str, list[str]] = {
    "admin": [
        "achievements.create",
        "achievements.delete",
        "achievements.read",
        "achievements.update",
        "achievements.verify",
    ],
    "lecturer": ["achievements.read", "achievements.verify"],
    "student": [
        "achievements.create",
        "achievements.delete",
        "achievements.read",
        "achievements.update",
    ],
}


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryPermissionsRepository:
    def __init__(
        self,
        user_roles: dict[str, str],
        role_permissions: dict[str, list[str]] | None = None,
    ) -> None:
        self._user_roles = user_roles
        self._role_permissions = role_permissions if role_permissions is not None else DEFAULT_ROLE_PERMISSIONS

    def get_user_permissions(self, *, user_id: str) -> list[str]:
        role = self._user_roles.get(user_id)
        if role is None:
            return []
        return sorted(set(self._role_permissions.get(role, [])))


class PostgresPermissionsRepository:
    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        users_table: str = "users",
        role_permissions_table: str = "role_permissions",
        permissions_table: str = "permissions",
    ) -> None:
        self._tx_runner = tx_runner
        self._users_table = _validate_identifier(users_table)
        self._role_permissions_table = _validate_identifier(role_permissions_table)
        self._permissions_table = _validate_identifier(permissions_table)

    def get_user_permissions(self, *, user_id: str) -> list[str]:
        sql = f"""
            SELECT DISTINCT p.name
            FROM {self._users_table} u
            JOIN {self._role_permissions_table} rp ON rp.role_id = u.role_id
            JOIN {self._permissions_table} p ON p.id = rp.permission_id
            WHERE u.id::text = %s
            ORDER BY p.name
        """

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                rows = cur.fetchall() or []
            return [str(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)
