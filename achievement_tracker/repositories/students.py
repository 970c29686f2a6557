from __future__ import annotations

import re
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class InMemoryStudentsRepository:
    def __init__(self, students: dict[str, dict[str, Any]]) -> None:
        self._students = students

    def upsert(self, *, student: dict[str, Any]) -> dict[str, Any]:
        row = dict(student)
        self._students[str(row["user_id"])] = row
        return dict(row)

    def find_student_ids_by_advisor(self, *, advisor_id: str) -> list[str]:
        return sorted(
            user_id for user_id, row in self._students.items() if row.get("advisor_id") == advisor_id
        )


class PostgresStudentsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "students") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def find_student_ids_by_advisor(self, *, advisor_id: str) -> list[str]:
        sql = f"SELECT user_id FROM {self._table_name} WHERE advisor_id::text = %s ORDER BY user_id"

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql, (advisor_id,))
                rows = cur.fetchall() or []
            return [str(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)
