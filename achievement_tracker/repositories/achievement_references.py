from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner

SORTABLE_COLUMNS = ("created_at", "submitted_at", "verified_at", "updated_at")
DEFAULT_SORT_COLUMN = "created_at"

_COLUMNS = (
    "id",
    "student_id",
    "mongo_achievement_id",
    "status",
    "submitted_at",
    "verified_at",
    "verified_by",
    "rejection_note",
    "deleted_at",
    "created_at",
    "updated_at",
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _normalize_sort(sort_by: str | None, sort_order: str | None) -> tuple[str, bool]:
    """Return (column, descending); unknown columns fall back to created_at DESC."""
    column = (sort_by or "").strip()
    if column not in SORTABLE_COLUMNS:
        return DEFAULT_SORT_COLUMN, True
    return column, (sort_order or "").strip().lower() != "asc"


class InMemoryAchievementReferencesRepository:
    def __init__(
        self,
        references: dict[str, dict[str, Any]],
        user_names: dict[str, str] | None = None,
    ) -> None:
        self._references = references
        self._user_names = user_names if user_names is not None else {}

    def _live(self, achievement_id: str) -> dict[str, Any] | None:
        row = self._references.get(achievement_id)
        if row is None or row.get("deleted_at") is not None:
            return None
        return row

    def create(self, *, reference: dict[str, Any]) -> dict[str, Any]:
        now = _utcnow_iso()
        row = {key: None for key in _COLUMNS}
        row.update(dict(reference))
        row["id"] = str(row.get("id") or uuid.uuid4())
        row["created_at"] = now
        row["updated_at"] = now
        self._references[str(row["mongo_achievement_id"])] = row
        return dict(row)

    def find_by_id(self, *, reference_id: str) -> dict[str, Any] | None:
        for row in self._references.values():
            if row.get("id") == reference_id and row.get("deleted_at") is None:
                return dict(row)
        return None

    def find_by_achievement_id(self, *, achievement_id: str) -> dict[str, Any] | None:
        row = self._live(achievement_id)
        return dict(row) if row is not None else None

    def _live_rows(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._references.values() if row.get("deleted_at") is None]

    def find_by_student(self, *, student_id: str) -> list[dict[str, Any]]:
        rows = [row for row in self._live_rows() if row.get("student_id") == student_id]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return rows

    def find_by_student_ids(
        self,
        *,
        student_ids: list[str],
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        if not student_ids:
            return [], 0
        wanted = set(student_ids)
        rows = [row for row in self._live_rows() if row.get("student_id") in wanted]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return rows[offset : offset + limit], len(rows)

    def find_pending_verification(self, *, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        rows = [row for row in self._live_rows() if row.get("status") == "submitted"]
        rows.sort(key=lambda x: str(x.get("submitted_at") or ""))
        return rows[offset : offset + limit], len(rows)

    def find_all_with_filters(
        self,
        *,
        limit: int,
        offset: int,
        status: str = "",
        student_id: str = "",
        sort_by: str = DEFAULT_SORT_COLUMN,
        sort_order: str = "desc",
    ) -> tuple[list[dict[str, Any]], int]:
        rows = self._live_rows()
        if status:
            rows = [row for row in rows if row.get("status") == status]
        if student_id:
            rows = [row for row in rows if str(row.get("student_id")) == student_id]
        column, descending = _normalize_sort(sort_by, sort_order)
        # postgres default: NULLS LAST for ASC, NULLS FIRST for DESC
        rows.sort(key=lambda x: (x.get(column) is None, str(x.get(column) or "")), reverse=descending)
        return rows[offset : offset + limit], len(rows)

    def get_top_students(self, *, student_ids: list[str] | None = None, limit: int = 10) -> list[dict[str, Any]]:
        if student_ids is not None and not student_ids:
            return []
        wanted = set(student_ids) if student_ids is not None else None
        totals: dict[str, dict[str, Any]] = {}
        for row in self._live_rows():
            sid = str(row.get("student_id"))
            if wanted is not None and sid not in wanted:
                continue
            item = totals.setdefault(
                sid,
                {
                    "student_id": sid,
                    "student_name": self._user_names.get(sid),
                    "total_achievements": 0,
                    "verified_achievements": 0,
                },
            )
            item["total_achievements"] += 1
            if row.get("status") == "verified":
                item["verified_achievements"] += 1
        ranked = sorted(
            totals.values(),
            key=lambda x: (-x["total_achievements"], -x["verified_achievements"], x["student_id"]),
        )
        return ranked[: max(0, limit)]

    def update_status(self, *, achievement_id: str, status: str) -> bool:
        row = self._live(achievement_id)
        if row is None:
            return False
        row["status"] = status
        row["updated_at"] = _utcnow_iso()
        return True

    def mark_submitted(self, *, achievement_id: str) -> bool:
        row = self._live(achievement_id)
        if row is None:
            return False
        now = _utcnow_iso()
        row["status"] = "submitted"
        row["submitted_at"] = now
        row["updated_at"] = now
        return True

    def mark_verified(self, *, achievement_id: str, verified_by: str) -> bool:
        row = self._live(achievement_id)
        if row is None:
            return False
        now = _utcnow_iso()
        row["status"] = "verified"
        row["verified_by"] = verified_by
        row["verified_at"] = now
        row["updated_at"] = now
        return True

    def mark_rejected(self, *, achievement_id: str, verified_by: str, rejection_note: str) -> bool:
        row = self._live(achievement_id)
        if row is None:
            return False
        now = _utcnow_iso()
        row["status"] = "rejected"
        row["verified_by"] = verified_by
        row["verified_at"] = now
        row["rejection_note"] = rejection_note
        row["updated_at"] = now
        return True

    def soft_delete(self, *, achievement_id: str) -> bool:
        row = self._live(achievement_id)
        if row is None:
            return False
        now = _utcnow_iso()
        row["deleted_at"] = now
        row["updated_at"] = now
        return True

    def hard_delete(self, *, achievement_id: str) -> bool:
        return self._references.pop(achievement_id, None) is not None


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.isoformat()
    return str(value)


def _row_to_reference(row: tuple[Any, ...]) -> dict[str, Any]:
    return {key: _as_text(value) for key, value in zip(_COLUMNS, row)}


class PostgresAchievementReferencesRepository:
    """Workflow state rows keyed by mongo_achievement_id; one transaction per call."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        table_name: str = "achievement_references",
        users_table: str = "users",
    ) -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)
        self._users_table = _validate_identifier(users_table)
        self._select = f"SELECT {', '.join(_COLUMNS)} FROM {self._table_name}"

    def create(self, *, reference: dict[str, Any]) -> dict[str, Any]:
        payload = {key: None for key in _COLUMNS}
        payload.update(dict(reference))
        payload["id"] = str(payload.get("id") or uuid.uuid4())
        sql = f"""
            INSERT INTO {self._table_name} (
                id, student_id, mongo_achievement_id, status, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, now(), now())
            RETURNING created_at, updated_at
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        payload["id"],
                        payload["student_id"],
                        payload["mongo_achievement_id"],
                        payload.get("status") or "draft",
                    ),
                )
                row = cur.fetchone()
            if row is not None:
                payload["created_at"] = _as_text(row[0])
                payload["updated_at"] = _as_text(row[1])
            return payload

        return self._tx_runner.run_in_tx(fn=_op)

    def _fetch_one(self, where: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        sql = f"{self._select} WHERE {where} AND deleted_at IS NULL LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            return _row_to_reference(row) if row is not None else None

        return self._tx_runner.run_in_tx(fn=_op)

    def _fetch_page(
        self,
        *,
        where: str,
        params: tuple[Any, ...],
        order_by: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        count_sql = f"SELECT COUNT(*) FROM {self._table_name} WHERE {where}"
        page_sql = f"{self._select} WHERE {where} ORDER BY {order_by} LIMIT %s OFFSET %s"

        def _op(conn: Any) -> tuple[list[dict[str, Any]], int]:
            with conn.cursor() as cur:
                cur.execute(count_sql, params)
                count_row = cur.fetchone()
                cur.execute(page_sql, (*params, limit, offset))
                rows = cur.fetchall() or []
            total = int(count_row[0]) if count_row else 0
            return [_row_to_reference(row) for row in rows], total

        return self._tx_runner.run_in_tx(fn=_op)

    def _execute(self, sql: str, params: tuple[Any, ...]) -> bool:
        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return int(cur.rowcount or 0) > 0

        return self._tx_runner.run_in_tx(fn=_op)

    def find_by_id(self, *, reference_id: str) -> dict[str, Any] | None:
        return self._fetch_one("id = %s", (reference_id,))

    def find_by_achievement_id(self, *, achievement_id: str) -> dict[str, Any] | None:
        return self._fetch_one("mongo_achievement_id = %s", (achievement_id,))

    def find_by_student(self, *, student_id: str) -> list[dict[str, Any]]:
        sql = f"""
            {self._select}
            WHERE student_id::text = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (student_id,))
                rows = cur.fetchall() or []
            return [_row_to_reference(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def find_by_student_ids(
        self,
        *,
        student_ids: list[str],
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        if not student_ids:
            return [], 0
        return self._fetch_page(
            where="student_id::text = ANY(%s) AND deleted_at IS NULL",
            params=(list(student_ids),),
            order_by="created_at DESC",
            limit=limit,
            offset=offset,
        )

    def find_pending_verification(self, *, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        return self._fetch_page(
            where="status = 'submitted' AND deleted_at IS NULL",
            params=(),
            order_by="submitted_at ASC",
            limit=limit,
            offset=offset,
        )

    def find_all_with_filters(
        self,
        *,
        limit: int,
        offset: int,
        status: str = "",
        student_id: str = "",
        sort_by: str = DEFAULT_SORT_COLUMN,
        sort_order: str = "desc",
    ) -> tuple[list[dict[str, Any]], int]:
        clauses = ["deleted_at IS NULL"]
        params: list[Any] = []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if student_id:
            clauses.append("student_id::text = %s")
            params.append(student_id)
        column, descending = _normalize_sort(sort_by, sort_order)
        return self._fetch_page(
            where=" AND ".join(clauses),
            params=tuple(params),
            order_by=f"{column} {'DESC' if descending else 'ASC'}",
            limit=limit,
            offset=offset,
        )

    def get_top_students(self, *, student_ids: list[str] | None = None, limit: int = 10) -> list[dict[str, Any]]:
        if student_ids is not None and not student_ids:
            return []
        where = "ar.deleted_at IS NULL"
        params: list[Any] = []
        if student_ids is not None:
            where += " AND ar.student_id::text = ANY(%s)"
            params.append(list(student_ids))
        sql = f"""
            SELECT
                ar.student_id,
                u.full_name AS student_name,
                COUNT(*) AS total_achievements,
                COUNT(*) FILTER (WHERE ar.status = 'verified') AS verified_achievements
            FROM {self._table_name} ar
            LEFT JOIN {self._users_table} u ON u.id::text = ar.student_id::text
            WHERE {where}
            GROUP BY ar.student_id, u.full_name
            ORDER BY total_achievements DESC, verified_achievements DESC
            LIMIT %s
        """
        params.append(limit)

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
            return [
                {
                    "student_id": str(row[0]),
                    "student_name": row[1],
                    "total_achievements": int(row[2] or 0),
                    "verified_achievements": int(row[3] or 0),
                }
                for row in rows
            ]

        return self._tx_runner.run_in_tx(fn=_op)

    def update_status(self, *, achievement_id: str, status: str) -> bool:
        return self._execute(
            f"""
            UPDATE {self._table_name}
            SET status = %s, updated_at = now()
            WHERE mongo_achievement_id = %s AND deleted_at IS NULL
            """,
            (status, achievement_id),
        )

    def mark_submitted(self, *, achievement_id: str) -> bool:
        return self._execute(
            f"""
            UPDATE {self._table_name}
            SET status = 'submitted', submitted_at = now(), updated_at = now()
            WHERE mongo_achievement_id = %s AND deleted_at IS NULL
            """,
            (achievement_id,),
        )

    def mark_verified(self, *, achievement_id: str, verified_by: str) -> bool:
        return self._execute(
            f"""
            UPDATE {self._table_name}
            SET status = 'verified', verified_by = %s, verified_at = now(), updated_at = now()
            WHERE mongo_achievement_id = %s AND deleted_at IS NULL
            """,
            (verified_by, achievement_id),
        )

    def mark_rejected(self, *, achievement_id: str, verified_by: str, rejection_note: str) -> bool:
        return self._execute(
            f"""
            UPDATE {self._table_name}
            SET status = 'rejected', verified_by = %s, verified_at = now(),
                rejection_note = %s, updated_at = now()
            WHERE mongo_achievement_id = %s AND deleted_at IS NULL
            """,
            (verified_by, rejection_note, achievement_id),
        )

    def soft_delete(self, *, achievement_id: str) -> bool:
        return self._execute(
            f"""
            UPDATE {self._table_name}
            SET deleted_at = now(), updated_at = now()
            WHERE mongo_achievement_id = %s AND deleted_at IS NULL
            """,
            (achievement_id,),
        )

    def hard_delete(self, *, achievement_id: str) -> bool:
        return self._execute(
            f"DELETE FROM {self._table_name} WHERE mongo_achievement_id = %s",
            (achievement_id,),
        )
