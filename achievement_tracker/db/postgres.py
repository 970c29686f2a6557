from __future__ import annotations

from collections.abc import Callable
from typing import Any


ACHIEVEMENT_REFERENCES_DDL = """
CREATE TABLE IF NOT EXISTS achievement_references (
    id UUID PRIMARY KEY,
    student_id UUID NOT NULL,
    mongo_achievement_id VARCHAR(64) NOT NULL,
    status VARCHAR(16) NOT NULL DEFAULT 'draft'
        CHECK (status IN ('draft', 'submitted', 'verified', 'rejected')),
    submitted_at TIMESTAMPTZ NULL,
    verified_at TIMESTAMPTZ NULL,
    verified_by UUID NULL,
    rejection_note TEXT NULL,
    deleted_at TIMESTAMPTZ NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_achievement_references_mongo_id
    ON achievement_references (mongo_achievement_id);
CREATE INDEX IF NOT EXISTS ix_achievement_references_status_submitted
    ON achievement_references (status, submitted_at);
CREATE INDEX IF NOT EXISTS ix_achievement_references_student
    ON achievement_references (student_id);
"""


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction."""

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            result = fn(conn)
            conn.commit()
            return result


def apply_schema(tx_runner: PostgresTxRunner, *, ddl: str = ACHIEVEMENT_REFERENCES_DDL) -> int:
    statements = [x.strip() for x in ddl.split(";") if x.strip()]

    def _op(conn: Any) -> int:
        with conn.cursor() as cur:
            for statement in statements:
                cur.execute(statement)
        return len(statements)

    return tx_runner.run_in_tx(fn=_op)
