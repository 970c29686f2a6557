from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from achievement_tracker.routes._deps import require_permission, trace_id_from_request
from achievement_tracker.schemas import success_envelope
from achievement_tracker.security import AuthContext
from achievement_tracker.store import store
from achievement_tracker.workflow import normalize_top_limit

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


@router.get("/top-students")
def top_students(
    request: Request,
    limit: int = Query(default=10),
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    bounded = normalize_top_limit(limit)
    data = store.workflow.top_students(actor=actor, limit=bounded)
    return success_envelope({"items": data, "limit": bounded}, trace_id_from_request(request))
