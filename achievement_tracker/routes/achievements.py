from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from achievement_tracker.routes._deps import read_uploads, require_permission, trace_id_from_request
from achievement_tracker.schemas import RejectAchievementRequest, UpdateAchievementRequest, success_envelope
from achievement_tracker.security import AuthContext
from achievement_tracker.store import store

router = APIRouter(prefix="/api/v1", tags=["achievements"])


@router.get("/achievements")
def list_my_achievements(
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.read")),
):
    data = store.workflow.list_my_achievements(actor=actor)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/achievements")
async def create_achievement(
    request: Request,
    title: str = Form(default=""),
    category: str = Form(default=""),
    level: str = Form(default=""),
    date: str = Form(default=""),
    description: str = Form(default=""),
    documents: list[UploadFile] | None = File(default=None),
    actor: AuthContext = Depends(require_permission("achievements.create")),
):
    uploads = await read_uploads(documents)
    data = store.workflow.create(
        actor=actor,
        payload={
            "title": title,
            "category": category,
            "level": level,
            "date": date,
            "description": description,
        },
        uploads=uploads,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request), message="achievement created"),
    )


@router.get("/achievements/pending")
def list_pending_verification(
    request: Request,
    page: int = Query(default=1),
    limit: int = Query(default=10),
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    data = store.workflow.list_pending_verification(page=page, limit=limit)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/achievements/advisees")
def list_advisee_achievements(
    request: Request,
    page: int = Query(default=1),
    limit: int = Query(default=10),
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    data = store.workflow.list_advisee_achievements(actor=actor, page=page, limit=limit)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/achievements/all")
def list_all_achievements(
    request: Request,
    page: int = Query(default=1),
    limit: int = Query(default=10),
    status: str = Query(default=""),
    student_id: str = Query(default=""),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc"),
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    data = store.workflow.list_all_achievements(
        page=page,
        limit=limit,
        status=status,
        student_id=student_id,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/achievements/{achievement_id}")
def get_achievement(
    achievement_id: str,
    request: Request,
    include_deleted: bool = Query(default=False),
    actor: AuthContext = Depends(require_permission("achievements.read")),
):
    data = store.workflow.get_achievement(
        actor=actor,
        achievement_id=achievement_id,
        include_deleted=include_deleted,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.put("/achievements/{achievement_id}")
def update_achievement(
    achievement_id: str,
    payload: UpdateAchievementRequest,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.update")),
):
    data = store.workflow.update(
        actor=actor,
        achievement_id=achievement_id,
        changes=payload.model_dump(exclude_none=True),
    )
    return success_envelope(data, trace_id_from_request(request), message="achievement updated")


@router.delete("/achievements/{achievement_id}")
def delete_achievement(
    achievement_id: str,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.delete")),
):
    data = store.workflow.soft_delete(actor=actor, achievement_id=achievement_id)
    return success_envelope(data, trace_id_from_request(request), message="achievement deleted")


@router.post("/achievements/{achievement_id}/submit")
def submit_achievement(
    achievement_id: str,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.create")),
):
    data = store.workflow.submit(actor=actor, achievement_id=achievement_id)
    return success_envelope(data, trace_id_from_request(request), message="achievement submitted")


@router.post("/achievements/{achievement_id}/verify")
def verify_achievement(
    achievement_id: str,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    data = store.workflow.approve(actor=actor, achievement_id=achievement_id)
    return success_envelope(data, trace_id_from_request(request), message="achievement verified")


@router.post("/achievements/{achievement_id}/reject")
def reject_achievement(
    achievement_id: str,
    payload: RejectAchievementRequest,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    data = store.workflow.reject(
        actor=actor,
        achievement_id=achievement_id,
        rejection_note=payload.rejection_note,
    )
    return success_envelope(data, trace_id_from_request(request), message="achievement rejected")


@router.get("/achievements/{achievement_id}/review")
def review_achievement(
    achievement_id: str,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.verify")),
):
    data = store.workflow.review_detail(achievement_id=achievement_id)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/achievements/{achievement_id}/history")
def achievement_history(
    achievement_id: str,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.read")),
):
    data = store.workflow.get_history(actor=actor, achievement_id=achievement_id)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/achievements/{achievement_id}/attachments")
async def upload_attachments(
    achievement_id: str,
    request: Request,
    attachments: list[UploadFile] | None = File(default=None),
    actor: AuthContext = Depends(require_permission("achievements.create")),
):
    uploads = await read_uploads(attachments)
    data = store.workflow.append_attachments(
        actor=actor,
        achievement_id=achievement_id,
        uploads=uploads,
    )
    return success_envelope(data, trace_id_from_request(request), message="attachments uploaded")


@router.get("/students/{student_id}/achievements")
def list_student_achievements(
    student_id: str,
    request: Request,
    actor: AuthContext = Depends(require_permission("achievements.read")),
):
    data = store.workflow.list_student_achievements(actor=actor, student_id=student_id)
    return success_envelope(data, trace_id_from_request(request))
