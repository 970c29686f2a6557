from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import Request, UploadFile
from fastapi.responses import JSONResponse

from achievement_tracker.attachments import AttachmentUpload
from achievement_tracker.errors import ApiError
from achievement_tracker.schemas import error_envelope
from achievement_tracker.security import AuthContext, redact_sensitive
from achievement_tracker.store import store

logger = logging.getLogger(__name__)


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )


def log_security_event(*, request: Request, action: str, code: str, detail: str) -> None:
    security_cfg = getattr(request.app.state, "security_cfg", None)
    headers_obj = dict(request.headers.items())
    redaction = security_cfg.log_redaction_enabled if security_cfg is not None else True
    headers_payload = redact_sensitive(headers_obj) if redaction else headers_obj
    logger.warning(
        "security_blocked action=%s code=%s detail=%s trace_id=%s path=%s headers=%s",
        action,
        code,
        detail,
        trace_id_from_request(request),
        request.url.path,
        headers_payload,
    )


def actor_from_request(request: Request) -> AuthContext:
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise ApiError(
            code="AUTH_UNAUTHORIZED",
            message="authentication required",
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )
    return actor


def require_permission(permission: str) -> Callable[[Request], AuthContext]:
    def _dependency(request: Request) -> AuthContext:
        actor = actor_from_request(request)
        store.observe_actor(actor)
        if not store.permission_resolver.has_permission(actor.user_id, permission):
            raise ApiError(
                code="AUTH_FORBIDDEN",
                message=f"permission required: {permission}",
                error_class="security_sensitive",
                retryable=False,
                http_status=403,
            )
        return actor

    return _dependency


async def read_uploads(files: list[UploadFile] | None) -> list[AttachmentUpload]:
    uploads: list[AttachmentUpload] = []
    for item in files or []:
        content = await item.read()
        uploads.append(
            AttachmentUpload(
                filename=item.filename or "upload.bin",
                content=content,
                content_type=item.content_type,
            )
        )
    return uploads
