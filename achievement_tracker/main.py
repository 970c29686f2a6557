from __future__ import annotations

import logging
import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from achievement_tracker.errors import ApiError
from achievement_tracker.routes import achievements as achievements_routes
from achievement_tracker.routes import reports as reports_routes
from achievement_tracker.routes._deps import (
    error_response,
    log_security_event,
    request_id_from_request,
    trace_id_from_request,
)
from achievement_tracker.schemas import success_envelope
from achievement_tracker.security import AuthContext, JwtSecurityConfig, parse_and_validate_bearer_token

logger = logging.getLogger(__name__)

SECURITY_ERROR_CODES = {"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN"}


def _header_actor(request: Request) -> AuthContext | None:
    user_id = request.headers.get("x-user-id", "").strip()
    if not user_id:
        return None
    role = request.headers.get("x-user-role", "student").strip().lower() or "student"
    return AuthContext(user_id=user_id, role=role)


def create_app() -> FastAPI:
    app = FastAPI(title="Student Achievement Tracker API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_trace_and_identity(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.actor = None
        try:
            path = request.url.path
            if path.startswith("/api/v1/") and path != "/api/v1/health":
                if security_cfg.enabled:
                    request.state.actor = parse_and_validate_bearer_token(
                        authorization=request.headers.get("Authorization"),
                        cfg=security_cfg,
                    )
                else:
                    request.state.actor = _header_actor(request)
            response = await call_next(request)
        except ApiError as exc:
            log_security_event(request=request, action="authenticate", code=exc.code, detail=exc.message)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in SECURITY_ERROR_CODES:
            log_security_event(request=request, action="authorize", code=exc.code, detail=exc.message)
        elif exc.code == "ACHIEVEMENT_COMPENSATION_FAILED":
            logger.error(
                "request_failed code=%s details=%s trace_id=%s",
                exc.code,
                exc.details,
                trace_id_from_request(request),
            )
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
            details=exc.details,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(achievements_routes.router)
    app.include_router(reports_routes.router)
    return app


app = create_app()
