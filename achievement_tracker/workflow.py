from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from achievement_tracker.attachments import AttachmentUpload, LocalAttachmentStorage
from achievement_tracker.errors import ApiError
from achievement_tracker.security import AuthContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUSES = ("draft", "submitted", "verified", "rejected")
REQUIRED_FIELDS = ("title", "category", "level", "date")
CONTENT_FIELDS = ("title", "category", "level", "date", "description")
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100

_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def normalize_paging(page: int | None, limit: int | None) -> tuple[int, int]:
    page_value = page if page is not None and page >= 1 else 1
    limit_value = limit if limit is not None and 1 <= limit <= MAX_PAGE_LIMIT else DEFAULT_PAGE_LIMIT
    return page_value, limit_value


def normalize_top_limit(limit: int | None) -> int:
    return limit if limit is not None and 1 <= limit <= MAX_PAGE_LIMIT else DEFAULT_PAGE_LIMIT


def _pagination(*, page: int, limit: int, total: int) -> dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total_items": total,
        "total_pages": (total + limit - 1) // limit if total else 0,
    }


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _validate_date(value: str) -> None:
    text = str(value).strip()
    valid = bool(_DATE_RE.fullmatch(text))
    if valid:
        try:
            datetime.strptime(text, "%Y-%m-%d")
        except ValueError:
            valid = False
    if not valid:
        raise ApiError(
            code="ACHIEVEMENT_DATE_INVALID",
            message="date must use the YYYY-MM-DD format",
            error_class="validation",
            retryable=False,
            http_status=400,
        )


def _not_found(code: str = "ACHIEVEMENT_NOT_FOUND", message: str = "achievement not found") -> ApiError:
    return ApiError(code=code, message=message, error_class="validation", retryable=False, http_status=404)


def _forbidden(message: str) -> ApiError:
    return ApiError(
        code="AUTH_FORBIDDEN",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
    )


def _store_unavailable(step: str) -> ApiError:
    return ApiError(
        code="ACHIEVEMENT_STORE_UNAVAILABLE",
        message=f"achievement store failed during {step}",
        error_class="transient",
        retryable=True,
        http_status=500,
    )


def _compensation_failed(*, achievement_id: str, step: str) -> ApiError:
    return ApiError(
        code="ACHIEVEMENT_COMPENSATION_FAILED",
        message=f"compensation failed during {step}; stores may be inconsistent",
        error_class="permanent",
        retryable=False,
        http_status=500,
        details={"achievement_id": achievement_id, "step": step},
    )


class AchievementWorkflow:
    """Achievement lifecycle across the document store and the reference store.

    Writes follow a fixed order (attachments, then document, then reference)
    and each failure after the first write triggers compensating writes.
    Workflow state is read from the reference record.
    """

    ALLOWED_TRANSITIONS: dict[str, set[str]] = {
        "draft": {"submitted"},
        "submitted": {"verified", "rejected"},
        "verified": set(),
        "rejected": set(),
    }

    def __init__(
        self,
        *,
        achievements_repository: Any,
        references_repository: Any,
        attachment_storage: LocalAttachmentStorage,
        students_repository: Any,
    ) -> None:
        self.achievements_repository = achievements_repository
        self.references_repository = references_repository
        self.attachment_storage = attachment_storage
        self.students_repository = students_repository

    @staticmethod
    def _call(step: str, achievement_id: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except ApiError:
            raise
        except Exception as exc:
            logger.warning(
                "achievement_store_failure step=%s achievement_id=%s error=%s",
                step,
                achievement_id,
                exc,
            )
            raise _store_unavailable(step) from exc

    def _write(self, step: str, achievement_id: str, fn: Callable[[], bool]) -> None:
        if self._call(step, achievement_id, fn):
            return
        if step.startswith("reference."):
            raise _not_found("ACHIEVEMENT_REFERENCE_NOT_FOUND", "achievement reference not found")
        raise _not_found()

    @staticmethod
    def _compensate(achievement_id: str, steps: list[tuple[str, Callable[[], Any]]]) -> None:
        """Run every compensating step, then raise for the first one that failed."""
        failed_step: str | None = None
        cause: Exception | None = None
        for step, fn in steps:
            try:
                result = fn()
            except Exception as exc:
                logger.error(
                    "achievement_compensation_failed step=%s achievement_id=%s error=%s",
                    step,
                    achievement_id,
                    exc,
                )
                if failed_step is None:
                    failed_step, cause = step, exc
                continue
            if result is False:
                logger.error(
                    "achievement_compensation_failed step=%s achievement_id=%s error=no_match",
                    step,
                    achievement_id,
                )
                if failed_step is None:
                    failed_step = step
                continue
            logger.warning("achievement_compensated step=%s achievement_id=%s", step, achievement_id)
        if failed_step is not None:
            raise _compensation_failed(achievement_id=achievement_id, step=failed_step) from cause

    def _save_uploads(self, achievement_id: str, uploads: list[AttachmentUpload]) -> list[dict[str, Any]]:
        saved: list[dict[str, Any]] = []
        try:
            for upload in uploads:
                saved.append(self.attachment_storage.save(upload))
        except ApiError:
            if saved:
                self._compensate(achievement_id, [("attachments.delete", lambda: self._discard_files(saved))])
            raise
        return saved

    def _discard_files(self, documents: list[dict[str, Any]]) -> None:
        """Delete every stored file, then raise for the first one that could not be removed."""
        first_error: Exception | None = None
        for doc in documents:
            filepath = str(doc.get("filepath") or "")
            try:
                self.attachment_storage.delete(filepath)
            except Exception as exc:
                logger.error("attachment_discard_failed filepath=%s error=%s", filepath, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    def _load(self, achievement_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        document = self._call(
            "document.find",
            achievement_id,
            lambda: self.achievements_repository.find_by_id(achievement_id=achievement_id),
        )
        if document is None:
            raise _not_found()
        reference = self._call(
            "reference.find",
            achievement_id,
            lambda: self.references_repository.find_by_achievement_id(achievement_id=achievement_id),
        )
        if reference is None:
            raise _not_found("ACHIEVEMENT_REFERENCE_NOT_FOUND", "achievement reference not found")
        return document, reference

    @staticmethod
    def _ensure_owner(actor: AuthContext, document: dict[str, Any]) -> None:
        if str(document.get("student_id")) != actor.user_id:
            raise _forbidden("only the owning student may modify this achievement")

    @staticmethod
    def _ensure_draft(reference: dict[str, Any], action: str) -> None:
        current = str(reference.get("status"))
        if current != "draft":
            raise ApiError(
                code="WF_STATE_TRANSITION_INVALID",
                message=f"cannot {action} achievement in status {current}; draft required",
                error_class="business_rule",
                retryable=False,
                http_status=409,
            )

    def _ensure_transition(self, reference: dict[str, Any], new_status: str) -> str:
        current = str(reference.get("status"))
        if new_status not in self.ALLOWED_TRANSITIONS.get(current, set()):
            raise ApiError(
                code="WF_STATE_TRANSITION_INVALID",
                message=f"invalid transition: {current} -> {new_status}",
                error_class="business_rule",
                retryable=False,
                http_status=409,
            )
        return current

    @staticmethod
    def _ensure_can_read(actor: AuthContext, document: dict[str, Any]) -> None:
        if str(document.get("student_id")) != actor.user_id and not actor.is_elevated:
            raise _forbidden("not allowed to access this achievement")

    def create(
        self,
        *,
        actor: AuthContext,
        payload: dict[str, Any],
        uploads: list[AttachmentUpload] | None = None,
    ) -> dict[str, Any]:
        missing = [name for name in REQUIRED_FIELDS if _is_blank(payload.get(name))]
        if missing:
            raise ApiError(
                code="ACHIEVEMENT_FIELDS_REQUIRED",
                message=f"missing required fields: {', '.join(missing)}",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        _validate_date(payload["date"])

        achievement_id = str(uuid.uuid4())
        saved = self._save_uploads(achievement_id, list(uploads or []))

        document = {
            "achievement_id": achievement_id,
            "student_id": actor.user_id,
            "title": str(payload["title"]).strip(),
            "category": str(payload["category"]).strip(),
            "level": str(payload["level"]).strip(),
            "date": str(payload["date"]).strip(),
            "description": str(payload.get("description") or "").strip(),
            "documents": saved,
            "status": "draft",
        }
        try:
            created = self._call(
                "document.create",
                achievement_id,
                lambda: self.achievements_repository.create(achievement=document),
            )
        except ApiError:
            if saved:
                self._compensate(achievement_id, [("attachments.delete", lambda: self._discard_files(saved))])
            raise

        try:
            self._call(
                "reference.create",
                achievement_id,
                lambda: self.references_repository.create(
                    reference={
                        "student_id": actor.user_id,
                        "mongo_achievement_id": achievement_id,
                        "status": "draft",
                    }
                ),
            )
        except ApiError:
            self._compensate(
                achievement_id,
                [
                    (
                        "document.hard_delete",
                        lambda: self.achievements_repository.hard_delete(achievement_id=achievement_id),
                    ),
                    ("attachments.delete", lambda: self._discard_files(saved)),
                ],
            )
            raise

        logger.info(
            "achievement_created achievement_id=%s student_id=%s documents=%s",
            achievement_id,
            actor.user_id,
            len(saved),
        )
        return created

    def update(self, *, actor: AuthContext, achievement_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        if not _is_blank(changes.get("date")):
            _validate_date(changes["date"])
        document, reference = self._load(achievement_id)
        self._ensure_owner(actor, document)
        self._ensure_draft(reference, "update")

        merged = dict(document)
        for name in CONTENT_FIELDS:
            value = changes.get(name)
            if not _is_blank(value):
                merged[name] = str(value).strip()
        self._write(
            "document.update",
            achievement_id,
            lambda: self.achievements_repository.update(achievement_id=achievement_id, achievement=merged),
        )
        logger.info("achievement_updated achievement_id=%s", achievement_id)
        return self._read_after_commit(
            "document.find",
            achievement_id,
            lambda: self.achievements_repository.find_by_id(achievement_id=achievement_id),
            fallback=merged,
        )

    def append_attachments(
        self,
        *,
        actor: AuthContext,
        achievement_id: str,
        uploads: list[AttachmentUpload],
    ) -> dict[str, Any]:
        if not uploads:
            raise ApiError(
                code="ACHIEVEMENT_ATTACHMENTS_REQUIRED",
                message="at least one attachment is required",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        document, reference = self._load(achievement_id)
        self._ensure_owner(actor, document)
        self._ensure_draft(reference, "attach files to")

        saved = self._save_uploads(achievement_id, uploads)
        merged = dict(document)
        merged["documents"] = list(document.get("documents") or []) + saved
        try:
            self._write(
                "document.update",
                achievement_id,
                lambda: self.achievements_repository.update(achievement_id=achievement_id, achievement=merged),
            )
        except ApiError:
            self._compensate(achievement_id, [("attachments.delete", lambda: self._discard_files(saved))])
            raise
        logger.info("achievement_attachments_added achievement_id=%s count=%s", achievement_id, len(saved))
        return {
            "achievement_id": achievement_id,
            "new_documents": saved,
            "total_documents": len(merged["documents"]),
        }

    def soft_delete(self, *, actor: AuthContext, achievement_id: str) -> dict[str, Any]:
        document, reference = self._load(achievement_id)
        self._ensure_owner(actor, document)
        self._ensure_draft(reference, "delete")

        self._write(
            "document.soft_delete",
            achievement_id,
            lambda: self.achievements_repository.soft_delete(achievement_id=achievement_id),
        )
        try:
            self._write(
                "reference.soft_delete",
                achievement_id,
                lambda: self.references_repository.soft_delete(achievement_id=achievement_id),
            )
        except ApiError:
            self._compensate(
                achievement_id,
                [("document.restore", lambda: self.achievements_repository.restore(achievement_id=achievement_id))],
            )
            raise
        logger.info("achievement_deleted achievement_id=%s", achievement_id)
        return {"achievement_id": achievement_id, "deleted": True}

    def _transition(
        self,
        *,
        achievement_id: str,
        document: dict[str, Any],
        reference: dict[str, Any],
        new_status: str,
        actor: AuthContext,
        mark_reference: Callable[[], bool],
        reference_changes: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        previous = self._ensure_transition(reference, new_status)
        self._write(
            "document.update_status",
            achievement_id,
            lambda: self.achievements_repository.update_status(achievement_id=achievement_id, status=new_status),
        )
        try:
            self._write(f"reference.mark_{new_status}", achievement_id, mark_reference)
        except ApiError:
            self._compensate(
                achievement_id,
                [
                    (
                        "document.revert_status",
                        lambda: self.achievements_repository.update_status(
                            achievement_id=achievement_id,
                            status=previous,
                        ),
                    )
                ],
            )
            raise
        logger.info(
            "achievement_transition achievement_id=%s from=%s to=%s actor=%s",
            achievement_id,
            previous,
            new_status,
            actor.user_id,
        )
        return {
            "achievement": self._read_after_commit(
                "document.find",
                achievement_id,
                lambda: self.achievements_repository.find_by_id(achievement_id=achievement_id),
                fallback={**document, "status": new_status},
            ),
            "reference": self._read_after_commit(
                "reference.find",
                achievement_id,
                lambda: self.references_repository.find_by_achievement_id(achievement_id=achievement_id),
                fallback={**reference, **(reference_changes or {}), "status": new_status},
            ),
        }

    @staticmethod
    def _read_after_commit(
        step: str,
        achievement_id: str,
        fn: Callable[[], dict[str, Any] | None],
        *,
        fallback: dict[str, Any],
    ) -> dict[str, Any]:
        """Both stores are already written; a failed re-read returns the locally known state."""
        try:
            found = fn()
        except Exception as exc:
            logger.warning(
                "achievement_read_after_commit_failed step=%s achievement_id=%s error=%s",
                step,
                achievement_id,
                exc,
            )
            return fallback
        return found if found is not None else fallback

    def submit(self, *, actor: AuthContext, achievement_id: str) -> dict[str, Any]:
        document, reference = self._load(achievement_id)
        self._ensure_owner(actor, document)
        return self._transition(
            achievement_id=achievement_id,
            document=document,
            reference=reference,
            new_status="submitted",
            actor=actor,
            mark_reference=lambda: self.references_repository.mark_submitted(achievement_id=achievement_id),
        )

    def approve(self, *, actor: AuthContext, achievement_id: str) -> dict[str, Any]:
        document, reference = self._load(achievement_id)
        return self._transition(
            achievement_id=achievement_id,
            document=document,
            reference=reference,
            new_status="verified",
            actor=actor,
            reference_changes={"verified_by": actor.user_id},
            mark_reference=lambda: self.references_repository.mark_verified(
                achievement_id=achievement_id,
                verified_by=actor.user_id,
            ),
        )

    def reject(self, *, actor: AuthContext, achievement_id: str, rejection_note: str) -> dict[str, Any]:
        if _is_blank(rejection_note):
            raise ApiError(
                code="ACHIEVEMENT_REJECTION_NOTE_REQUIRED",
                message="rejection_note is required",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        note = rejection_note.strip()
        document, reference = self._load(achievement_id)
        return self._transition(
            achievement_id=achievement_id,
            document=document,
            reference=reference,
            new_status="rejected",
            actor=actor,
            reference_changes={"verified_by": actor.user_id, "rejection_note": note},
            mark_reference=lambda: self.references_repository.mark_rejected(
                achievement_id=achievement_id,
                verified_by=actor.user_id,
                rejection_note=note,
            ),
        )

    def get_achievement(
        self,
        *,
        actor: AuthContext,
        achievement_id: str,
        include_deleted: bool = False,
    ) -> dict[str, Any]:
        include = include_deleted and actor.is_admin
        document = self._call(
            "document.find",
            achievement_id,
            lambda: self.achievements_repository.find_by_id(
                achievement_id=achievement_id,
                include_deleted=include,
            ),
        )
        if document is None:
            raise _not_found()
        self._ensure_can_read(actor, document)
        return document

    def list_my_achievements(self, *, actor: AuthContext) -> list[dict[str, Any]]:
        return self._call(
            "document.find_by_student",
            "",
            lambda: self.achievements_repository.find_by_student(student_id=actor.user_id),
        )

    def list_student_achievements(self, *, actor: AuthContext, student_id: str) -> list[dict[str, Any]]:
        if student_id != actor.user_id and not actor.is_elevated:
            raise _forbidden("not allowed to list achievements of another student")
        return self._call(
            "document.find_by_student",
            "",
            lambda: self.achievements_repository.find_by_student(student_id=student_id),
        )

    def _join_page(
        self,
        references: list[dict[str, Any]],
        *,
        page: int,
        limit: int,
        total: int,
    ) -> dict[str, Any]:
        ids = [str(ref["mongo_achievement_id"]) for ref in references]
        documents: list[dict[str, Any]] = []
        if ids:
            documents = self._call(
                "document.find_by_ids",
                "",
                lambda: self.achievements_repository.find_by_ids(achievement_ids=ids),
            )
        by_id = {str(doc["achievement_id"]): doc for doc in documents}
        items = [
            {"achievement": by_id.get(str(ref["mongo_achievement_id"])), "reference": ref}
            for ref in references
        ]
        return {"items": items, "pagination": _pagination(page=page, limit=limit, total=total)}

    def list_advisee_achievements(
        self,
        *,
        actor: AuthContext,
        page: int | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        page, limit = normalize_paging(page, limit)
        student_ids = self._call(
            "students.find_by_advisor",
            "",
            lambda: self.students_repository.find_student_ids_by_advisor(advisor_id=actor.user_id),
        )
        references, total = self._call(
            "reference.find_by_student_ids",
            "",
            lambda: self.references_repository.find_by_student_ids(
                student_ids=student_ids,
                limit=limit,
                offset=(page - 1) * limit,
            ),
        )
        return self._join_page(references, page=page, limit=limit, total=total)

    def list_pending_verification(self, *, page: int | None = None, limit: int | None = None) -> dict[str, Any]:
        page, limit = normalize_paging(page, limit)
        references, total = self._call(
            "reference.find_pending",
            "",
            lambda: self.references_repository.find_pending_verification(limit=limit, offset=(page - 1) * limit),
        )
        return self._join_page(references, page=page, limit=limit, total=total)

    def list_all_achievements(
        self,
        *,
        page: int | None = None,
        limit: int | None = None,
        status: str = "",
        student_id: str = "",
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        status = (status or "").strip()
        if status and status not in STATUSES:
            raise ApiError(
                code="ACHIEVEMENT_STATUS_FILTER_INVALID",
                message=f"status must be one of: {', '.join(STATUSES)}",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        page, limit = normalize_paging(page, limit)
        references, total = self._call(
            "reference.find_all",
            "",
            lambda: self.references_repository.find_all_with_filters(
                limit=limit,
                offset=(page - 1) * limit,
                status=status,
                student_id=(student_id or "").strip(),
                sort_by=sort_by,
                sort_order=sort_order,
            ),
        )
        return self._join_page(references, page=page, limit=limit, total=total)

    def review_detail(self, *, achievement_id: str) -> dict[str, Any]:
        document, reference = self._load(achievement_id)
        return {"achievement": document, "reference": reference}

    def get_history(self, *, actor: AuthContext, achievement_id: str) -> dict[str, Any]:
        document = self.get_achievement(actor=actor, achievement_id=achievement_id)
        reference = self._call(
            "reference.find",
            achievement_id,
            lambda: self.references_repository.find_by_achievement_id(achievement_id=achievement_id),
        )
        if reference is None:
            raise _not_found("ACHIEVEMENT_REFERENCE_NOT_FOUND", "achievement reference not found")

        history: list[dict[str, Any]] = [
            {"status": "draft", "timestamp": document.get("created_at"), "note": "achievement created"}
        ]
        if reference.get("submitted_at"):
            history.append(
                {"status": "submitted", "timestamp": reference["submitted_at"], "note": "submitted for verification"}
            )
        status = reference.get("status")
        if status == "verified" and reference.get("verified_at"):
            history.append(
                {
                    "status": "verified",
                    "timestamp": reference["verified_at"],
                    "verified_by": reference.get("verified_by"),
                    "note": "achievement verified",
                }
            )
        elif status == "rejected":
            history.append(
                {
                    "status": "rejected",
                    "timestamp": reference.get("updated_at"),
                    "verified_by": reference.get("verified_by"),
                    "note": reference.get("rejection_note") or "",
                }
            )
        return {"achievement_id": achievement_id, "current_status": status, "history": history}

    def top_students(self, *, actor: AuthContext, limit: int = 10) -> list[dict[str, Any]]:
        student_ids: list[str] | None = None
        if not actor.is_admin:
            student_ids = self._call(
                "students.find_by_advisor",
                "",
                lambda: self.students_repository.find_student_ids_by_advisor(advisor_id=actor.user_id),
            )
        bounded = normalize_top_limit(limit)
        return self._call(
            "reference.top_students",
            "",
            lambda: self.references_repository.get_top_students(student_ids=student_ids, limit=bounded),
        )
