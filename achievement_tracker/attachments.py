from __future__ import annotations

import os
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from achievement_tracker.errors import ApiError

DEFAULT_ALLOWED_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png", ".doc", ".docx")
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _clean_stem(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip().replace(" ", "_"))
    return cleaned or "file"


@dataclass(frozen=True)
class AttachmentUpload:
    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class AttachmentStorageConfig:
    root: str
    max_file_size: int
    allowed_extensions: tuple[str, ...]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AttachmentStorageConfig":
        env = os.environ if environ is None else environ
        raw_size = env.get("ATTACHMENT_MAX_FILE_SIZE", "").strip()
        try:
            max_file_size = int(raw_size) if raw_size else DEFAULT_MAX_FILE_SIZE
        except ValueError:
            max_file_size = DEFAULT_MAX_FILE_SIZE
        raw_exts = env.get("ATTACHMENT_ALLOWED_EXTENSIONS", "").strip()
        if raw_exts:
            exts = tuple(
                x if x.startswith(".") else f".{x}"
                for x in (part.strip().lower() for part in raw_exts.split(","))
                if x
            )
        else:
            exts = DEFAULT_ALLOWED_EXTENSIONS
        return cls(
            root=env.get("ATTACHMENT_UPLOAD_ROOT", "./uploads/achievements").strip() or "./uploads/achievements",
            max_file_size=max(1, max_file_size),
            allowed_extensions=exts,
        )


class LocalAttachmentStorage:
    """Stores uploaded achievement evidence on the local filesystem."""

    def __init__(self, *, config: AttachmentStorageConfig) -> None:
        self._config = config
        self._root = Path(config.root)

    @property
    def root(self) -> Path:
        return self._root

    def validate(self, upload: AttachmentUpload) -> None:
        size = len(upload.content)
        if size > self._config.max_file_size:
            raise ApiError(
                code="ATTACHMENT_TOO_LARGE",
                message=f"file too large: {upload.filename}; max {self._config.max_file_size // (1024 * 1024)} MB",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        ext = Path(upload.filename or "").suffix.lower()
        if ext not in self._config.allowed_extensions:
            raise ApiError(
                code="ATTACHMENT_TYPE_NOT_ALLOWED",
                message=f"file type not allowed: {upload.filename}; allowed {', '.join(self._config.allowed_extensions)}",
                error_class="validation",
                retryable=False,
                http_status=400,
            )

    def save(self, upload: AttachmentUpload) -> dict[str, Any]:
        self.validate(upload)
        path = self._root / self._unique_filename(upload.filename)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(upload.content)
        except OSError as exc:
            raise ApiError(
                code="ATTACHMENT_STORE_FAILED",
                message=f"failed to store file: {upload.filename}",
                error_class="transient",
                retryable=True,
                http_status=500,
            ) from exc
        return {
            "filename": upload.filename,
            "filepath": str(path),
            "filesize": len(upload.content),
            "mimetype": upload.content_type or "application/octet-stream",
            "uploaded_at": _now_iso(),
        }

    def delete(self, filepath: str) -> bool:
        if not filepath:
            return False
        path = self._path_for(filepath)
        if not path.exists():
            return False
        path.unlink()
        return True

    def exists(self, filepath: str) -> bool:
        return bool(filepath) and self._path_for(filepath).exists()

    def reset(self) -> None:
        if not self._root.exists():
            return
        for path in sorted(self._root.rglob("*"), reverse=True):
            if path.is_file():
                path.unlink()
            elif path.is_dir():
                path.rmdir()

    def _path_for(self, filepath: str) -> Path:
        path = Path(filepath).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise ValueError("attachment path outside upload root")
        return path

    @staticmethod
    def _unique_filename(original: str) -> str:
        ext = Path(original or "").suffix.lower()
        stem = _clean_stem(Path(original or "").stem)
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        return f"{stem}_{timestamp}_{uuid.uuid4().hex[:8]}{ext}"


def create_attachment_storage_from_env(environ: Mapping[str, str] | None = None) -> LocalAttachmentStorage:
    return LocalAttachmentStorage(config=AttachmentStorageConfig.from_env(environ))
