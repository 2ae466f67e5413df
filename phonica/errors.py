"""Domain errors shared by the material pipelines and the master-data routers.

Each error carries a stable machine-readable ``code``, a user-facing
``message`` and the HTTP status the API boundary maps it to. The exception
handler registered in main.py renders them as::

    {"error": "<message>", "code": "<CODE>", "details": ..., "materialCount": n}
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from sqlalchemy.exc import IntegrityError


class PhonicaError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Any = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(PhonicaError):
    """Missing or malformed input, or references to unknown rows."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class NotFoundError(PhonicaError):
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(PhonicaError):
    """Unique-constraint violation, or a delete blocked by dependent materials."""

    status_code = 409
    default_code = "CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        field: str | None = None,
        material_count: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.field = field
        self.material_count = material_count

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        if self.field is not None:
            body["field"] = self.field
        if self.material_count is not None:
            body["materialCount"] = self.material_count
        return body


class UploadError(PhonicaError):
    """Writing an uploaded file to the temp store failed."""

    default_code = "UPLOAD_FAILED"


class AnalysisError(PhonicaError):
    """The file could not be decoded as a supported audio container."""

    status_code = 422
    default_code = "ANALYSIS_FAILED"


class PersistenceError(PhonicaError):
    """Moving or writing an audio asset into permanent storage failed."""

    default_code = "PERSISTENCE_FAILED"


class InternalError(PhonicaError):
    pass


# ---------------------------------------------------------------------------
# Integrity error inspection
# ---------------------------------------------------------------------------


def constraint_targets(exc: IntegrityError) -> list[str]:
    """Collect the strings that may name the violated constraint or column.

    asyncpg exposes ``constraint_name`` on the driver error (wrapped once by
    SQLAlchemy's adapter); when present it is the only target, since the
    message also echoes the conflicting value. SQLite only reports
    ``UNIQUE constraint failed: table.column`` in the message.
    """
    targets: list[str] = []
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if isinstance(name, str) and name:
            targets.append(name)
    if not targets:
        targets.append(str(orig))
    return targets


def constraint_target_includes(exc: IntegrityError, keyword: str) -> bool:
    """Return True if the violated constraint mentions *keyword* (case-insensitive)."""
    if not keyword:
        return False
    keyword = keyword.lower()
    return any(keyword in target.lower() for target in constraint_targets(exc))


def conflict_field(exc: IntegrityError, candidates: tuple[str, ...]) -> str | None:
    """Return the first of *candidates* named by the violated constraint."""
    for field in candidates:
        if constraint_target_includes(exc, field):
            return field
    return None


def format_validation_errors(errors: Sequence[Mapping[str, Any]]) -> list[dict[str, str]]:
    """Flatten pydantic error dicts to ``{"field", "message"}`` pairs.

    ``body`` / ``query`` location prefixes added by FastAPI are dropped so
    the field reads as the caller spelled it.
    """
    formatted: list[dict[str, str]] = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        formatted.append({"field": ".".join(loc), "message": str(error.get("msg", ""))})
    return formatted
