"""Custom exceptions for the videogen service.

These exceptions integrate with the API error handling system, providing
machine-readable error codes and suggested fixes.
"""

from typing import Any

from videogen.constants.error_codes import get_error_spec
from videogen.schemas.envelope import ErrorInfo


class VideogenError(Exception):
    """Base exception for all videogen application errors.

    Provides structured error information for API responses.
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def details(self) -> dict[str, Any] | None:
        """Extra machine-readable fields for the error payload."""
        return None

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
            details=self.details(),
        )


# =============================================================================
# Media Errors
# =============================================================================


class DownloadError(VideogenError):
    """A remote media reference could not be fetched and persisted."""

    code = "DOWNLOAD_FAILED"
    status_code = 502
    message = "Failed to download media"

    def __init__(
        self,
        message: str | None = None,
        *,
        url: str | None = None,
        response_status: int | None = None,
    ):
        self.url = url
        self.response_status = response_status
        super().__init__(message)

    def details(self) -> dict[str, Any] | None:
        return {"url": self.url, "response_status": self.response_status}


class InvalidMediaKindError(VideogenError):
    """Declared MIME type does not match the field the file arrived in."""

    code = "INVALID_MEDIA_KIND"
    status_code = 400
    message = "Media type does not match the expected kind"

    def __init__(self, kind: str | None = None, content_type: str | None = None):
        message = self.message
        if kind and content_type:
            message = f"Expected {kind} file, got content type '{content_type}'"
        super().__init__(message)


class InvalidMediaReferenceError(VideogenError):
    """Media reference is malformed (e.g. upload filename escapes the storage area)."""

    code = "INVALID_MEDIA_REFERENCE"
    status_code = 400
    message = "Invalid media reference"


class UploadTooLargeError(VideogenError):
    """Uploaded file exceeds the configured size limit."""

    code = "UPLOAD_TOO_LARGE"
    status_code = 413
    message = "Uploaded file is too large"

    def __init__(self, max_bytes: int | None = None):
        message = f"Uploaded file exceeds {max_bytes} bytes" if max_bytes else self.message
        super().__init__(message)


class UploadNotFoundError(VideogenError):
    """Uploaded video not found in the catalog."""

    code = "UPLOAD_NOT_FOUND"
    status_code = 404
    message = "Uploaded video not found"

    def __init__(self, video_id: str | None = None):
        message = f"Uploaded video not found: {video_id}" if video_id else self.message
        super().__init__(message)


# =============================================================================
# Job Errors
# =============================================================================


class JobNotFoundError(VideogenError):
    """Job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class JobAlreadyExistsError(VideogenError):
    """A job with the same id was already created."""

    code = "JOB_ALREADY_EXISTS"
    status_code = 409
    message = "Job already exists"

    def __init__(self, job_id: str | None = None):
        message = f"Job already exists: {job_id}" if job_id else self.message
        super().__init__(message)


class InvalidJobTransitionError(VideogenError):
    """Requested status change would move a job backwards or out of a terminal state."""

    code = "INVALID_JOB_TRANSITION"
    status_code = 409
    message = "Invalid job status transition"

    def __init__(
        self,
        job_id: str | None = None,
        current: str | None = None,
        requested: str | None = None,
        message: str | None = None,
    ):
        if message is None and current and requested:
            message = f"Job {job_id} cannot move from {current} to {requested}"
        super().__init__(message)


class OutputNotFoundError(VideogenError):
    """No completed output file exists for the id."""

    code = "OUTPUT_NOT_FOUND"
    status_code = 404
    message = "Video not found"

    def __init__(self, video_id: str | None = None):
        message = f"Video not found: {video_id}" if video_id else self.message
        super().__init__(message)


# =============================================================================
# Render Errors
# =============================================================================


class InvalidRenderPropertiesError(VideogenError):
    """Property bag failed validation before dispatch."""

    code = "INVALID_RENDER_PROPERTIES"
    status_code = 422
    message = "Invalid render properties"


class RenderProcessError(VideogenError):
    """The render worker exited non-zero, timed out, or could not be launched."""

    code = "RENDER_FAILED"
    status_code = 500
    message = "Render process failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        stdout: str = "",
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(message or stderr.strip() or self.message)

    def details(self) -> dict[str, Any] | None:
        return {"exit_code": self.exit_code, "stderr": self.stderr}
