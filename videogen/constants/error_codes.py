"""Error codes dictionary for the render API.

This is the single source of truth for all error codes, their retryability,
and suggested fixes. Used by exception handlers to generate machine-readable
error responses.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Media errors
    # ==========================================================================
    "DOWNLOAD_FAILED": {
        "retryable": True,
        "suggested_fix": "Check that the media URL is reachable and returns a 2xx response",
    },
    "INVALID_MEDIA_KIND": {
        "retryable": False,
        "suggested_fix": "Upload a file whose MIME type matches the form field (image, video, audio, logo)",
    },
    "INVALID_MEDIA_REFERENCE": {
        "retryable": False,
        "suggested_fix": "Reference uploads by the filename returned from the upload endpoint",
    },
    "UPLOAD_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Reduce the file size below the configured upload limit",
    },
    "UPLOAD_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "List uploads with GET /api/uploaded-videos",
    },
    # ==========================================================================
    # Job errors
    # ==========================================================================
    "JOB_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Use the jobId returned by the submit endpoint",
    },
    "JOB_ALREADY_EXISTS": {
        "retryable": False,
    },
    "INVALID_JOB_TRANSITION": {
        "retryable": False,
    },
    "OUTPUT_NOT_FOUND": {
        "retryable": True,
        "suggested_fix": "Poll GET /api/jobs/{job_id} until the job is completed",
    },
    # ==========================================================================
    # Render errors
    # ==========================================================================
    "INVALID_RENDER_PROPERTIES": {
        "retryable": False,
        "suggested_fix": "Provide a non-empty title and colour values",
    },
    "RENDER_FAILED": {
        "retryable": True,
        "suggested_fix": "Inspect the captured stderr in the job error detail",
    },
    # ==========================================================================
    # Generic
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Check request fields against the API schema",
    },
    "NOT_FOUND": {"retryable": False},
    "INTERNAL_ERROR": {"retryable": True},
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Return the spec for an error code, or an empty spec for unknown codes."""
    return ERROR_CODES.get(code, {})
