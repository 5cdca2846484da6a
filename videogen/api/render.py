"""Render API endpoints.

Synchronous endpoints render inline and answer once the video exists (or
failed). Asynchronous endpoints answer 202 with a job id as soon as the job is
registered; clients poll GET /api/jobs/{job_id}.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, File, Form, UploadFile, status

from videogen.api.deps import AppSettings, Orchestrator, Storage
from videogen.exceptions import InvalidMediaKindError, RenderProcessError
from videogen.schemas.render import (
    GenerateVideoRequest,
    GenerateVideoResponse,
    RenderJobRequest,
    SubmitJobResponse,
    build_render_request,
)
from videogen.services.job_registry import Job, JobStatus
from videogen.services.media_resolver import MediaKind, MediaReference
from videogen.services.render_orchestrator import RenderPlan
from videogen.services.storage_service import LocalStorageService
from videogen.services.template_service import ContentKind, list_format_keys, list_templates

router = APIRouter()
logger = logging.getLogger(__name__)

EXPECTED_MIME_PREFIX: dict[MediaKind, str] = {
    MediaKind.IMAGE: "image/",
    MediaKind.VIDEO: "video/",
    MediaKind.AUDIO: "audio/",
    MediaKind.LOGO: "image/",
}


def _has_file(upload: UploadFile | None) -> bool:
    return upload is not None and bool(upload.filename)


def check_media_kind(upload: UploadFile | None, kind: MediaKind) -> None:
    """Reject files whose declared MIME type doesn't match the field they came in."""
    if not _has_file(upload):
        return
    content_type = upload.content_type or ""
    if not content_type.startswith(EXPECTED_MIME_PREFIX[kind]):
        raise InvalidMediaKindError(kind.value, content_type or "unknown")


def store_uploads(
    storage: LocalStorageService,
    files: dict[MediaKind, UploadFile | None],
) -> dict[MediaKind, str]:
    """Validate every file first, then write them to the uploads area."""
    for kind, upload in files.items():
        check_media_kind(upload, kind)

    stored: dict[MediaKind, str] = {}
    for kind, upload in files.items():
        if _has_file(upload):
            result = storage.save_upload(upload.filename, upload.file, upload.content_type)
            stored[kind] = result.filename
    return stored


def discard_uploads(storage: LocalStorageService, stored: dict[MediaKind, str]) -> None:
    """Remove files written for a request that never produced a job."""
    for filename in stored.values():
        storage.delete_upload(filename)


def _sync_response(job: Job, plan: RenderPlan) -> GenerateVideoResponse:
    if job.status != JobStatus.COMPLETED:
        detail = job.error_detail
        raise RenderProcessError(
            detail.message if detail else None,
            exit_code=detail.exit_code if detail else None,
            stderr=(detail.stderr or "") if detail else "",
        )
    return GenerateVideoResponse(
        video_id=job.id,
        download_url=f"/api/download/{job.id}",
        duration=plan.duration_seconds,
        template_id=plan.template_id,
        width=plan.selection.geometry.width,
        height=plan.selection.geometry.height,
    )


def _submit_response(job: Job, plan: RenderPlan) -> SubmitJobResponse:
    return SubmitJobResponse(
        job_id=job.id,
        status=job.status.value,
        status_url=f"/api/jobs/{job.id}",
        template_id=plan.template_id,
        width=plan.selection.geometry.width,
        height=plan.selection.geometry.height,
    )


@router.get("/templates")
async def get_templates() -> dict:
    """Every (content kind, format key) template with its geometry."""
    return {"success": True, "templates": list_templates(), "formats": list_format_keys()}


@router.post("/generate-video", response_model=GenerateVideoResponse)
async def generate_video(
    payload: GenerateVideoRequest,
    orchestrator: Orchestrator,
    settings: AppSettings,
) -> GenerateVideoResponse:
    """Render a text-only video and return once it is finished."""
    request = build_render_request(
        payload, settings.default_duration_seconds, content_kind=ContentKind.TEXT
    )
    job, plan = await orchestrator.render_sync(request)
    return _sync_response(job, plan)


@router.post("/generate-video-with-image", response_model=GenerateVideoResponse)
async def generate_video_with_image(
    orchestrator: Orchestrator,
    storage: Storage,
    settings: AppSettings,
    title: Annotated[str, Form()] = "Default Title",
    subtitle: Annotated[str, Form()] = "Default Subtitle",
    background_color: Annotated[str, Form(alias="backgroundColor")] = "#000000",
    text_color: Annotated[str, Form(alias="textColor")] = "#ffffff",
    duration: Annotated[float | None, Form(gt=0)] = None,
    format_key: Annotated[str | None, Form(alias="formatKey")] = None,
    image: Annotated[UploadFile | None, File()] = None,
) -> GenerateVideoResponse:
    """Render a video over an uploaded background image (falls back to the colour)."""
    stored = store_uploads(storage, {MediaKind.IMAGE: image})
    try:
        media = [MediaReference.from_upload(kind, name) for kind, name in stored.items()]
        payload = GenerateVideoRequest(
            title=title,
            subtitle=subtitle,
            background_color=background_color,
            text_color=text_color,
            duration=duration,
            format_key=format_key,
        )
        request = build_render_request(
            payload, settings.default_duration_seconds, media=media, content_kind=ContentKind.IMAGE
        )
        job, plan = await orchestrator.render_sync(request)
    except Exception:
        discard_uploads(storage, stored)
        raise
    return _sync_response(job, plan)


@router.post("/render", response_model=GenerateVideoResponse)
async def render(
    payload: RenderJobRequest,
    orchestrator: Orchestrator,
    settings: AppSettings,
) -> GenerateVideoResponse:
    """Render from a full recipe and return once the video is finished."""
    request = build_render_request(
        payload,
        settings.default_duration_seconds,
        media=payload.media_references(),
        content_kind=payload.content_kind,
    )
    job, plan = await orchestrator.render_sync(request)
    return _sync_response(job, plan)


@router.post(
    "/render/async",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def render_async(
    payload: RenderJobRequest,
    orchestrator: Orchestrator,
    settings: AppSettings,
) -> SubmitJobResponse:
    """Queue a render; media is fetched before the job id is issued."""
    request = build_render_request(
        payload,
        settings.default_duration_seconds,
        media=payload.media_references(),
        content_kind=payload.content_kind,
    )
    job, plan = await orchestrator.submit(request)
    return _submit_response(job, plan)


@router.post(
    "/render/upload",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def render_upload(
    orchestrator: Orchestrator,
    storage: Storage,
    settings: AppSettings,
    title: Annotated[str, Form()] = "Default Title",
    subtitle: Annotated[str, Form()] = "Default Subtitle",
    background_color: Annotated[str, Form(alias="backgroundColor")] = "#000000",
    text_color: Annotated[str, Form(alias="textColor")] = "#ffffff",
    duration: Annotated[float | None, Form(gt=0)] = None,
    format_key: Annotated[str | None, Form(alias="formatKey")] = None,
    content_kind: Annotated[ContentKind | None, Form(alias="contentKind")] = None,
    image_url: Annotated[str | None, Form(alias="imageUrl")] = None,
    video_url: Annotated[str | None, Form(alias="videoUrl")] = None,
    audio_url: Annotated[str | None, Form(alias="audioUrl")] = None,
    logo_url: Annotated[str | None, Form(alias="logoUrl")] = None,
    image: Annotated[UploadFile | None, File()] = None,
    video: Annotated[UploadFile | None, File()] = None,
    audio: Annotated[UploadFile | None, File()] = None,
    logo: Annotated[UploadFile | None, File()] = None,
) -> SubmitJobResponse:
    """Queue a render from multipart form data; files win over URLs of the same kind."""
    stored = store_uploads(
        storage,
        {
            MediaKind.IMAGE: image,
            MediaKind.VIDEO: video,
            MediaKind.AUDIO: audio,
            MediaKind.LOGO: logo,
        },
    )
    try:
        payload = RenderJobRequest(
            title=title,
            subtitle=subtitle,
            background_color=background_color,
            text_color=text_color,
            duration=duration,
            format_key=format_key,
            content_kind=content_kind,
            image_url=image_url,
            video_url=video_url,
            audio_url=audio_url,
            logo_url=logo_url,
            image_filename=stored.get(MediaKind.IMAGE),
            video_filename=stored.get(MediaKind.VIDEO),
            audio_filename=stored.get(MediaKind.AUDIO),
            logo_filename=stored.get(MediaKind.LOGO),
        )
        request = build_render_request(
            payload,
            settings.default_duration_seconds,
            media=payload.media_references(),
            content_kind=payload.content_kind,
        )
        job, plan = await orchestrator.submit(request)
    except Exception:
        # No job will ever reference these files
        discard_uploads(storage, stored)
        raise
    return _submit_response(job, plan)
