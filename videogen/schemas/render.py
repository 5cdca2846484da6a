from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from videogen.services.job_registry import Job
from videogen.services.media_resolver import MediaKind, MediaReference
from videogen.services.render_orchestrator import RenderRequest
from videogen.services.template_service import ContentKind

DEFAULT_TITLE = "Default Title"
DEFAULT_SUBTITLE = "Default Subtitle"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateVideoRequest(CamelModel):
    """Text-only recipe (POST /api/generate-video)."""

    title: str = DEFAULT_TITLE
    subtitle: str = DEFAULT_SUBTITLE
    background_color: str = "#000000"
    text_color: str = "#ffffff"
    duration: float | None = Field(default=None, gt=0)  # seconds
    format_key: str | None = None


class RenderJobRequest(GenerateVideoRequest):
    """Full recipe with media given as remote URLs or previously uploaded filenames."""

    content_kind: ContentKind | None = None  # inferred from media when omitted

    image_url: str | None = None
    video_url: str | None = None
    audio_url: str | None = None
    logo_url: str | None = None

    image_filename: str | None = None
    video_filename: str | None = None
    audio_filename: str | None = None
    logo_filename: str | None = None

    def media_references(self) -> list[MediaReference]:
        refs = [
            MediaReference.from_fields(MediaKind.IMAGE, self.image_filename, self.image_url),
            MediaReference.from_fields(MediaKind.VIDEO, self.video_filename, self.video_url),
            MediaReference.from_fields(MediaKind.AUDIO, self.audio_filename, self.audio_url),
            MediaReference.from_fields(MediaKind.LOGO, self.logo_filename, self.logo_url),
        ]
        return [ref for ref in refs if ref.value]


def infer_content_kind(media: list[MediaReference]) -> ContentKind:
    kinds = {ref.kind for ref in media}
    if MediaKind.VIDEO in kinds:
        return ContentKind.VIDEO
    if MediaKind.IMAGE in kinds:
        return ContentKind.IMAGE
    return ContentKind.TEXT


def build_render_request(
    payload: GenerateVideoRequest,
    default_duration: float,
    media: list[MediaReference] | None = None,
    content_kind: ContentKind | None = None,
) -> RenderRequest:
    """Domain request from an API payload, substituting the default duration."""
    media = media or []
    return RenderRequest(
        title=payload.title,
        subtitle=payload.subtitle,
        background_color=payload.background_color,
        text_color=payload.text_color,
        content_kind=content_kind or infer_content_kind(media),
        format_key=payload.format_key,
        duration_seconds=payload.duration or default_duration,
        media=media,
    )


class JobErrorResponse(CamelModel):
    message: str
    exit_code: int | None = None
    stderr: str | None = None


class JobResponse(CamelModel):
    id: str
    status: str
    progress: int
    template_id: str | None = None
    format_key: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    output_reference: str | None = None
    download_url: str | None = None
    error: JobErrorResponse | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        error = None
        if job.error_detail is not None:
            error = JobErrorResponse(
                message=job.error_detail.message,
                exit_code=job.error_detail.exit_code,
                stderr=job.error_detail.stderr,
            )
        return cls(
            id=job.id,
            status=job.status.value,
            progress=job.progress,
            template_id=job.template_id,
            format_key=job.format_key,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            failed_at=job.failed_at,
            output_reference=job.output_reference,
            download_url=f"/api/download/{job.id}" if job.output_reference else None,
            error=error,
        )


class JobListResponse(CamelModel):
    success: bool = True
    jobs: list[JobResponse]
    count: int


class SubmitJobResponse(CamelModel):
    success: bool = True
    job_id: str
    status: str
    status_url: str
    template_id: str
    width: int
    height: int


class GenerateVideoResponse(CamelModel):
    success: bool = True
    video_id: str
    download_url: str
    duration: float  # seconds
    template_id: str
    width: int
    height: int
    message: str = "Video generated successfully"
