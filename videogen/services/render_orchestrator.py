"""Render orchestration for a single request.

    submit(request)
      -> resolve media            (may raise DownloadError; no job is created)
      -> select template          (never fails)
      -> registry.create          (pending; the job id is returned here)
      -> processing -> dispatch -> completed | failed

Failures before the job exists surface to the caller. Failures after that are
recorded on the job and only visible through the registry.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from uuid import uuid4

from videogen.config import Settings, get_settings
from videogen.exceptions import InvalidRenderPropertiesError, RenderProcessError
from videogen.render.dispatcher import RenderDispatcher
from videogen.render.properties import RenderProperties
from videogen.services.job_registry import ErrorDetail, Job, JobRegistry, JobStatus
from videogen.services.media_resolver import MediaKind, MediaReference, MediaResolver, ResolvedMedia
from videogen.services.render_queue import RenderQueue
from videogen.services.storage_service import LocalStorageService
from videogen.services.template_service import (
    ContentKind,
    TemplateSelection,
    duration_to_frames,
    select_template,
)

logger = logging.getLogger(__name__)

SHUTDOWN_REASON = "Render interrupted by service shutdown"
RESTART_REASON = "Render interrupted by service restart"

# Which property of the worker's components each kind of media feeds
MEDIA_PROPERTY: dict[MediaKind, str] = {
    MediaKind.IMAGE: "image_url",
    MediaKind.VIDEO: "video_url",
    MediaKind.AUDIO: "audio_url",
    MediaKind.LOGO: "logo_url",
}


@dataclass
class RenderRequest:
    """A declarative video recipe."""

    title: str
    subtitle: str = ""
    background_color: str = "#000000"
    text_color: str = "#ffffff"
    content_kind: ContentKind = ContentKind.TEXT
    format_key: Optional[str] = None
    duration_seconds: Optional[float] = None
    media: list[MediaReference] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.content_kind = ContentKind(self.content_kind)
        if self.duration_seconds is not None and self.duration_seconds <= 0:
            raise InvalidRenderPropertiesError(
                f"duration_seconds must be positive, got {self.duration_seconds}"
            )
        kinds = [ref.kind for ref in self.media]
        if len(kinds) != len(set(kinds)):
            raise InvalidRenderPropertiesError("At most one media reference per kind")


@dataclass
class RenderPlan:
    """Everything the dispatcher needs, computed before the job exists."""

    job_id: str
    selection: TemplateSelection
    properties: RenderProperties
    duration_frames: int
    output_path: Path
    media: list[ResolvedMedia] = field(default_factory=list)

    @property
    def template_id(self) -> str:
        return self.selection.template_id

    @property
    def duration_seconds(self) -> float:
        return self.duration_frames / self.selection.fps


class RenderOrchestrator:
    """Ties media resolution, template selection, the job registry and the dispatcher together."""

    def __init__(
        self,
        registry: JobRegistry,
        resolver: MediaResolver,
        dispatcher: RenderDispatcher,
        storage: LocalStorageService,
        settings: Settings | None = None,
        queue: RenderQueue[RenderPlan] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.storage = storage
        self.queue = queue or RenderQueue(self.settings.render_workers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.queue.start(self._handle)

    async def stop(self) -> None:
        """Stop the workers; every job that has not finished is marked failed."""
        await self.queue.stop()
        await self._registry_call(self.registry.fail_unfinished, SHUTDOWN_REASON)

    def recover(self) -> int:
        """Fail jobs left unfinished by a previous process."""
        return self.registry.fail_unfinished(RESTART_REASON)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def prepare(self, request: RenderRequest, job_id: Optional[str] = None) -> RenderPlan:
        """Resolve media and pick the template. No job is created here.

        Raises:
            InvalidRenderPropertiesError: text fields fail validation
            DownloadError: a remote media reference could not be fetched
        """
        job_id = job_id or str(uuid4())

        # Validate text fields before spending time on downloads
        properties = RenderProperties.build(
            title=request.title,
            subtitle=request.subtitle,
            background_color=request.background_color,
            text_color=request.text_color,
        )

        resolved = await self.resolver.resolve_all(request.media)
        selection = select_template(request.content_kind, request.format_key)

        media_props = {
            MEDIA_PROPERTY[item.kind]: item.filename for item in resolved if item.filename
        }
        if media_props:
            properties = properties.model_copy(update=media_props)

        if request.duration_seconds is not None:
            duration_frames = duration_to_frames(request.duration_seconds, selection.fps)
        else:
            duration_frames = selection.default_duration_frames

        return RenderPlan(
            job_id=job_id,
            selection=selection,
            properties=properties,
            duration_frames=duration_frames,
            output_path=self.storage.output_path(job_id),
            media=resolved,
        )

    async def submit(self, request: RenderRequest) -> tuple[Job, RenderPlan]:
        """Create a job and hand it to the render queue; returns while still pending."""
        if not self.queue.running:
            raise RuntimeError("Render queue is not running")
        plan = await self.prepare(request)
        job = await self._create_job(plan)
        await self.queue.put(plan)
        logger.info(f"Job {job.id} queued ({plan.template_id}, {plan.duration_frames} frames)")
        return job, plan

    async def render_sync(self, request: RenderRequest) -> tuple[Job, RenderPlan]:
        """Create a job and render it inline; returns the terminal job record."""
        plan = await self.prepare(request)
        await self._create_job(plan)
        job = await self.run_job(plan)
        return job, plan

    async def _create_job(self, plan: RenderPlan) -> Job:
        return await self._registry_call(
            self.registry.create,
            plan.job_id,
            template_id=plan.template_id,
            format_key=plan.selection.format_key,
        )

    async def _registry_call(self, method, *args, **kwargs):
        """Call a registry method, in a worker thread when the store blocks."""
        if self.registry.blocking:
            return await asyncio.to_thread(method, *args, **kwargs)
        return method(*args, **kwargs)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _handle(self, plan: RenderPlan) -> None:
        await self.run_job(plan)

    async def run_job(self, plan: RenderPlan) -> Job:
        """Drive one job from pending to a terminal state."""
        job_id = plan.job_id
        transition = self.registry.transition
        await self._registry_call(transition, job_id, JobStatus.PROCESSING)

        try:
            await self.dispatcher.dispatch(
                plan.template_id,
                plan.properties,
                plan.duration_frames,
                plan.output_path,
            )
        except RenderProcessError as e:
            logger.error(f"Job {job_id} failed: {e.message[:200]}")
            return await self._registry_call(
                transition,
                job_id,
                JobStatus.FAILED,
                error_detail=ErrorDetail(
                    message=e.message,
                    exit_code=e.exit_code,
                    stderr=e.stderr or None,
                ),
            )
        except asyncio.CancelledError:
            # Recorded inline; awaiting here could be cancelled again
            transition(job_id, JobStatus.FAILED, error_detail=ErrorDetail(message=SHUTDOWN_REASON))
            raise
        except Exception as e:
            logger.exception(f"Job {job_id} failed unexpectedly")
            return await self._registry_call(
                transition,
                job_id,
                JobStatus.FAILED,
                error_detail=ErrorDetail(message=str(e) or type(e).__name__),
            )

        logger.info(f"Job {job_id} completed -> {plan.output_path.name}")
        return await self._registry_call(
            transition, job_id, JobStatus.COMPLETED, output_reference=plan.output_path.name
        )
