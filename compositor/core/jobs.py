from __future__ import annotations

import asyncio
import io
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable

from PIL import Image, UnidentifiedImageError
from PySide6.QtCore import QObject, QPointF, QRectF, Signal

from compositor.core.capture import (
    ImageLoader,
    capture_frame,
    capture_object,
    capture_source,
    encode_data_uri,
    images_in_frame,
)
from compositor.core.canvas import Canvas
from compositor.core.errors import CaptureError, CompositorError, ProviderError, ValidationError
from compositor.core.objects import ImageObject, ObjectKind


logger = logging.getLogger(__name__)

MAX_CONCURRENT_JOBS = 10
RESULT_WIDTH = 300.0
RESULT_MARGIN = 50.0
UPSCALE_PROMPT = "CREATIVELY UPSCALE TO 16K RESOLUTION"
UPSCALE_PROVIDER = "seadream"
TEXT_TO_IMAGE_PROVIDER = "seadream"


@dataclass
class Job:
    id: str
    provider: str
    kind: str
    canvas: Canvas
    prompt: str
    source_id: str | None = None
    source_rect: QRectF | None = None
    result_ids: list[str] = field(default_factory=list)


class JobOrchestrator(QObject):
    """Dispatches captures to providers and inserts their results.

    Every accepted job is listed in ``active_jobs`` before its first network
    call and removed in a ``finally`` block, whatever the outcome. Jobs are
    plain asyncio tasks; submitting requires a running event loop.
    """

    jobs_changed = Signal()
    job_succeeded = Signal(str, list)
    job_failed = Signal(str, str)

    def __init__(
        self,
        providers: dict,
        loader: ImageLoader | None = None,
        max_concurrent: int = MAX_CONCURRENT_JOBS,
        view_center: Callable[[], QPointF] | None = None,
    ):
        super().__init__()
        self.providers = providers
        self.loader = loader or ImageLoader()
        self.max_concurrent = max_concurrent
        self.view_center = view_center or (lambda: QPointF(0.0, 0.0))
        self.active_jobs: dict[str, Job] = {}
        self.api_call_counts = {name: 0 for name in providers}
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def check_capacity(self) -> None:
        if len(self.active_jobs) >= self.max_concurrent:
            raise ValidationError(f"Maximum of {self.max_concurrent} concurrent AI jobs reached.")

    def provider(self, name: str):
        provider = self.providers.get(name)
        if provider is None:
            raise ValidationError(f"Unknown provider: {name}")
        if not provider.is_configured:
            raise ValidationError(f"API key for {name} is required.")
        return provider

    @staticmethod
    def resolve_prompt(canvas: Canvas, target_id: str, global_prompt: str) -> str:
        node = canvas.prompt_node_for(target_id)
        prompt = node.prompt if node is not None else (global_prompt or "")
        if not prompt.strip():
            raise ValidationError(
                "Please enter an edit prompt or assign one to the selected object's node."
            )
        return prompt

    @staticmethod
    def check_frame_prompt_nodes(canvas: Canvas, frame_id: str) -> None:
        frame = canvas.frames[frame_id]
        for image in images_in_frame(frame, canvas.images.values()):
            if canvas.prompt_node_for(image.id) is not None:
                raise ValidationError(
                    "Cannot process frame: An image inside the frame has its own prompt node "
                    "attached. Please remove it and attach a single prompt node to the frame itself."
                )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit_edit(self, canvas: Canvas, target_id: str, provider_name: str, global_prompt: str = "") -> Job:
        """Capture *target_id* (image or frame) and send it to an edit provider."""

        self.check_capacity()
        kind = canvas.kind_of(target_id)
        if kind not in (ObjectKind.IMAGE, ObjectKind.FRAME):
            raise ValidationError("Could not find the source object to process.")
        if kind is ObjectKind.FRAME:
            self.check_frame_prompt_nodes(canvas, target_id)
        prompt = self.resolve_prompt(canvas, target_id, global_prompt)
        provider = self.provider(provider_name)

        loop = self._running_loop()
        target = canvas.get(target_id)
        job = self._register(provider_name, "edit", canvas, prompt, target)
        self._spawn(loop, job, self._run_edit(job, provider, kind))
        return job

    def submit_upscale(self, canvas: Canvas, image_id: str) -> Job:
        provider = self.providers.get(UPSCALE_PROVIDER)
        if provider is None or not provider.is_configured:
            raise ValidationError("SeaDream API key must be connected for upscaling.")
        self.check_capacity()
        image = canvas.images.get(image_id)
        if image is None:
            raise ValidationError("Could not find source object to upscale.")

        loop = self._running_loop()
        job = self._register(UPSCALE_PROVIDER, "upscale", canvas, UPSCALE_PROMPT, image)
        self._spawn(loop, job, self._run_upscale(job, provider))
        return job

    def submit_generate(self, canvas: Canvas, prompt: str) -> Job:
        provider = self.providers.get(TEXT_TO_IMAGE_PROVIDER)
        if not (prompt or "").strip() or provider is None or not provider.is_configured:
            raise ValidationError("SeaDream API key must be connected and a prompt provided.")
        self.check_capacity()

        loop = self._running_loop()
        job = self._register(TEXT_TO_IMAGE_PROVIDER, "generate", canvas, prompt, None)
        self._spawn(loop, job, self._run_generate(job, provider))
        return job

    def _register(self, provider_name: str, kind: str, canvas: Canvas, prompt: str, source) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            provider=provider_name,
            kind=kind,
            canvas=canvas,
            prompt=prompt,
            source_id=source.id if source is not None else None,
            source_rect=source.rect() if source is not None else None,
        )
        self.api_call_counts[provider_name] = self.api_call_counts.get(provider_name, 0) + 1
        self.active_jobs[job.id] = job
        logger.info("Job %s (%s via %s) accepted", job.id, kind, provider_name)
        self.jobs_changed.emit()
        return job

    @staticmethod
    def _running_loop() -> asyncio.AbstractEventLoop:
        try:
            return asyncio.get_running_loop()
        except RuntimeError as exc:
            raise ValidationError("No event loop is running.") from exc

    def _spawn(self, loop: asyncio.AbstractEventLoop, job: Job, coroutine) -> None:
        task = loop.create_task(self._run(job, coroutine))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, job: Job, coroutine) -> None:
        try:
            results = await coroutine
            if not results:
                raise ProviderError("AI returned a result with no images.")
            for data in results:
                width, height = await asyncio.to_thread(_image_size, data)
                image = self.insert_result(job, data, width, height)
                job.result_ids.append(image.id)
            logger.info("Job %s finished with %d result(s)", job.id, len(job.result_ids))
            self.job_succeeded.emit(job.id, list(job.result_ids))
        except CompositorError as exc:
            logger.error("Job %s failed: %s", job.id, exc)
            self.job_failed.emit(job.id, str(exc))
        except Exception as exc:
            logger.exception("Job %s failed unexpectedly", job.id)
            self.job_failed.emit(job.id, str(exc) or "An unknown error occurred.")
        finally:
            self.active_jobs.pop(job.id, None)
            self.jobs_changed.emit()

    def _source(self, job: Job):
        source = job.canvas.get(job.source_id)
        if source is None:
            raise CaptureError("Could not find the source object to process.")
        return source

    async def _run_edit(self, job: Job, provider, kind: ObjectKind) -> list[bytes]:
        source = self._source(job)
        if kind is ObjectKind.FRAME:
            selected = images_in_frame(source, job.canvas.images.values())
            loaded = await self.loader.load_many(obj.src for obj in selected)
            captured = capture_frame(source, selected, loaded)
        else:
            loaded = await self.loader.load_many([source.src])
            captured = capture_object(source, loaded)
        return await provider.edit(captured.to_png_bytes(), job.prompt, captured.width, captured.height)

    async def _run_upscale(self, job: Job, provider) -> list[bytes]:
        source = self._source(job)
        loaded = await self.loader.load_many([source.src])
        captured = capture_source(source, loaded)
        return await provider.edit(captured.to_png_bytes(), job.prompt, captured.width, captured.height)

    async def _run_generate(self, job: Job, provider) -> list[bytes]:
        return await provider.generate(job.prompt)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    def result_position(self, job: Job, width: float, height: float) -> QPointF:
        source_rect = job.source_rect
        if job.source_id is not None:
            source = job.canvas.images.get(job.source_id) or job.canvas.frames.get(job.source_id)
            if source is not None:
                source_rect = source.rect()
        if source_rect is not None:
            return QPointF(
                source_rect.x() + source_rect.width() / 2.0 - width / 2.0,
                source_rect.y() + source_rect.height() + RESULT_MARGIN,
            )
        center = self.view_center()
        return QPointF(center.x() - width / 2.0, center.y() - height / 2.0)

    def insert_result(self, job: Job, data: bytes, natural_width: int, natural_height: int) -> ImageObject:
        width = RESULT_WIDTH
        height = width / (natural_width / natural_height)
        position = self.result_position(job, width, height)
        return job.canvas.add_image(
            encode_data_uri(data),
            position.x(),
            position.y(),
            width,
            height,
            is_ai_result=True,
        )

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


def _image_size(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError) as exc:
        raise ProviderError(f"Provider returned an unreadable image: {exc}") from exc
    if width <= 0 or height <= 0:
        raise ProviderError("Provider returned an empty image.")
    return width, height
