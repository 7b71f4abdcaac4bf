from __future__ import annotations

import functools
import json
import logging
import os

from PySide6.QtCore import QObject, Signal, Slot

from compositor.ai import create_providers
from compositor.core.canvas import Canvas
from compositor.core.canvas_collection import CanvasCollection
from compositor.core.capture import ImageLoader, capture_frame
from compositor.core.errors import CaptureError, CompositorError, ValidationError
from compositor.core.geometry import ViewTransform
from compositor.core.interaction import InteractionController
from compositor.core.jobs import JobOrchestrator
from compositor.core.objects import ObjectKind, parse_aspect_ratio
from compositor.core.persistence import JsonStateStore
from compositor.core.settings_controller import SettingsController


logger = logging.getLogger(__name__)

IMPORT_WIDTH = 150.0
IMPORT_STAGGER = 30.0
FRAME_VIEWPORT_FRACTION = 0.5


def reports_errors(method):
    """Turn a :class:`CompositorError` into an ``error_raised`` emission."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            result = method(self, *args, **kwargs)
        except CompositorError as exc:
            self.report_error(str(exc))
            return None
        return result

    return wrapper


class App(QObject):
    """Application orchestrator delegating logic to controllers."""

    error_raised = Signal(str)
    canvas_changed = Signal()
    active_canvas_changed = Signal(object)
    selection_changed = Signal(list)
    jobs_changed = Signal()

    def __init__(self, settings_controller=None, store=None, providers=None, loader=None, view=None):
        super().__init__()
        self.settings_controller = settings_controller or SettingsController()
        settings = self.settings_controller
        self.last_error: str | None = None

        self.view = view or ViewTransform(zoom=settings.default_zoom)
        self.loader = loader or ImageLoader()

        self.collection = CanvasCollection(store if store is not None else JsonStateStore(settings.workspace_path))
        self.collection.load()

        self.interaction = InteractionController(self.view, self.collection.active_canvas)
        self.interaction.selection_changed.connect(self.selection_changed.emit)

        if providers is None:
            providers = create_providers(
                settings.api_keys,
                poll_interval=settings.poll_interval,
                poll_timeout=settings.poll_timeout,
            )
        self.jobs = JobOrchestrator(
            providers,
            loader=self.loader,
            max_concurrent=settings.max_concurrent_jobs,
            view_center=self.view.canvas_center,
        )
        self.jobs.jobs_changed.connect(self.jobs_changed.emit)
        self.jobs.job_failed.connect(self._on_job_failed)

        self.edit_prompt = settings.last_prompt
        self.text_prompt = settings.last_text_prompt

        self._watched_canvas: Canvas | None = None
        self.collection.active_canvas_changed.connect(self._on_active_canvas_changed)
        self._watch_canvas(self.collection.active_canvas)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------
    def report_error(self, message: str) -> None:
        logger.error(message)
        self.last_error = message
        self.error_raised.emit(message)

    def clear_error(self) -> None:
        self.last_error = None

    @Slot(str, str)
    def _on_job_failed(self, job_id, message):
        self.report_error(message)

    # ------------------------------------------------------------------
    # Canvas collection
    # ------------------------------------------------------------------
    @property
    def canvas(self) -> Canvas:
        return self.collection.active_canvas

    def _watch_canvas(self, canvas: Canvas | None) -> None:
        if self._watched_canvas is not None:
            try:
                self._watched_canvas.changed.disconnect(self.canvas_changed.emit)
            except (RuntimeError, TypeError):
                pass
        self._watched_canvas = canvas
        if canvas is not None:
            canvas.changed.connect(self.canvas_changed.emit)

    @Slot(object)
    def _on_active_canvas_changed(self, canvas):
        self.interaction.set_canvas(canvas)
        self._watch_canvas(canvas)
        self.active_canvas_changed.emit(canvas)
        self.canvas_changed.emit()

    def create_canvas(self, name=None):
        return self.collection.create_canvas(name)

    @reports_errors
    def select_canvas(self, canvas_id):
        return self.collection.select_canvas(canvas_id)

    @reports_errors
    def rename_canvas(self, canvas_id, name):
        self.collection.rename_canvas(canvas_id, name)

    def delete_canvas(self, canvas_id):
        self.collection.delete_canvas(canvas_id)

    @reports_errors
    def set_favorite(self, slot, canvas_id):
        self.collection.set_favorite(slot, canvas_id)

    def clear_favorite(self, slot):
        self.collection.clear_favorite(slot)

    def search_canvases(self, query):
        return self.collection.search(query)

    # ------------------------------------------------------------------
    # Object creation
    # ------------------------------------------------------------------
    @reports_errors
    def import_images(self, sources):
        """Add image files or URLs around the view center, up to the canvas limit."""

        sources = list(sources)
        if not sources:
            return []
        canvas = self.canvas
        limit = self.settings_controller.image_limit
        available = limit - len(canvas.images)
        if available <= 0:
            raise ValidationError(f"Canvas image limit of {limit} reached.")

        to_add = sources[:available]
        sizes = [self.loader.load(src).size() for src in to_add]

        center = self.view.canvas_center()
        added = []
        count = len(to_add)
        for index, (src, size) in enumerate(zip(to_add, sizes)):
            width = IMPORT_WIDTH
            height = width / (size.width() / size.height())
            offset = (index - (count - 1) / 2.0) * IMPORT_STAGGER
            added.append(
                canvas.add_image(
                    src,
                    center.x() - width / 2.0 + offset,
                    center.y() - height / 2.0 + offset,
                    width,
                    height,
                )
            )
        logger.info("Imported %d image(s) into %s", len(added), canvas.name)

        if count < len(sources):
            self.report_error(f"Only {count} were added to reach the limit of {limit}.")
        else:
            self.clear_error()
        self.interaction.clear_selection()
        return added

    @reports_errors
    def add_frame(self, aspect_ratio):
        """Add the largest frame of *aspect_ratio* fitting half the viewport, centered."""

        if not aspect_ratio or aspect_ratio <= 0:
            raise ValidationError("Invalid aspect ratio provided.")
        zoom = self.view.zoom
        max_width = self.view.viewport_size.width() * FRAME_VIEWPORT_FRACTION / zoom
        max_height = self.view.viewport_size.height() * FRAME_VIEWPORT_FRACTION / zoom
        if max_width / aspect_ratio > max_height:
            width = max_height * aspect_ratio
        else:
            width = max_width
        height = width / aspect_ratio

        center = self.view.canvas_center()
        return self.canvas.add_frame(center.x() - width / 2.0, center.y() - height / 2.0, width, aspect_ratio)

    @reports_errors
    def add_frame_from_string(self, text):
        frame = self.add_frame(parse_aspect_ratio(text))
        if frame is not None:
            self.clear_error()
        return frame

    # ------------------------------------------------------------------
    # Prompt nodes and prompt editing
    # ------------------------------------------------------------------
    @reports_errors
    def add_prompt_node(self):
        target_id = self.interaction.sole_selection()
        if target_id is None or self.canvas.kind_of(target_id) not in (ObjectKind.IMAGE, ObjectKind.FRAME):
            raise ValidationError("Select a single image or frame to attach a prompt node.")
        node = self.canvas.add_prompt_node(target_id)
        self.interaction.set_selection([node.id])
        return node

    def remove_prompt_node(self):
        target_id = self.interaction.sole_selection()
        if target_id is None:
            return None
        canvas = self.canvas
        node = canvas.prompt_nodes.get(target_id)
        if node is not None:
            canvas.delete([node.id])
            return node.id
        return canvas.remove_prompt_node_for(target_id)

    def prompt_target(self):
        """The sole selected prompt node, which the prompt editor edits when present."""

        target_id = self.interaction.sole_selection()
        if target_id is None:
            return None
        return self.canvas.prompt_nodes.get(target_id)

    @property
    def prompt_text(self) -> str:
        node = self.prompt_target()
        return node.prompt if node is not None else self.edit_prompt

    def set_prompt_text(self, text):
        node = self.prompt_target()
        if node is not None:
            self.canvas.set_prompt(node.id, text)
        else:
            self.edit_prompt = text

    def clear_prompt(self):
        self.set_prompt_text("")

    @reports_errors
    def load_prompt_json(self, path):
        try:
            with open(path, "r", encoding="utf-8") as handle:
                content = json.load(handle)
        except (OSError, ValueError) as exc:
            raise ValidationError("Failed to parse JSON file.") from exc
        prompt = content.get("prompt") if isinstance(content, dict) else None
        if not prompt or not isinstance(prompt, str):
            raise ValidationError("Invalid JSON format. Expected an object with a 'prompt' key.")
        self.set_prompt_text(prompt)
        self.clear_error()
        return prompt

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------
    def delete_object(self, object_id):
        return self.canvas.delete([object_id])

    def delete_selected(self):
        return self.canvas.delete(list(self.interaction.selection))

    def clear_canvas(self):
        self.canvas.clear()
        self.interaction.clear_selection()

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------
    def zoom_in(self):
        self.view.zoom_in()

    def zoom_out(self):
        self.view.zoom_out()

    def reset_view(self):
        self.view.reset(self.settings_controller.default_zoom)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    @reports_errors
    def send_to_provider(self, object_id, provider_name):
        job = self.jobs.submit_edit(self.canvas, object_id, provider_name, self.edit_prompt)
        self.clear_error()
        return job

    @reports_errors
    def upscale(self, image_id):
        job = self.jobs.submit_upscale(self.canvas, image_id)
        self.clear_error()
        return job

    @reports_errors
    def generate_from_text(self, prompt=None):
        if prompt is not None:
            self.text_prompt = prompt
        job = self.jobs.submit_generate(self.canvas, self.text_prompt)
        self.clear_error()
        return job

    @property
    def api_call_counts(self):
        return dict(self.jobs.api_call_counts)

    def set_api_key(self, provider_name, key):
        self.settings_controller.set_api_key(provider_name, key)
        provider = self.jobs.providers.get(provider_name)
        if provider is not None:
            provider.api_key = self.settings_controller.api_key(provider_name)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def _export_directory(self, directory):
        return directory or self.settings_controller.last_directory

    @reports_errors
    def screenshot_frame(self, frame_id, directory=None):
        frame = self.canvas.frames.get(frame_id)
        if frame is None:
            return None
        path = os.path.join(self._export_directory(directory), f"screenshot-{frame_id[:8]}.png")
        try:
            captured = capture_frame(frame, list(self.canvas.images.values()), self.loader)
            captured.save(path)
        except CaptureError as exc:
            raise CaptureError(f"Screenshot failed: {exc}") from exc
        logger.info("Saved frame screenshot to %s", path)
        return path

    @reports_errors
    def export_image(self, object_id, directory=None):
        image = self.canvas.images.get(object_id)
        if image is None:
            return None
        path = os.path.join(self._export_directory(directory), f"ai-result-export-{object_id[:8]}.png")
        if not self.loader.load(image.src).save(path, "PNG"):
            raise CaptureError(f"Could not write export to {path}")
        logger.info("Exported image %s to %s", object_id, path)
        return path

    def save_settings(self):
        self.settings_controller.save_settings(
            {"prompt": self.edit_prompt, "text_prompt": self.text_prompt}
        )
