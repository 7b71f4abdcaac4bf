from __future__ import annotations

import logging

from PySide6.QtCore import QLineF, QObject, QPointF, Signal

from compositor.core.canvas import Canvas
from compositor.core.geometry import ViewTransform, rotate_point
from compositor.core.objects import ObjectKind
from compositor.tools import BaseTool, Handle, InteractionMode, MoveTool, PanTool, RotateTool, ScaleTool


logger = logging.getLogger(__name__)

HANDLE_HIT_RADIUS = 8.0
ROTATE_HANDLE_OFFSET = 24.0


class InteractionController(QObject):
    """Pointer-driven state machine over the active canvas.

    At most one session (a tool instance) exists at a time. It is created on
    pointer-down and dropped on pointer-up; while it exists every pointer
    move is forwarded to it regardless of where the pointer is.
    """

    selection_changed = Signal(list)
    mode_changed = Signal(str)
    objects_moved = Signal(list)

    def __init__(self, view: ViewTransform, canvas: Canvas | None = None):
        super().__init__()
        self.view = view
        self.canvas: Canvas | None = None
        self.selection: list[str] = []
        self.session: BaseTool | None = None
        self.set_canvas(canvas)

    @property
    def mode(self) -> InteractionMode:
        if self.session is None:
            return InteractionMode.IDLE
        return self.session.mode

    def set_canvas(self, canvas: Canvas | None) -> None:
        if self.canvas is not None:
            try:
                self.canvas.objects_removed.disconnect(self._on_objects_removed)
            except (RuntimeError, TypeError):
                pass
        self._set_session(None)
        self.canvas = canvas
        if canvas is not None:
            canvas.objects_removed.connect(self._on_objects_removed)
        self.clear_selection()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------
    def set_selection(self, ids: list[str]) -> None:
        ids = list(dict.fromkeys(ids))
        if ids != self.selection:
            self.selection = ids
            self.selection_changed.emit(list(self.selection))

    def clear_selection(self) -> None:
        self.set_selection([])

    def sole_selection(self) -> str | None:
        if len(self.selection) == 1:
            return self.selection[0]
        return None

    def _on_objects_removed(self, removed: list) -> None:
        if self.session is not None and self.session.affected_ids() & set(removed):
            self._set_session(None)
        remaining = [object_id for object_id in self.selection if object_id not in removed]
        self.set_selection(remaining)

    def _updated_selection(self, target_id: str, kind: ObjectKind, toggle: bool) -> list[str]:
        if kind is ObjectKind.PROMPT_NODE:
            return [target_id]
        if toggle:
            if target_id in self.selection:
                return [object_id for object_id in self.selection if object_id != target_id]
            return self.selection + [target_id]
        if target_id in self.selection:
            return list(self.selection)
        return [target_id]

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def _set_session(self, session: BaseTool | None) -> None:
        previous_mode = self.mode
        if self.session is not None:
            self.session.finish()
        self.session = session
        if self.mode is not previous_mode:
            self.mode_changed.emit(self.mode.value)

    def pointer_down(
        self,
        target_id: str,
        screen_pos: QPointF,
        handle: Handle = Handle.BODY,
        *,
        toggle: bool = False,
    ) -> bool:
        """Select and promote *target_id*, then start a session if one applies.

        Returns ``True`` when a session started. A target that cannot be
        resolved is ignored entirely.
        """

        canvas = self.canvas
        if canvas is None:
            return False
        kind = canvas.kind_of(target_id)
        if kind is None:
            return False

        self.set_selection(self._updated_selection(target_id, kind, toggle))
        canvas.bring_to_front(target_id)

        session: BaseTool | None = None
        if kind is ObjectKind.PROMPT_NODE:
            # Prompt nodes follow their parent and are never dragged themselves.
            session = None
        elif target_id not in self.selection:
            # Toggled out of the selection.
            session = None
        elif handle is Handle.RESIZE:
            session = ScaleTool(canvas, self.view, screen_pos, target_id)
        elif handle is Handle.ROTATE:
            if kind is ObjectKind.IMAGE:
                session = RotateTool(canvas, self.view, screen_pos, target_id)
        elif kind is ObjectKind.FRAME:
            session = MoveTool(canvas, self.view, screen_pos, target_id, [target_id])
        else:
            moved = [object_id for object_id in self.selection if object_id in canvas.images]
            session = MoveTool(canvas, self.view, screen_pos, target_id, moved)

        self._set_session(session)
        return session is not None

    def frame_pointer_down(self, frame_id: str, screen_pos: QPointF, *, toggle: bool = False) -> bool:
        """Pointer-down on a frame prefers the topmost image under the pointer."""

        if self.canvas is None:
            return False
        hits = self.canvas.images_at(self.view.to_canvas(screen_pos))
        if hits:
            return self.pointer_down(hits[0].id, screen_pos, Handle.BODY, toggle=toggle)
        return self.pointer_down(frame_id, screen_pos, Handle.BODY, toggle=toggle)

    def background_pointer_down(self, screen_pos: QPointF, *, pan: bool = False) -> bool:
        if pan:
            self._set_session(PanTool(self.canvas, self.view, screen_pos))
            return True
        self.clear_selection()
        return False

    def pointer_move(self, screen_pos: QPointF) -> None:
        session = self.session
        if session is None:
            return
        session.update(screen_pos)
        if session.mode is not InteractionMode.PANNING:
            self.objects_moved.emit(sorted(session.affected_ids()))

    def pointer_up(self) -> None:
        self._set_session(None)

    # ------------------------------------------------------------------
    # Hit testing
    # ------------------------------------------------------------------
    def handle_positions(self, object_id: str) -> dict[Handle, QPointF]:
        """Canvas positions of the handles drawn for *object_id*."""

        canvas = self.canvas
        if canvas is None:
            return {}
        frame = canvas.frames.get(object_id)
        if frame is not None:
            return {Handle.RESIZE: QPointF(frame.x + frame.width, frame.y + frame.height)}
        image = canvas.images.get(object_id)
        if image is None:
            return {}
        center = image.center()
        corner = QPointF(image.x + image.width, image.y + image.height)
        top = QPointF(center.x(), image.y - ROTATE_HANDLE_OFFSET / self.view.zoom)
        return {
            Handle.RESIZE: rotate_point(corner, center, image.rotation),
            Handle.ROTATE: rotate_point(top, center, image.rotation),
        }

    def handle_at(self, screen_pos: QPointF) -> tuple[str, Handle] | None:
        canvas = self.canvas
        if canvas is None:
            return None
        candidates = [canvas.get(object_id) for object_id in self.selection]
        candidates = [obj for obj in candidates if obj is not None and obj.kind is not ObjectKind.PROMPT_NODE]
        candidates.sort(key=lambda obj: (obj.kind is ObjectKind.FRAME, obj.z_index), reverse=True)
        for obj in candidates:
            for handle, position in self.handle_positions(obj.id).items():
                distance = QLineF(self.view.to_screen(position), screen_pos).length()
                if distance <= HANDLE_HIT_RADIUS:
                    return obj.id, handle
        return None

    def object_at(self, screen_pos: QPointF) -> tuple[str, ObjectKind] | None:
        """Topmost object under *screen_pos*, respecting the draw band order."""

        canvas = self.canvas
        if canvas is None:
            return None
        point = self.view.to_canvas(screen_pos)
        nodes = canvas.prompt_nodes_at(point)
        if nodes:
            return nodes[0].id, ObjectKind.PROMPT_NODE
        frames = canvas.frames_at(point)
        if frames:
            return frames[0].id, ObjectKind.FRAME
        images = canvas.images_at(point)
        if images:
            return images[0].id, ObjectKind.IMAGE
        return None

    def press(
        self,
        screen_pos: QPointF,
        *,
        toggle: bool = False,
        pan: bool = False,
    ) -> bool:
        """Resolve what lies under the pointer and start the matching interaction.

        ``pan`` requests panning, which only starts on empty background.
        """

        handle_hit = self.handle_at(screen_pos)
        if handle_hit is not None:
            object_id, handle = handle_hit
            return self.pointer_down(object_id, screen_pos, handle, toggle=toggle)

        hit = self.object_at(screen_pos)
        if hit is None:
            return self.background_pointer_down(screen_pos, pan=pan)
        object_id, kind = hit
        if kind is ObjectKind.FRAME:
            return self.frame_pointer_down(object_id, screen_pos, toggle=toggle)
        return self.pointer_down(object_id, screen_pos, Handle.BODY, toggle=toggle)
