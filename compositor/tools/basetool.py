from __future__ import annotations

from enum import Enum

from PySide6.QtCore import QPointF


class InteractionMode(str, Enum):
    IDLE = "idle"
    MOVING = "moving"
    RESIZING = "resizing"
    ROTATING = "rotating"
    PANNING = "panning"


class Handle(str, Enum):
    BODY = "body"
    RESIZE = "resize-br"
    ROTATE = "rotate"


class BaseTool:
    """One pointer-driven session, from pointer-down to pointer-up.

    Tools snapshot what they need when created and write absolute values to
    the canvas on every update, so each tick is computed from the session
    start rather than accumulated.
    """

    mode = InteractionMode.IDLE

    def __init__(self, canvas, view, start_screen: QPointF, target_id: str | None = None):
        self.canvas = canvas
        self.view = view
        self.start_screen = QPointF(start_screen)
        self.target_id = target_id

    def canvas_delta(self, screen_pos: QPointF) -> tuple[float, float]:
        zoom = self.view.zoom
        return (
            (screen_pos.x() - self.start_screen.x()) / zoom,
            (screen_pos.y() - self.start_screen.y()) / zoom,
        )

    def affected_ids(self) -> set[str]:
        return {self.target_id} if self.target_id else set()

    def update(self, screen_pos: QPointF) -> None:
        pass

    def finish(self) -> None:
        """Called once on pointer-up."""
        pass
