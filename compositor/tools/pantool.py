from __future__ import annotations

from PySide6.QtCore import QPointF

from compositor.tools.basetool import BaseTool, InteractionMode


class PanTool(BaseTool):
    """Feeds raw screen movement into the view pan."""

    mode = InteractionMode.PANNING

    def __init__(self, canvas, view, start_screen: QPointF):
        super().__init__(canvas, view, start_screen)
        self.last_point = QPointF(start_screen)

    def update(self, screen_pos: QPointF) -> None:
        delta = screen_pos - self.last_point
        self.view.pan_by(delta.x(), delta.y())
        self.last_point = QPointF(screen_pos)
