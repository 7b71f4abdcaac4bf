from __future__ import annotations

from PySide6.QtCore import QPointF

from compositor.core.geometry import angle_between
from compositor.tools.basetool import BaseTool, InteractionMode


class RotateTool(BaseTool):
    """Rotates an image about the center it had when the drag started.

    Rotation is stored unbounded; no wrap-around is applied.
    """

    mode = InteractionMode.ROTATING

    def __init__(self, canvas, view, start_screen: QPointF, target_id: str):
        super().__init__(canvas, view, start_screen, target_id)
        target = canvas.images[target_id]
        self.center = target.center()
        self.start_rotation = target.rotation
        self.start_angle = angle_between(self.center, view.to_canvas(self.start_screen))

    def update(self, screen_pos: QPointF) -> None:
        angle = angle_between(self.center, self.view.to_canvas(screen_pos))
        self.canvas.update_geometry(
            self.target_id, rotation=self.start_rotation + (angle - self.start_angle)
        )
