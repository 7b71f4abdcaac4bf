from __future__ import annotations

from PySide6.QtCore import QPointF

from compositor.core.objects import MIN_FRAME_WIDTH, MIN_IMAGE_SIZE, FrameObject
from compositor.tools.basetool import BaseTool, InteractionMode


class ScaleTool(BaseTool):
    """Bottom-right handle resize.

    Frames keep their aspect ratio; images resize each axis independently.
    """

    mode = InteractionMode.RESIZING

    def __init__(self, canvas, view, start_screen: QPointF, target_id: str):
        super().__init__(canvas, view, start_screen, target_id)
        target = canvas.images.get(target_id) or canvas.frames.get(target_id)
        self.is_frame = isinstance(target, FrameObject)
        self.start_width = target.width
        self.start_height = target.height
        self.start_aspect_ratio = target.aspect_ratio if self.is_frame else 1.0

    def update(self, screen_pos: QPointF) -> None:
        dx, dy = self.canvas_delta(screen_pos)
        if self.is_frame:
            width = max(MIN_FRAME_WIDTH, self.start_width + dx)
            height = width / self.start_aspect_ratio
        else:
            width = max(MIN_IMAGE_SIZE, self.start_width + dx)
            height = max(MIN_IMAGE_SIZE, self.start_height + dy)
        self.canvas.update_geometry(self.target_id, width=width, height=height)
