from __future__ import annotations

from PySide6.QtCore import QPointF

from compositor.tools.basetool import BaseTool, InteractionMode


class MoveTool(BaseTool):
    """Translates a group of images, or a single frame, by the pointer delta.

    Prompt nodes attached to moved objects are tracked for repainting only;
    their geometry follows the parent through derivation.
    """

    mode = InteractionMode.MOVING

    def __init__(self, canvas, view, start_screen: QPointF, target_id: str, moved_ids):
        super().__init__(canvas, view, start_screen, target_id)
        self.start_positions: dict[str, tuple[float, float]] = {}
        for object_id in moved_ids:
            obj = canvas.images.get(object_id) or canvas.frames.get(object_id)
            if obj is not None:
                self.start_positions[object_id] = (obj.x, obj.y)
        self.attached_node_ids: set[str] = set()
        for object_id in self.start_positions:
            node = canvas.prompt_node_for(object_id)
            if node is not None:
                self.attached_node_ids.add(node.id)

    def affected_ids(self) -> set[str]:
        return set(self.start_positions) | self.attached_node_ids

    def update(self, screen_pos: QPointF) -> None:
        if not self.start_positions:
            return
        dx, dy = self.canvas_delta(screen_pos)
        self.canvas.move_many(
            {
                object_id: (start_x + dx, start_y + dy)
                for object_id, (start_x, start_y) in self.start_positions.items()
            }
        )
