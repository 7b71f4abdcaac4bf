from __future__ import annotations

import logging
from typing import Iterable

from PySide6.QtCore import QObject, QRectF, Signal

from compositor.core.errors import ValidationError
from compositor.core.geometry import point_in_rotated_rect
from compositor.core.objects import (
    FrameObject,
    ImageObject,
    ObjectKind,
    PromptNode,
    Z_INDEX_BASE,
    new_object_id,
    prompt_node_geometry,
)


logger = logging.getLogger(__name__)


class Canvas(QObject):
    """A named workspace holding images, frames and prompt nodes.

    Each kind lives in its own collection with its own z-index band. Prompt
    nodes reference their parent by id; removing a parent removes its node.
    """

    changed = Signal()
    objects_removed = Signal(list)

    def __init__(self, name: str, canvas_id: str | None = None):
        super().__init__()
        self.id = canvas_id or new_object_id()
        self._name = name
        self.images: dict[str, ImageObject] = {}
        self.frames: dict[str, FrameObject] = {}
        self.prompt_nodes: dict[str, PromptNode] = {}

    @property
    def name(self) -> str:
        return self._name

    @name.setter
    def name(self, value: str) -> None:
        if value != self._name:
            self._name = value
            self.changed.emit()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def _band(self, kind: ObjectKind) -> dict:
        if kind is ObjectKind.IMAGE:
            return self.images
        if kind is ObjectKind.FRAME:
            return self.frames
        return self.prompt_nodes

    def kind_of(self, object_id: str) -> ObjectKind | None:
        for kind in ObjectKind:
            if object_id in self._band(kind):
                return kind
        return None

    def get(self, object_id: str) -> ImageObject | FrameObject | PromptNode | None:
        return (
            self.images.get(object_id)
            or self.frames.get(object_id)
            or self.prompt_nodes.get(object_id)
        )

    def parent_of(self, node: PromptNode) -> ImageObject | FrameObject | None:
        return self.images.get(node.attached_to_id) or self.frames.get(node.attached_to_id)

    def prompt_node_for(self, parent_id: str) -> PromptNode | None:
        for node in self.prompt_nodes.values():
            if node.attached_to_id == parent_id:
                return node
        return None

    def prompt_node_rect(self, node: PromptNode) -> QRectF | None:
        """Current geometry of *node*, derived from its live parent."""

        parent = self.parent_of(node)
        if parent is None:
            return None
        return prompt_node_geometry(parent, node.width)

    def is_empty(self) -> bool:
        return not (self.images or self.frames or self.prompt_nodes)

    # ------------------------------------------------------------------
    # Z-order bands
    # ------------------------------------------------------------------
    def max_z(self, kind: ObjectKind) -> int:
        band = self._band(kind)
        if not band:
            return Z_INDEX_BASE[kind] - 1
        return max(obj.z_index for obj in band.values())

    def next_z(self, kind: ObjectKind) -> int:
        return self.max_z(kind) + 1

    def bring_to_front(self, object_id: str) -> None:
        """Promote *object_id* above its band, and its prompt node above the node band."""

        kind = self.kind_of(object_id)
        if kind is None:
            return
        target = self._band(kind)[object_id]
        target.z_index = self.next_z(kind)
        if kind is not ObjectKind.PROMPT_NODE:
            node = self.prompt_node_for(object_id)
            if node is not None:
                node.z_index = self.next_z(ObjectKind.PROMPT_NODE)
        self.changed.emit()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def add_image(
        self,
        src: str,
        x: float,
        y: float,
        width: float,
        height: float,
        *,
        rotation: float = 0.0,
        is_ai_result: bool = False,
        z_index: int | None = None,
    ) -> ImageObject:
        image = ImageObject(
            id=new_object_id(),
            src=src,
            x=x,
            y=y,
            width=width,
            height=height,
            rotation=rotation,
            z_index=self.next_z(ObjectKind.IMAGE) if z_index is None else z_index,
            is_ai_result=is_ai_result,
        )
        self.images[image.id] = image
        self.changed.emit()
        return image

    def add_frame(self, x: float, y: float, width: float, aspect_ratio: float) -> FrameObject:
        if aspect_ratio <= 0:
            raise ValidationError("Invalid aspect ratio provided.")
        frame = FrameObject(
            id=new_object_id(),
            src="",
            x=x,
            y=y,
            width=width,
            height=width / aspect_ratio,
            z_index=self.next_z(ObjectKind.FRAME),
            aspect_ratio=aspect_ratio,
        )
        self.frames[frame.id] = frame
        self.changed.emit()
        return frame

    def add_prompt_node(self, parent_id: str, prompt: str = "") -> PromptNode:
        if parent_id not in self.images and parent_id not in self.frames:
            raise ValidationError("Could not find parent object.")
        if self.prompt_node_for(parent_id) is not None:
            raise ValidationError("This object already has a prompt node.")
        node = PromptNode(
            id=new_object_id(),
            attached_to_id=parent_id,
            z_index=self.next_z(ObjectKind.PROMPT_NODE),
            prompt=prompt,
        )
        self.prompt_nodes[node.id] = node
        self.changed.emit()
        return node

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def set_prompt(self, node_id: str, prompt: str) -> None:
        node = self.prompt_nodes.get(node_id)
        if node is None:
            raise ValidationError("Prompt node not found.")
        node.prompt = prompt
        self.changed.emit()

    def update_geometry(self, object_id: str, **values: float) -> None:
        """Write absolute geometry values to an image or frame.

        Frames keep ``height == width / aspect_ratio`` and never rotate.
        """

        target = self.images.get(object_id) or self.frames.get(object_id)
        if target is None:
            return
        for attribute in ("x", "y", "width", "height", "rotation"):
            if attribute in values:
                setattr(target, attribute, float(values[attribute]))
        if isinstance(target, FrameObject):
            target.rotation = 0.0
            target.height = target.width / target.aspect_ratio
        self.changed.emit()

    def move_many(self, positions: dict[str, tuple[float, float]]) -> None:
        for object_id, (x, y) in positions.items():
            target = self.images.get(object_id) or self.frames.get(object_id)
            if target is None:
                continue
            target.x = x
            target.y = y
        self.changed.emit()

    def remove_prompt_node_for(self, parent_id: str) -> str | None:
        node = self.prompt_node_for(parent_id)
        if node is None:
            return None
        del self.prompt_nodes[node.id]
        self.objects_removed.emit([node.id])
        self.changed.emit()
        return node.id

    def delete(self, object_ids: Iterable[str]) -> list[str]:
        """Delete objects of any kind; prompt nodes of deleted parents go too."""

        removed: list[str] = []
        for object_id in list(object_ids):
            kind = self.kind_of(object_id)
            if kind is None:
                continue
            del self._band(kind)[object_id]
            removed.append(object_id)
            if kind is not ObjectKind.PROMPT_NODE:
                node = self.prompt_node_for(object_id)
                if node is not None:
                    del self.prompt_nodes[node.id]
                    removed.append(node.id)
        if removed:
            self.objects_removed.emit(removed)
            self.changed.emit()
        return removed

    def clear(self) -> None:
        removed = list(self.images) + list(self.frames) + list(self.prompt_nodes)
        self.images.clear()
        self.frames.clear()
        self.prompt_nodes.clear()
        if removed:
            self.objects_removed.emit(removed)
        self.changed.emit()

    # ------------------------------------------------------------------
    # Spatial queries
    # ------------------------------------------------------------------
    def images_at(self, point) -> list[ImageObject]:
        """Images under *point* (rotation aware), topmost first."""

        hits = [
            image
            for image in self.images.values()
            if point_in_rotated_rect(point, image.x, image.y, image.width, image.height, image.rotation)
        ]
        return sorted(hits, key=lambda image: image.z_index, reverse=True)

    def frames_at(self, point) -> list[FrameObject]:
        hits = [frame for frame in self.frames.values() if frame.rect().contains(point)]
        return sorted(hits, key=lambda frame: frame.z_index, reverse=True)

    def prompt_nodes_at(self, point) -> list[PromptNode]:
        hits = []
        for node in self.prompt_nodes.values():
            rect = self.prompt_node_rect(node)
            if rect is not None and rect.contains(point):
                hits.append(node)
        return sorted(hits, key=lambda node: node.z_index, reverse=True)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "objects": [image.to_dict() for image in self.images.values()],
            "frames": [frame.to_dict() for frame in self.frames.values()],
            "promptNodes": [node.to_dict() for node in self.prompt_nodes.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Canvas":
        canvas = cls(str(data.get("name") or "Untitled Canvas"), canvas_id=str(data["id"]))
        for entry in data.get("objects", []):
            image = ImageObject.from_dict(entry)
            canvas.images[image.id] = image
        for entry in data.get("frames", []):
            frame = FrameObject.from_dict(entry)
            canvas.frames[frame.id] = frame
        for entry in data.get("promptNodes", []):
            node = PromptNode.from_dict(entry)
            if canvas.parent_of(node) is None:
                logger.warning("Dropping orphaned prompt node %s in canvas %s", node.id, canvas.id)
                continue
            if canvas.prompt_node_for(node.attached_to_id) is not None:
                logger.warning("Dropping duplicate prompt node %s in canvas %s", node.id, canvas.id)
                continue
            canvas.prompt_nodes[node.id] = node
        return canvas
