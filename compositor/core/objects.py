from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from PySide6.QtCore import QPointF, QRectF

from compositor.core.errors import ValidationError


PROMPT_NODE_WIDTH = 48.0
PROMPT_NODE_HEIGHT = 180.0
PROMPT_NODE_MARGIN = 8.0

MIN_FRAME_WIDTH = 50.0
MIN_IMAGE_SIZE = 20.0

_ASPECT_RATIO_PATTERN = re.compile(r"^\d+(\.\d+)?\s*:\s*\d+(\.\d+)?$")


class ObjectKind(str, Enum):
    IMAGE = "image"
    FRAME = "frame"
    PROMPT_NODE = "prompt_node"


# Draw layering offsets; ordering only ever compares z-indices inside one band.
Z_INDEX_BASE = {
    ObjectKind.IMAGE: 0,
    ObjectKind.FRAME: 10000,
    ObjectKind.PROMPT_NODE: 20000,
}


def new_object_id() -> str:
    return str(uuid.uuid4())


def _positive(data: dict, key: str) -> float:
    value = float(data[key])
    if not value > 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


@dataclass
class ImageObject:
    id: str
    src: str
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0.0
    z_index: int = 0
    is_ai_result: bool = False

    kind: ClassVar[ObjectKind] = ObjectKind.IMAGE

    def rect(self) -> QRectF:
        """Axis-aligned bounds, ignoring rotation."""
        return QRectF(self.x, self.y, self.width, self.height)

    def center(self) -> QPointF:
        return QPointF(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "src": self.src,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "rotation": self.rotation,
            "zIndex": self.z_index,
        }
        if self.is_ai_result:
            data["isAiResult"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ImageObject":
        return cls(
            id=str(data["id"]),
            src=str(data.get("src", "")),
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=_positive(data, "width"),
            height=_positive(data, "height"),
            rotation=float(data.get("rotation", 0.0)),
            z_index=int(data.get("zIndex", 0)),
            is_ai_result=bool(data.get("isAiResult", False)),
        )


@dataclass
class FrameObject(ImageObject):
    """Aspect-locked capture region; rotation is never applied to frames."""

    aspect_ratio: float = 1.0

    kind: ClassVar[ObjectKind] = ObjectKind.FRAME

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["aspectRatio"] = self.aspect_ratio
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "FrameObject":
        aspect_ratio = float(data.get("aspectRatio", 0.0))
        width = _positive(data, "width")
        if aspect_ratio <= 0:
            aspect_ratio = width / _positive(data, "height")
        return cls(
            id=str(data["id"]),
            src="",
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=width,
            height=width / aspect_ratio,
            rotation=0.0,
            z_index=int(data.get("zIndex", Z_INDEX_BASE[ObjectKind.FRAME])),
            aspect_ratio=aspect_ratio,
        )


@dataclass
class PromptNode:
    """Edit instructions bound to exactly one image or frame.

    Position and height are not stored; see :func:`prompt_node_geometry`.
    """

    id: str
    attached_to_id: str
    z_index: int = 0
    prompt: str = ""
    width: float = field(default=PROMPT_NODE_WIDTH)

    kind: ClassVar[ObjectKind] = ObjectKind.PROMPT_NODE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "attachedToId": self.attached_to_id,
            "width": self.width,
            "zIndex": self.z_index,
            "prompt": self.prompt,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PromptNode":
        return cls(
            id=str(data["id"]),
            attached_to_id=str(data["attachedToId"]),
            z_index=int(data.get("zIndex", Z_INDEX_BASE[ObjectKind.PROMPT_NODE])),
            prompt=str(data.get("prompt", "")),
            width=float(data.get("width", PROMPT_NODE_WIDTH)),
        )


def prompt_node_geometry(parent: ImageObject, node_width: float = PROMPT_NODE_WIDTH) -> QRectF:
    """Rectangle of a prompt node attached to *parent*.

    The node sits left of the parent, vertically offset by the nominal node
    height, and stretches to the parent's current height.
    """

    return QRectF(
        parent.x - node_width - PROMPT_NODE_MARGIN,
        parent.y + parent.height / 2.0 - PROMPT_NODE_HEIGHT / 2.0,
        node_width,
        parent.height,
    )


def parse_aspect_ratio(text: str) -> float:
    """Parse ``"width:height"`` (e.g. ``"4:3"`` or ``"1.91:1"``) into a ratio."""

    if not isinstance(text, str) or not _ASPECT_RATIO_PATTERN.match(text.strip()):
        raise ValidationError(
            'Invalid aspect ratio format. Please use "width:height", e.g., "4:3" or "1.91:1".'
        )
    width_text, height_text = re.sub(r"\s", "", text).split(":")
    width = float(width_text)
    height = float(height_text)
    if height == 0:
        raise ValidationError("Aspect ratio height cannot be zero.")
    ratio = width / height
    if ratio <= 0:
        raise ValidationError("Invalid aspect ratio provided.")
    return ratio
