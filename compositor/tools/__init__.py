"""Interaction sessions driven by pointer gestures."""

from .basetool import BaseTool, Handle, InteractionMode
from .movetool import MoveTool
from .pantool import PanTool
from .rotatetool import RotateTool
from .scaletool import ScaleTool

__all__ = [
    "BaseTool",
    "Handle",
    "InteractionMode",
    "MoveTool",
    "PanTool",
    "RotateTool",
    "ScaleTool",
]
