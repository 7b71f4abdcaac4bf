"""Rasterizes canvas content into pixel buffers for submission or export."""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import os
from dataclasses import dataclass

import requests
from PIL import Image, ImageQt, UnidentifiedImageError
from PySide6.QtCore import QBuffer, QIODevice, QRectF, Qt
from PySide6.QtGui import QColor, QImage, QPainter

from compositor.core.errors import CaptureError
from compositor.core.geometry import rects_overlap
from compositor.core.objects import FrameObject, ImageObject


logger = logging.getLogger(__name__)

FRAME_BACKGROUND_COLOR = QColor("#101010")
REMOTE_FETCH_TIMEOUT = 30.0


@dataclass
class CapturedImage:
    image: QImage
    width: int
    height: int

    def to_png_bytes(self) -> bytes:
        return qimage_to_png_bytes(self.image)

    def to_data_uri(self) -> str:
        return encode_data_uri(self.to_png_bytes(), "image/png")

    def save(self, path: str | os.PathLike) -> None:
        if not self.image.save(os.fspath(path), "PNG"):
            raise CaptureError(f"Could not write capture to {path}")


def qimage_to_png_bytes(image: QImage) -> bytes:
    buffer = QBuffer()
    buffer.open(QIODevice.OpenModeFlag.WriteOnly)
    image.save(buffer, "PNG")
    data = bytes(buffer.data())
    buffer.close()
    return data


def encode_data_uri(data: bytes, mime_type: str | None = None) -> str:
    if mime_type is None:
        mime_type = sniff_mime_type(data)
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def sniff_mime_type(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format, "image/png")
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


def decode_image_bytes(data: bytes) -> QImage:
    """Decode encoded image bytes (any Pillow format) into an ARGB ``QImage``."""

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            qimage = ImageQt.toqimage(img.convert("RGBA"))
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise CaptureError(f"Could not decode image data: {exc}") from exc
    return qimage.convertToFormat(QImage.Format_ARGB32)


class ImageLoader:
    """Resolves an object's ``src`` reference into decoded pixels.

    Supported references are ``data:`` URIs, ``http(s)`` URLs and local file
    paths. Every failure is reported as :class:`CaptureError`.
    """

    def __init__(self, session: requests.Session | None = None):
        self.session = session

    def read_bytes(self, src: str) -> bytes:
        if not src:
            raise CaptureError("Image source is empty.")
        if src.startswith("data:"):
            header, _, payload = src.partition(",")
            if not payload or ";base64" not in header:
                raise CaptureError(f"Could not load image: {src[:50]}...")
            try:
                return base64.b64decode(payload, validate=False)
            except ValueError as exc:
                raise CaptureError(f"Could not load image: {src[:50]}...") from exc
        if src.startswith(("http://", "https://")):
            http = self.session or requests
            try:
                response = http.get(src, timeout=REMOTE_FETCH_TIMEOUT)
                response.raise_for_status()
            except requests.RequestException as exc:
                raise CaptureError(f"Could not load image: {src[:50]}...") from exc
            return response.content
        try:
            with open(src, "rb") as handle:
                return handle.read()
        except OSError as exc:
            raise CaptureError(f"Could not load image: {src[:50]}...") from exc

    def load(self, src: str) -> QImage:
        return decode_image_bytes(self.read_bytes(src))

    async def load_many(self, sources) -> "LoadedImages":
        """Fetch and decode *sources* in worker threads, once per distinct reference."""

        images = {}
        for src in dict.fromkeys(sources):
            images[src] = await asyncio.to_thread(self.load, src)
        return LoadedImages(images)


class LoadedImages:
    """Already decoded sources, served through the same ``load`` call as :class:`ImageLoader`."""

    def __init__(self, images: dict[str, QImage]):
        self.images = images

    def load(self, src: str) -> QImage:
        try:
            return self.images[src]
        except KeyError:
            raise CaptureError(f"Could not load image: {src[:50]}...") from None


def _begin_painter(image: QImage) -> QPainter:
    painter = QPainter(image)
    if not painter.isActive():
        raise CaptureError("Failed to create a drawing context for capture.")
    painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform, True)
    painter.setRenderHint(QPainter.RenderHint.Antialiasing, True)
    return painter


def _new_buffer(width: float, height: float) -> QImage:
    image = QImage(max(1, round(width)), max(1, round(height)), QImage.Format_ARGB32)
    if image.isNull():
        raise CaptureError("Failed to allocate a capture buffer.")
    return image


def capture_object(obj: ImageObject, loader: ImageLoader) -> CapturedImage:
    """Render a single image at its own size with its rotation baked in."""

    buffer = _new_buffer(obj.width, obj.height)
    buffer.fill(Qt.transparent)
    width, height = buffer.width(), buffer.height()

    source = loader.load(obj.src)

    painter = _begin_painter(buffer)
    try:
        painter.save()
        painter.translate(width / 2.0, height / 2.0)
        painter.rotate(obj.rotation)
        painter.drawImage(QRectF(-width / 2.0, -height / 2.0, width, height), source)
        painter.restore()
    finally:
        painter.end()
    return CapturedImage(buffer, width, height)


def images_in_frame(frame: FrameObject, images) -> list[ImageObject]:
    """Images whose bounding boxes overlap the frame, lowest z-index first."""

    frame_rect = frame.rect()
    selected = [obj for obj in images if rects_overlap(obj.rect(), frame_rect)]
    return sorted(selected, key=lambda obj: obj.z_index)


def capture_frame(frame: FrameObject, images, loader: ImageLoader) -> CapturedImage:
    """Composite every image overlapping *frame* onto the frame background.

    All sources are loaded before anything is drawn; a single failure aborts
    the whole capture.
    """

    buffer = _new_buffer(frame.width, frame.height)
    buffer.fill(FRAME_BACKGROUND_COLOR)

    selected = images_in_frame(frame, images)
    sources = [loader.load(obj.src) for obj in selected]

    painter = _begin_painter(buffer)
    try:
        for obj, source in zip(selected, sources):
            relative_x = obj.x - frame.x
            relative_y = obj.y - frame.y
            painter.save()
            painter.translate(relative_x + obj.width / 2.0, relative_y + obj.height / 2.0)
            painter.rotate(obj.rotation)
            painter.drawImage(QRectF(-obj.width / 2.0, -obj.height / 2.0, obj.width, obj.height), source)
            painter.restore()
    finally:
        painter.end()
    logger.debug("Captured frame %s with %d image(s)", frame.id, len(selected))
    return CapturedImage(buffer, buffer.width(), buffer.height())


def capture_source(obj: ImageObject, loader: ImageLoader) -> CapturedImage:
    """The object's source pixels, unrotated, tagged with the object's size."""

    source = loader.load(obj.src)
    return CapturedImage(source, max(1, round(obj.width)), max(1, round(obj.height)))
