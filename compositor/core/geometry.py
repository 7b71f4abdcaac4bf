from __future__ import annotations

import math

from PySide6.QtCore import QObject, QPointF, QRectF, QSizeF, Signal


MIN_ZOOM = 0.1
MAX_ZOOM = 5.0
DEFAULT_ZOOM = 0.5
WHEEL_ZOOM_FACTOR = 1.1
ZOOM_STEP = 0.1


def clamp_zoom(zoom: float) -> float:
    return max(MIN_ZOOM, min(MAX_ZOOM, float(zoom)))


def point_in_rotated_rect(
    point: QPointF,
    x: float,
    y: float,
    width: float,
    height: float,
    rotation: float = 0.0,
) -> bool:
    """Return ``True`` when *point* lies inside the rectangle rotated about its center.

    The point is moved into the rectangle's local frame (center at the origin,
    axes aligned with its edges) and tested against the half extents.
    """

    cx = x + width / 2.0
    cy = y + height / 2.0
    angle = math.radians(-rotation)

    tx = point.x() - cx
    ty = point.y() - cy
    local_x = tx * math.cos(angle) - ty * math.sin(angle)
    local_y = tx * math.sin(angle) + ty * math.cos(angle)

    half_w = width / 2.0
    half_h = height / 2.0
    return -half_w <= local_x <= half_w and -half_h <= local_y <= half_h


def rotate_point(point: QPointF, center: QPointF, degrees: float) -> QPointF:
    """Rotate *point* clockwise (y axis pointing down) about *center*."""

    angle = math.radians(degrees)
    dx = point.x() - center.x()
    dy = point.y() - center.y()
    return QPointF(
        center.x() + dx * math.cos(angle) - dy * math.sin(angle),
        center.y() + dx * math.sin(angle) + dy * math.cos(angle),
    )


def angle_between(center: QPointF, point: QPointF) -> float:
    """Angle in degrees of the ray from *center* to *point*."""

    return math.degrees(math.atan2(point.y() - center.y(), point.x() - center.x()))


def rects_overlap(a: QRectF, b: QRectF) -> bool:
    """Strict axis-aligned overlap; touching edges do not count."""

    return (
        a.x() < b.x() + b.width()
        and a.x() + a.width() > b.x()
        and a.y() < b.y() + b.height()
        and a.y() + a.height() > b.y()
    )


class ViewTransform(QObject):
    """Screen <-> canvas mapping for the viewport.

    ``pan`` is measured in screen pixels relative to the viewport origin and
    ``zoom`` scales canvas units to screen pixels.
    """

    changed = Signal()
    zoom_changed = Signal(float)

    def __init__(
        self,
        zoom: float = DEFAULT_ZOOM,
        pan: QPointF | None = None,
        viewport_size: QSizeF | None = None,
    ):
        super().__init__()
        self._zoom = clamp_zoom(zoom)
        self._pan = QPointF(pan) if pan is not None else QPointF(0.0, 0.0)
        self.origin = QPointF(0.0, 0.0)
        self.viewport_size = QSizeF(viewport_size) if viewport_size is not None else QSizeF(1000.0, 1000.0)

    @property
    def zoom(self) -> float:
        return self._zoom

    @property
    def pan(self) -> QPointF:
        return QPointF(self._pan)

    def set_transform(self, zoom: float, pan: QPointF) -> None:
        new_zoom = clamp_zoom(zoom)
        zoom_changed = not math.isclose(new_zoom, self._zoom)
        self._zoom = new_zoom
        self._pan = QPointF(pan)
        self.changed.emit()
        if zoom_changed:
            self.zoom_changed.emit(self._zoom)

    def set_viewport_size(self, size: QSizeF) -> None:
        self.viewport_size = QSizeF(size)
        self.changed.emit()

    def reset(self, zoom: float = DEFAULT_ZOOM) -> None:
        self.set_transform(zoom, QPointF(0.0, 0.0))

    # ------------------------------------------------------------------
    # Coordinate mapping
    # ------------------------------------------------------------------
    def to_canvas(self, screen_point: QPointF) -> QPointF:
        return QPointF(
            (screen_point.x() - self.origin.x() - self._pan.x()) / self._zoom,
            (screen_point.y() - self.origin.y() - self._pan.y()) / self._zoom,
        )

    def to_screen(self, canvas_point: QPointF) -> QPointF:
        return QPointF(
            canvas_point.x() * self._zoom + self._pan.x() + self.origin.x(),
            canvas_point.y() * self._zoom + self._pan.y() + self.origin.y(),
        )

    def viewport_center(self) -> QPointF:
        """Screen position of the viewport center."""

        return QPointF(
            self.origin.x() + self.viewport_size.width() / 2.0,
            self.origin.y() + self.viewport_size.height() / 2.0,
        )

    def canvas_center(self) -> QPointF:
        """Canvas point currently shown at the viewport center."""

        return self.to_canvas(self.viewport_center())

    # ------------------------------------------------------------------
    # Zoom and pan
    # ------------------------------------------------------------------
    def zoom_at(self, target_zoom: float, anchor: QPointF) -> None:
        """Zoom to *target_zoom* keeping the canvas point under *anchor* fixed."""

        anchor_canvas = self.to_canvas(anchor)
        new_zoom = clamp_zoom(target_zoom)
        local_x = anchor.x() - self.origin.x()
        local_y = anchor.y() - self.origin.y()
        new_pan = QPointF(
            local_x - anchor_canvas.x() * new_zoom,
            local_y - anchor_canvas.y() * new_zoom,
        )
        self.set_transform(new_zoom, new_pan)

    def wheel_zoom(self, angle_delta: float, anchor: QPointF) -> None:
        if angle_delta > 0:
            target = self._zoom * WHEEL_ZOOM_FACTOR
        else:
            target = self._zoom / WHEEL_ZOOM_FACTOR
        self.zoom_at(target, anchor)

    def change_zoom(self, delta: float) -> None:
        """Additive zoom step anchored at the viewport center."""

        self.zoom_at(self._zoom + delta, self.viewport_center())

    def zoom_in(self) -> None:
        self.change_zoom(ZOOM_STEP)

    def zoom_out(self) -> None:
        self.change_zoom(-ZOOM_STEP)

    def pan_by(self, dx: float, dy: float) -> None:
        """Accumulate raw screen pixels; pan is not scaled by zoom."""

        self._pan = QPointF(self._pan.x() + dx, self._pan.y() + dy)
        self.changed.emit()
