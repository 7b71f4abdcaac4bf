from __future__ import annotations

import logging

from PySide6.QtCore import QCoreApplication, QObject, QTimer, Signal

from compositor.core.canvas import Canvas
from compositor.core.errors import ValidationError


logger = logging.getLogger(__name__)

NUM_FAVORITE_SLOTS = 4
DEFAULT_CANVAS_NAME = "Default Canvas"
UNTITLED_CANVAS_NAME = "Untitled Canvas"


class CanvasCollection(QObject):
    """Named canvases, the active canvas and the favorite slots.

    Every committed change is written to the state store. When a Qt
    application is running the write is deferred to the event loop so that
    bursts of changes (a drag) produce a single save.
    """

    active_canvas_changed = Signal(object)
    canvases_changed = Signal()
    favorites_changed = Signal()

    def __init__(self, store=None):
        super().__init__()
        self.store = store
        self.canvases: list[Canvas] = []
        self.active_canvas_id: str | None = None
        self.favorite_canvas_ids: list[str | None] = [None] * NUM_FAVORITE_SLOTS
        self._save_scheduled = False
        self._loading = False

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------
    def load(self) -> None:
        self._loading = True
        try:
            self._load_from_store()
        finally:
            self._loading = False
        self._ensure_canvas()
        self.canvases_changed.emit()
        self.active_canvas_changed.emit(self.active_canvas)

    def _load_from_store(self) -> None:
        for canvas in self.canvases:
            self._disconnect_canvas(canvas)
        self.canvases = []
        self.active_canvas_id = None
        self.favorite_canvas_ids = [None] * NUM_FAVORITE_SLOTS
        if self.store is None:
            return

        stored_canvases = self.store.load("canvases") or []
        for entry in stored_canvases:
            try:
                canvas = Canvas.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.error("Skipping unreadable canvas entry: %s", exc)
                continue
            self._add_canvas(canvas)

        active_id = self.store.load("activeCanvasId")
        if self.find(active_id) is not None:
            self.active_canvas_id = active_id
        elif self.canvases:
            self.active_canvas_id = self.canvases[0].id

        favorites = self.store.load("favoriteCanvasIds")
        if isinstance(favorites, list):
            normalized = [fav if self.find(fav) is not None else None for fav in favorites]
            normalized += [None] * NUM_FAVORITE_SLOTS
            self.favorite_canvas_ids = normalized[:NUM_FAVORITE_SLOTS]

    def state(self) -> dict:
        return {
            "canvases": [canvas.to_dict() for canvas in self.canvases],
            "activeCanvasId": self.active_canvas_id,
            "favoriteCanvasIds": list(self.favorite_canvas_ids),
        }

    def save(self) -> None:
        self._save_scheduled = False
        if self.store is None:
            return
        try:
            self.store.save(self.state())
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to persist canvases: %s", exc)

    def request_save(self) -> None:
        if self._loading or self.store is None:
            return
        if QCoreApplication.instance() is None:
            self.save()
            return
        if self._save_scheduled:
            return
        self._save_scheduled = True
        QTimer.singleShot(0, self.save)

    # ------------------------------------------------------------------
    # Canvas lifecycle
    # ------------------------------------------------------------------
    @property
    def active_canvas(self) -> Canvas | None:
        return self.find(self.active_canvas_id)

    def find(self, canvas_id: str | None) -> Canvas | None:
        if canvas_id is None:
            return None
        for canvas in self.canvases:
            if canvas.id == canvas_id:
                return canvas
        return None

    def _add_canvas(self, canvas: Canvas) -> None:
        self.canvases.append(canvas)
        canvas.changed.connect(self.request_save)

    def _disconnect_canvas(self, canvas: Canvas) -> None:
        try:
            canvas.changed.disconnect(self.request_save)
        except (RuntimeError, TypeError):
            pass

    def _ensure_canvas(self) -> None:
        if self.canvases:
            if self.active_canvas is None:
                self.active_canvas_id = self.canvases[0].id
            return
        canvas = Canvas(DEFAULT_CANVAS_NAME)
        self._add_canvas(canvas)
        self.active_canvas_id = canvas.id
        self.request_save()

    def create_canvas(self, name: str | None = None) -> Canvas:
        canvas = Canvas(name or f"Project {len(self.canvases) + 1}")
        self._add_canvas(canvas)
        self.active_canvas_id = canvas.id
        logger.info("Created canvas %s (%s)", canvas.name, canvas.id)
        self.canvases_changed.emit()
        self.active_canvas_changed.emit(canvas)
        self.request_save()
        return canvas

    def select_canvas(self, canvas_id: str) -> Canvas:
        canvas = self.find(canvas_id)
        if canvas is None:
            raise ValidationError("Canvas not found.")
        if canvas_id != self.active_canvas_id:
            self.active_canvas_id = canvas_id
            self.active_canvas_changed.emit(canvas)
            self.request_save()
        return canvas

    def rename_canvas(self, canvas_id: str, name: str) -> None:
        canvas = self.find(canvas_id)
        if canvas is None:
            raise ValidationError("Canvas not found.")
        canvas.name = name.strip() if name and name.strip() else UNTITLED_CANVAS_NAME
        self.canvases_changed.emit()

    def delete_canvas(self, canvas_id: str) -> None:
        canvas = self.find(canvas_id)
        if canvas is None:
            return
        index = self.canvases.index(canvas)
        self._disconnect_canvas(canvas)
        self.canvases.remove(canvas)

        active_changed = False
        if self.active_canvas_id == canvas_id:
            active_changed = True
            if self.canvases:
                self.active_canvas_id = self.canvases[max(0, index - 1)].id
            else:
                self.active_canvas_id = None

        if canvas_id in self.favorite_canvas_ids:
            self.favorite_canvas_ids = [
                None if fav == canvas_id else fav for fav in self.favorite_canvas_ids
            ]
            self.favorites_changed.emit()

        self._ensure_canvas()
        logger.info("Deleted canvas %s", canvas_id)
        self.canvases_changed.emit()
        if active_changed:
            self.active_canvas_changed.emit(self.active_canvas)
        self.request_save()

    # ------------------------------------------------------------------
    # Favorites and search
    # ------------------------------------------------------------------
    def set_favorite(self, slot: int, canvas_id: str) -> None:
        if not 0 <= slot < NUM_FAVORITE_SLOTS:
            raise ValidationError(f"Favorite slot must be between 0 and {NUM_FAVORITE_SLOTS - 1}.")
        if self.find(canvas_id) is None:
            raise ValidationError("Canvas not found.")
        self.favorite_canvas_ids[slot] = canvas_id
        self.favorites_changed.emit()
        self.request_save()

    def clear_favorite(self, slot: int) -> None:
        if 0 <= slot < NUM_FAVORITE_SLOTS:
            self.favorite_canvas_ids[slot] = None
            self.favorites_changed.emit()
            self.request_save()

    def search(self, query: str) -> list[Canvas]:
        if not query or not query.strip():
            return list(self.canvases)
        needle = query.lower()
        return [canvas for canvas in self.canvases if needle in canvas.name.lower()]
