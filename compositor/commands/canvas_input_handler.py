from __future__ import annotations

from PySide6.QtCore import QPointF, QSizeF, Qt
from PySide6.QtGui import QWheelEvent


class CanvasInputHandler:
    """Translates viewport widget events into interaction controller calls."""

    def __init__(self, app):
        self.app = app
        self.space_held = False

    @property
    def interaction(self):
        return self.app.interaction

    @property
    def view(self):
        return self.app.view

    def keyPressEvent(self, event):
        if event.key() == Qt.Key_Space:
            self.space_held = True
        elif event.key() in (Qt.Key_Delete, Qt.Key_Backspace):
            if self.interaction.selection:
                self.app.delete_selected()

    def keyReleaseEvent(self, event):
        if event.key() == Qt.Key_Space:
            self.space_held = False

    def mousePressEvent(self, event):
        pos = QPointF(event.position())
        button = event.button()
        if button == Qt.LeftButton:
            toggle = bool(event.modifiers() & Qt.ShiftModifier)
            self.interaction.press(pos, toggle=toggle, pan=self.space_held)
        elif button in (Qt.RightButton, Qt.MiddleButton):
            # Secondary buttons only pan, and only from empty background.
            if self.interaction.handle_at(pos) is None and self.interaction.object_at(pos) is None:
                self.interaction.background_pointer_down(pos, pan=True)

    def mouseMoveEvent(self, event):
        self.interaction.pointer_move(QPointF(event.position()))

    def mouseReleaseEvent(self, event):
        self.interaction.pointer_up()

    def wheelEvent(self, event: QWheelEvent):
        delta = event.angleDelta().y()
        if delta == 0:
            return
        self.view.wheel_zoom(delta, QPointF(event.position()))

    def resizeEvent(self, event):
        size = event.size()
        self.view.set_viewport_size(QSizeF(size.width(), size.height()))
