import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import base64
import io

import pytest
from PIL import Image
from PySide6.QtWidgets import QApplication


@pytest.fixture
def qapp():
    """
    Creates a new QApplication for each test function, ensuring a clean environment.
    """
    app = QApplication.instance()
    if app is None:
        app = QApplication(sys.argv)
    yield app
    app.quit()


@pytest.fixture
def make_png():
    """Factory for solid-color PNG bytes."""

    def _make(width, height, color=(255, 0, 0, 255)):
        buffer = io.BytesIO()
        Image.new("RGBA", (width, height), color).save(buffer, "PNG")
        return buffer.getvalue()

    return _make


@pytest.fixture
def make_data_uri(make_png):
    def _make(width, height, color=(255, 0, 0, 255)):
        encoded = base64.b64encode(make_png(width, height, color)).decode("ascii")
        return f"data:image/png;base64,{encoded}"

    return _make
