import asyncio

import pytest
from PySide6.QtGui import QColor

from compositor.core.capture import (
    FRAME_BACKGROUND_COLOR,
    ImageLoader,
    LoadedImages,
    capture_frame,
    capture_object,
    capture_source,
    decode_image_bytes,
    encode_data_uri,
    images_in_frame,
    sniff_mime_type,
)
from compositor.core.errors import CaptureError
from compositor.core.objects import FrameObject, ImageObject


RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)


def image(src, x, y, w, h, z, rotation=0.0, object_id=None):
    return ImageObject(
        id=object_id or f"img-{z}", src=src, x=x, y=y, width=w, height=h, rotation=rotation, z_index=z
    )


def frame(x, y, w, h):
    return FrameObject(id="frame", src="", x=x, y=y, width=w, height=h, aspect_ratio=w / h)


def rgb(qimage, x, y):
    color = qimage.pixelColor(x, y)
    return color.red(), color.green(), color.blue()


def test_frame_selects_overlapping_images_only(make_data_uri):
    a = image(make_data_uri(4, 4), 50, 50, 100, 100, 1, object_id="A")
    b = image(make_data_uri(4, 4), 200, 200, 50, 50, 2, object_id="B")

    selected = images_in_frame(frame(0, 0, 100, 100), [b, a])

    assert [obj.id for obj in selected] == ["A"]


def test_frame_selection_is_ordered_by_z(make_data_uri):
    src = make_data_uri(4, 4)
    top = image(src, 0, 0, 10, 10, 9, object_id="top")
    bottom = image(src, 5, 5, 10, 10, 3, object_id="bottom")
    assert [obj.id for obj in images_in_frame(frame(0, 0, 50, 50), [top, bottom])] == ["bottom", "top"]


def test_frame_overlap_ignores_rotation(make_data_uri):
    # Rotated 90 degrees this bar reaches into the frame, but its bounding box only touches it.
    rotated = image(make_data_uri(4, 4), 100, 0, 20, 100, 1, rotation=90)
    assert images_in_frame(frame(0, 0, 100, 100), [rotated]) == []


def test_capture_frame_composites_in_z_order(qapp, make_data_uri):
    loader = ImageLoader()
    a = image(make_data_uri(8, 8, RED), 50, 50, 100, 100, 1)
    b = image(make_data_uri(8, 8, BLUE), 200, 200, 50, 50, 2)
    green_on_top = image(make_data_uri(8, 8, GREEN), 70, 70, 20, 20, 5)

    captured = capture_frame(frame(0, 0, 100, 100), [green_on_top, a, b], loader)

    assert (captured.width, captured.height) == (100, 100)
    background = FRAME_BACKGROUND_COLOR
    assert rgb(captured.image, 10, 10) == (background.red(), background.green(), background.blue())
    assert rgb(captured.image, 60, 60) == (255, 0, 0)
    assert rgb(captured.image, 80, 80) == (0, 255, 0)


def test_capture_frame_aborts_when_a_source_fails(qapp, make_data_uri, tmp_path):
    good = image(make_data_uri(4, 4), 0, 0, 10, 10, 1)
    bad = image(str(tmp_path / "missing.png"), 0, 0, 10, 10, 2)
    with pytest.raises(CaptureError):
        capture_frame(frame(0, 0, 50, 50), [good, bad], ImageLoader())


def test_capture_object_rounds_size(qapp, make_data_uri):
    obj = image(make_data_uri(10, 5, BLUE), 0, 0, 100.4, 49.6, 1, rotation=30)
    captured = capture_object(obj, ImageLoader())
    assert (captured.width, captured.height) == (100, 50)
    assert rgb(captured.image, 50, 25) == (0, 0, 255)


def test_capture_object_bakes_rotation(qapp, make_data_uri):
    obj = image(make_data_uri(8, 8, RED), 0, 0, 100, 50, 1, rotation=90)
    captured = capture_object(obj, ImageLoader())
    # Turned upright, the 100x50 image covers only the middle 50 columns.
    assert captured.image.pixelColor(10, 25).alpha() == 0
    assert rgb(captured.image, 50, 10) == (255, 0, 0)


def test_capture_source_keeps_object_size(qapp, make_data_uri):
    obj = image(make_data_uri(40, 20), 0, 0, 300.2, 150.7, 1, rotation=45)
    captured = capture_source(obj, ImageLoader())
    assert (captured.width, captured.height) == (300, 151)
    assert captured.image.width() == 40


def test_loader_reads_files(qapp, make_png, tmp_path):
    path = tmp_path / "tile.png"
    path.write_bytes(make_png(3, 7))
    loaded = ImageLoader().load(str(path))
    assert (loaded.width(), loaded.height()) == (3, 7)


def test_loader_rejects_empty_and_bad_sources():
    loader = ImageLoader()
    with pytest.raises(CaptureError):
        loader.read_bytes("")
    with pytest.raises(CaptureError):
        loader.read_bytes("data:image/png,notbase64")


def test_decode_rejects_garbage():
    with pytest.raises(CaptureError):
        decode_image_bytes(b"definitely not an image")


def test_data_uri_helpers(make_png):
    data = make_png(2, 2)
    assert sniff_mime_type(data) == "image/png"
    assert encode_data_uri(data).startswith("data:image/png;base64,")
    assert sniff_mime_type(b"junk") == "application/octet-stream"


def test_png_round_trip_through_capture(qapp, make_data_uri):
    obj = image(make_data_uri(6, 6, GREEN), 0, 0, 6, 6, 1)
    captured = capture_object(obj, ImageLoader())
    decoded = decode_image_bytes(captured.to_png_bytes())
    assert rgb(decoded, 3, 3) == (0, 255, 0)
    assert captured.to_data_uri().startswith("data:image/png;base64,")


def test_save_writes_png(qapp, make_data_uri, tmp_path):
    obj = image(make_data_uri(6, 6), 0, 0, 6, 6, 1)
    path = tmp_path / "out.png"
    capture_object(obj, ImageLoader()).save(path)
    assert path.read_bytes().startswith(b"\x89PNG")


def test_load_many_decodes_each_source_once(qapp, make_data_uri):
    uri = make_data_uri(6, 4)
    reads = []

    class CountingLoader(ImageLoader):
        def read_bytes(self, src):
            reads.append(src)
            return super().read_bytes(src)

    loaded = asyncio.run(CountingLoader().load_many([uri, uri]))

    assert reads == [uri]
    assert loaded.load(uri).size().width() == 6


def test_capture_frame_from_loaded_images(qapp, make_data_uri):
    red = make_data_uri(10, 10, RED)
    selected = [image(red, 0, 0, 10, 10, 1)]
    loaded = asyncio.run(ImageLoader().load_many(obj.src for obj in selected))

    captured = capture_frame(frame(0, 0, 20, 20), selected, loaded)

    assert rgb(captured.image, 5, 5) == (255, 0, 0)
    assert rgb(captured.image, 15, 15) == (16, 16, 16)


def test_loaded_images_reject_unknown_source():
    with pytest.raises(CaptureError, match="Could not load image"):
        LoadedImages({}).load("missing.png")
