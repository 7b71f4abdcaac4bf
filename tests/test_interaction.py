import pytest
from PySide6.QtCore import QPointF

from compositor.core.canvas import Canvas
from compositor.core.geometry import ViewTransform
from compositor.core.interaction import InteractionController
from compositor.tools import Handle, InteractionMode


@pytest.fixture
def canvas():
    return Canvas("Interaction")


@pytest.fixture
def view():
    return ViewTransform(zoom=1.0)


@pytest.fixture
def controller(view, canvas):
    return InteractionController(view, canvas)


def drag(controller, target_id, start, end, handle=Handle.BODY, toggle=False):
    controller.pointer_down(target_id, start, handle, toggle=toggle)
    controller.pointer_move(end)
    controller.pointer_up()


def test_pointer_down_selects_and_starts_move(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 50, 50)

    assert controller.pointer_down(image.id, QPointF(10, 10))
    assert controller.selection == [image.id]
    assert controller.mode is InteractionMode.MOVING

    controller.pointer_up()
    assert controller.mode is InteractionMode.IDLE
    assert controller.session is None


def test_unknown_target_is_noop(controller):
    assert not controller.pointer_down("missing", QPointF(0, 0))
    assert controller.session is None
    assert controller.selection == []


def test_shift_toggles_membership(controller, canvas):
    a = canvas.add_image("a.png", 0, 0, 50, 50)
    b = canvas.add_image("b.png", 100, 0, 50, 50)

    drag(controller, a.id, QPointF(0, 0), QPointF(0, 0))
    drag(controller, b.id, QPointF(0, 0), QPointF(0, 0), toggle=True)
    assert controller.selection == [a.id, b.id]

    drag(controller, a.id, QPointF(0, 0), QPointF(0, 0), toggle=True)
    assert controller.selection == [b.id]


def test_group_move_preserves_relative_offsets(canvas):
    view = ViewTransform(zoom=2.0)
    controller = InteractionController(view, canvas)
    a = canvas.add_image("a.png", 0, 0, 50, 50)
    b = canvas.add_image("b.png", 100, 40, 50, 50)
    c = canvas.add_image("c.png", -70, 300, 50, 50)
    controller.set_selection([a.id, b.id, c.id])
    offsets_before = [(b.x - a.x, b.y - a.y), (c.x - a.x, c.y - a.y)]

    controller.pointer_down(a.id, QPointF(10, 10))
    controller.pointer_move(QPointF(30, 20))
    controller.pointer_move(QPointF(50, 30))
    controller.pointer_up()

    # Screen delta (40, 20) at zoom 2 is (20, 10) in canvas units.
    assert (a.x, a.y) == (20, 10)
    assert (b.x, b.y) == (120, 50)
    assert (c.x, c.y) == (-50, 310)
    assert [(b.x - a.x, b.y - a.y), (c.x - a.x, c.y - a.y)] == offsets_before


def test_frame_moves_alone(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 50, 50)
    frame = canvas.add_frame(200, 200, 100, 1.0)
    controller.set_selection([image.id])

    drag(controller, frame.id, QPointF(0, 0), QPointF(15, 25), toggle=True)

    assert (frame.x, frame.y) == (215, 225)
    assert (image.x, image.y) == (0, 0)


def test_attached_node_follows_parent(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 100, 100)
    node = canvas.add_prompt_node(image.id)

    controller.pointer_down(image.id, QPointF(0, 0))
    controller.pointer_move(QPointF(40, 60))
    assert node.id in controller.session.affected_ids()
    rect = canvas.prompt_node_rect(node)
    controller.pointer_up()

    assert rect.x() == image.x - node.width - 8
    assert rect.y() == image.y + image.height / 2 - 90


def test_prompt_node_is_never_dragged(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 100, 100)
    node = canvas.add_prompt_node(image.id)
    other = canvas.add_image("b.png", 0, 0, 10, 10)
    canvas.add_prompt_node(other.id)
    rect_before = canvas.prompt_node_rect(node)
    z_before = node.z_index
    controller.set_selection([image.id, other.id])

    started = controller.pointer_down(node.id, QPointF(0, 0))
    controller.pointer_move(QPointF(100, 100))
    controller.pointer_up()

    assert not started
    assert controller.selection == [node.id]
    assert node.z_index > z_before
    assert canvas.prompt_node_rect(node) == rect_before
    assert (image.x, image.y) == (0, 0)


def test_frame_resize_keeps_aspect_ratio(controller, canvas):
    frame = canvas.add_frame(0, 0, 160, 16 / 9)

    controller.pointer_down(frame.id, QPointF(160, 90), Handle.RESIZE)
    for dx in (30, -75, 400, -1000, 12.5):
        controller.pointer_move(QPointF(160 + dx, 90 + dx * 3))
        assert frame.height == pytest.approx(frame.width / frame.aspect_ratio)
    controller.pointer_up()

    assert frame.width == pytest.approx(172.5)


def test_frame_resize_clamps_to_minimum(controller, canvas):
    frame = canvas.add_frame(0, 0, 100, 2.0)
    drag(controller, frame.id, QPointF(100, 50), QPointF(-500, 50), handle=Handle.RESIZE)
    assert frame.width == 50
    assert frame.height == 25


def test_image_resize_is_independent_per_axis(canvas):
    view = ViewTransform(zoom=0.5)
    controller = InteractionController(view, canvas)
    image = canvas.add_image("a.png", 0, 0, 100, 100)

    drag(controller, image.id, QPointF(50, 50), QPointF(60, 0), handle=Handle.RESIZE)

    assert image.width == 120
    assert image.height == 20


def test_rotate_follows_pointer_angle(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 100, 100, rotation=10)

    # From straight above the center to straight right of it: +90 degrees.
    drag(controller, image.id, QPointF(50, -10), QPointF(110, 50), handle=Handle.ROTATE)

    assert image.rotation == pytest.approx(100)


def test_rotation_is_not_wrapped(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 100, 100, rotation=350)
    drag(controller, image.id, QPointF(50, -10), QPointF(110, 50), handle=Handle.ROTATE)
    assert image.rotation == pytest.approx(440)


def test_frames_do_not_rotate(controller, canvas):
    frame = canvas.add_frame(0, 0, 100, 1.0)
    assert not controller.pointer_down(frame.id, QPointF(50, -10), Handle.ROTATE)
    assert frame.rotation == 0


def test_z_strictly_increases_on_interaction(controller, canvas):
    a = canvas.add_image("a.png", 0, 0, 10, 10)
    b = canvas.add_image("b.png", 0, 0, 10, 10)
    seen = []
    for target in (a, b, a, b):
        drag(controller, target.id, QPointF(0, 0), QPointF(0, 0))
        seen.append(target.z_index)
    assert seen == sorted(set(seen))


def test_frame_click_prefers_contained_image(controller, canvas):
    image = canvas.add_image("a.png", 20, 20, 40, 40, rotation=45)
    frame = canvas.add_frame(0, 0, 200, 1.0)

    controller.frame_pointer_down(frame.id, QPointF(40, 40))
    assert controller.selection == [image.id]
    controller.pointer_up()

    controller.frame_pointer_down(frame.id, QPointF(150, 150))
    assert controller.selection == [frame.id]


def test_press_routes_by_band(controller, canvas):
    image = canvas.add_image("a.png", 100, 100, 100, 100)
    node = canvas.add_prompt_node(image.id)
    node_point = canvas.prompt_node_rect(node).center()

    controller.press(node_point)
    assert controller.selection == [node.id]

    controller.press(QPointF(150, 150))
    assert controller.selection == [image.id]
    controller.pointer_up()

    controller.press(QPointF(900, 900))
    assert controller.selection == []
    assert controller.session is None


def test_press_on_handle_starts_resize(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 100, 100)
    controller.set_selection([image.id])

    controller.press(QPointF(103, 98))
    assert controller.mode is InteractionMode.RESIZING
    controller.pointer_up()

    controller.press(QPointF(50, -24))
    assert controller.mode is InteractionMode.ROTATING


def test_background_pan(controller, view):
    assert controller.press(QPointF(10, 10), pan=True)
    assert controller.mode is InteractionMode.PANNING
    controller.pointer_move(QPointF(40, 30))
    controller.pointer_move(QPointF(45, 20))
    controller.pointer_up()
    assert view.pan == QPointF(35, 10)


def test_deleted_objects_leave_selection(controller, canvas):
    a = canvas.add_image("a.png", 0, 0, 10, 10)
    b = canvas.add_image("b.png", 0, 0, 10, 10)
    controller.set_selection([a.id, b.id])
    controller.pointer_down(a.id, QPointF(0, 0))

    canvas.delete([a.id])

    assert controller.selection == [b.id]
    assert controller.session is None


def test_switching_canvas_resets_state(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 10, 10)
    controller.pointer_down(image.id, QPointF(0, 0))

    controller.set_canvas(Canvas("Other"))

    assert controller.selection == []
    assert controller.session is None


def test_mode_and_moved_signals(controller, canvas):
    image = canvas.add_image("a.png", 0, 0, 50, 50)
    modes = []
    moved = []
    controller.mode_changed.connect(modes.append)
    controller.objects_moved.connect(moved.append)

    drag(controller, image.id, QPointF(10, 10), QPointF(20, 20))

    assert modes == [InteractionMode.MOVING.value, InteractionMode.IDLE.value]
    assert moved == [[image.id]]
