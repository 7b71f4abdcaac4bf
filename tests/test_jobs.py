import asyncio
import threading

import pytest
from PySide6.QtCore import QPointF

from compositor.core.canvas import Canvas
from compositor.core.capture import ImageLoader
from compositor.core.errors import ProviderError, ValidationError
from compositor.core.jobs import UPSCALE_PROMPT, JobOrchestrator

from fakes import FakeProvider


@pytest.fixture
def result_png(make_png):
    return make_png(200, 100)


@pytest.fixture
def providers(result_png):
    return {
        "seadream": FakeProvider("seadream", [result_png]),
        "gemini": FakeProvider("gemini", [result_png]),
    }


@pytest.fixture
def canvas():
    return Canvas("Jobs")


@pytest.fixture
def orchestrator(qapp, providers):
    return JobOrchestrator(providers, view_center=lambda: QPointF(500, 400))


@pytest.fixture
def source(canvas, make_data_uri):
    return canvas.add_image(make_data_uri(20, 10), 100, 100, 200, 100)


def run(coroutine_factory):
    return asyncio.run(coroutine_factory())


def test_eleventh_job_is_rejected_without_touching_active_set(orchestrator, providers, canvas, source):
    async def scenario():
        providers["seadream"].gate = asyncio.Event()
        for _ in range(10):
            orchestrator.submit_edit(canvas, source.id, "seadream", "go")
        await asyncio.sleep(0)
        before = dict(orchestrator.active_jobs)

        with pytest.raises(ValidationError, match="Maximum of 10 concurrent AI jobs reached."):
            orchestrator.submit_edit(canvas, source.id, "gemini", "go")

        assert orchestrator.active_jobs == before
        providers["seadream"].gate.set()
        await orchestrator.wait_idle()

    run(scenario)

    assert orchestrator.active_jobs == {}
    assert len(canvas.images) == 11
    assert orchestrator.api_call_counts == {"seadream": 10, "gemini": 0}


def test_result_is_placed_below_source(orchestrator, canvas, source):
    async def scenario():
        job = orchestrator.submit_edit(canvas, source.id, "gemini", "make it blue")
        assert job.id in orchestrator.active_jobs
        await orchestrator.wait_idle()
        return job

    job = run(scenario)

    result = canvas.images[job.result_ids[0]]
    assert result.is_ai_result
    assert (result.width, result.height) == (300, 150)
    assert (result.x, result.y) == (50, 250)
    assert result.z_index == source.z_index + 1
    assert result.src.startswith("data:image/png;base64,")


def test_result_uses_source_geometry_at_commit_time(orchestrator, providers, canvas, source):
    async def scenario():
        providers["gemini"].gate = asyncio.Event()
        job = orchestrator.submit_edit(canvas, source.id, "gemini", "go")
        await asyncio.sleep(0)
        canvas.move_many({source.id: (1000, 0)})
        providers["gemini"].gate.set()
        await orchestrator.wait_idle()
        return job

    job = run(scenario)
    result = canvas.images[job.result_ids[0]]
    assert (result.x, result.y) == (950, 150)


def test_result_falls_back_to_snapshot_when_source_is_gone(orchestrator, providers, canvas, source):
    async def scenario():
        providers["gemini"].gate = asyncio.Event()
        job = orchestrator.submit_edit(canvas, source.id, "gemini", "go")
        await asyncio.sleep(0)
        canvas.delete([source.id])
        providers["gemini"].gate.set()
        await orchestrator.wait_idle()
        return job

    job = run(scenario)
    result = canvas.images[job.result_ids[0]]
    assert (result.x, result.y) == (50, 250)


def test_generate_centers_result_in_view(orchestrator, providers, canvas):
    async def scenario():
        job = orchestrator.submit_generate(canvas, "a lighthouse")
        await orchestrator.wait_idle()
        return job

    job = run(scenario)
    result = canvas.images[job.result_ids[0]]
    assert (result.x, result.y) == (350, 325)
    assert providers["seadream"].calls == [("generate", "a lighthouse", None, None)]


def test_generate_requires_prompt_and_key(orchestrator, providers, canvas):
    with pytest.raises(ValidationError):
        orchestrator.submit_generate(canvas, "   ")
    providers["seadream"].api_key = ""
    with pytest.raises(ValidationError, match="SeaDream API key"):
        orchestrator.submit_generate(canvas, "a lighthouse")


def test_node_prompt_wins_over_global_prompt(orchestrator, providers, canvas, source):
    canvas.add_prompt_node(source.id, "from the node")

    async def scenario():
        orchestrator.submit_edit(canvas, source.id, "gemini", "global prompt")
        await orchestrator.wait_idle()

    run(scenario)
    assert providers["gemini"].calls[0][:2] == ("edit", "from the node")


def test_empty_prompt_is_rejected(orchestrator, canvas, source):
    canvas.add_prompt_node(source.id, "   ")
    with pytest.raises(ValidationError, match="Please enter an edit prompt"):
        orchestrator.submit_edit(canvas, source.id, "gemini", "global prompt")
    assert orchestrator.active_jobs == {}


def test_missing_api_key(orchestrator, providers, canvas, source):
    providers["gemini"].api_key = ""
    with pytest.raises(ValidationError, match="API key for gemini is required."):
        orchestrator.submit_edit(canvas, source.id, "gemini", "go")
    assert orchestrator.api_call_counts["gemini"] == 0


def test_capacity_is_checked_before_anything_else(orchestrator, canvas):
    orchestrator.max_concurrent = 0
    with pytest.raises(ValidationError, match="Maximum of 0"):
        orchestrator.submit_edit(canvas, "missing", "gemini", "")


def test_unknown_target(orchestrator, canvas):
    with pytest.raises(ValidationError, match="Could not find the source object"):
        orchestrator.submit_edit(canvas, "missing", "gemini", "go")


def test_frame_with_nested_prompt_node_is_rejected(orchestrator, canvas, source):
    frame = canvas.add_frame(50, 50, 400, 1.0)
    canvas.add_prompt_node(source.id, "inner")
    with pytest.raises(ValidationError, match="Cannot process frame"):
        orchestrator.submit_edit(canvas, frame.id, "gemini", "go")


def test_frame_capture_is_sent_at_frame_size(orchestrator, providers, canvas, source):
    frame = canvas.add_frame(50, 50, 400, 2.0)
    canvas.add_prompt_node(frame.id, "frame prompt")

    async def scenario():
        job = orchestrator.submit_edit(canvas, frame.id, "seadream", "")
        await orchestrator.wait_idle()
        return job

    job = run(scenario)
    assert providers["seadream"].calls == [("edit", "frame prompt", 400, 200)]
    result = canvas.images[job.result_ids[0]]
    assert result.y == 50 + 200 + 50


def test_upscale_uses_fixed_prompt_and_object_size(orchestrator, providers, canvas, source):
    async def scenario():
        orchestrator.submit_upscale(canvas, source.id)
        await orchestrator.wait_idle()

    run(scenario)
    assert providers["seadream"].calls == [("edit", UPSCALE_PROMPT, 200, 100)]
    assert orchestrator.api_call_counts["seadream"] == 1


def test_upscale_requires_seadream_key(orchestrator, providers, canvas, source):
    providers["seadream"].api_key = ""
    with pytest.raises(ValidationError, match="SeaDream API key must be connected for upscaling."):
        orchestrator.submit_upscale(canvas, source.id)


def test_provider_failure_is_reported_and_cleaned_up(orchestrator, providers, canvas, source):
    providers["gemini"].error = ProviderError("Gemini task failed: quota")
    failures = []
    orchestrator.job_failed.connect(lambda job_id, message: failures.append(message))

    async def scenario():
        orchestrator.submit_edit(canvas, source.id, "gemini", "go")
        await orchestrator.wait_idle()

    run(scenario)

    assert failures == ["Gemini task failed: quota"]
    assert orchestrator.active_jobs == {}
    assert list(canvas.images) == [source.id]


def test_empty_result_is_a_failure(orchestrator, providers, canvas, source):
    providers["gemini"].results = []
    failures = []
    orchestrator.job_failed.connect(lambda job_id, message: failures.append(message))

    async def scenario():
        orchestrator.submit_edit(canvas, source.id, "gemini", "go")
        await orchestrator.wait_idle()

    run(scenario)
    assert failures == ["AI returned a result with no images."]


def test_capture_failure_ends_the_job(orchestrator, providers, canvas, tmp_path):
    broken = canvas.add_image(str(tmp_path / "missing.png"), 0, 0, 10, 10)
    failures = []
    orchestrator.job_failed.connect(lambda job_id, message: failures.append(message))

    async def scenario():
        orchestrator.submit_edit(canvas, broken.id, "gemini", "go")
        await orchestrator.wait_idle()

    run(scenario)
    assert failures and failures[0].startswith("Could not load image")
    assert providers["gemini"].calls == []
    assert orchestrator.active_jobs == {}


def test_submitting_without_event_loop_leaves_no_job(orchestrator, canvas, source):
    changes = []
    orchestrator.jobs_changed.connect(lambda: changes.append(True))

    with pytest.raises(ValidationError, match="No event loop is running."):
        orchestrator.submit_edit(canvas, source.id, "gemini", "go")
    with pytest.raises(ValidationError, match="No event loop is running."):
        orchestrator.submit_upscale(canvas, source.id)
    with pytest.raises(ValidationError, match="No event loop is running."):
        orchestrator.submit_generate(canvas, "a fox")

    assert orchestrator.active_jobs == {}
    assert orchestrator.api_call_counts == {"seadream": 0, "gemini": 0}
    assert changes == []


class GatedLoader(ImageLoader):
    """Loader whose reads block a worker thread until the test opens the gate."""

    def __init__(self, data):
        super().__init__()
        self.data = data
        self.gate = threading.Event()
        self.released = None
        self.reads = []

    def read_bytes(self, src):
        self.reads.append(src)
        self.released = self.gate.wait(timeout=5)
        return self.data


def test_source_loading_does_not_block_the_event_loop(qapp, providers, canvas, source, make_png):
    loader = GatedLoader(make_png(20, 10))
    orchestrator = JobOrchestrator(providers, loader=loader, view_center=lambda: QPointF(0, 0))

    async def scenario():
        job = orchestrator.submit_edit(canvas, source.id, "gemini", "go")
        ticks = 0
        for _ in range(3):
            await asyncio.sleep(0.01)
            ticks += 1
        loader.gate.set()
        await orchestrator.wait_idle()
        return job, ticks

    job, ticks = run(scenario)

    assert ticks == 3
    assert loader.released is True
    assert loader.reads == [source.src]
    assert providers["gemini"].calls == [("edit", "go", 200, 100)]
    assert len(job.result_ids) == 1
