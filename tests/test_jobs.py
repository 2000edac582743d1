from __future__ import annotations

import asyncio
import threading

import pytest

from pythia.errors import JobFailedError, TransportError, ValidationError
from pythia.jobs import JobController, validate_job_inputs
from pythia.models import JobState

POLL = 0.01


def _recorder(controller):
    events = []
    controller.subscribe(events.append)
    return events


def test_validate_job_inputs(inputs, tmp_path):
    counts, metadata = inputs
    validate_job_inputs(counts, metadata, "condition")

    with pytest.raises(ValidationError):
        validate_job_inputs(None, metadata, "condition")
    with pytest.raises(ValidationError):
        validate_job_inputs(counts, tmp_path / "missing.csv", "condition")
    with pytest.raises(ValidationError):
        validate_job_inputs(counts, metadata, "  ")


@pytest.mark.asyncio
async def test_missing_file_never_reaches_backend(backend, inputs):
    _, metadata = inputs
    controller = JobController(backend, poll_interval=POLL)

    with pytest.raises(ValidationError):
        await controller.create_job(None, metadata, "condition")

    assert backend.job_ids == []
    assert controller.current_state() is JobState.IDLE


@pytest.mark.asyncio
async def test_job_runs_to_completion_and_fetches_once(backend, inputs):
    backend.statuses["job-1"] = ["queued", "running", "running", "completed"]
    completed = []

    async def on_completed(job):
        completed.append(job.id)

    controller = JobController(backend, poll_interval=POLL, on_completed=on_completed)
    events = _recorder(controller)

    job = await controller.create_job(*inputs, "condition")
    state = await controller.wait()

    assert job.id == "job-1"
    assert state is JobState.COMPLETED
    assert completed == ["job-1"]
    assert [(e.previous, e.current) for e in events] == [
        (JobState.IDLE, JobState.QUEUED),
        (JobState.QUEUED, JobState.RUNNING),
        (JobState.RUNNING, JobState.COMPLETED),
    ]
    calls = len(backend.status_calls)
    await asyncio.sleep(POLL * 5)
    assert len(backend.status_calls) == calls


@pytest.mark.asyncio
async def test_reported_failure_stops_polling(backend, inputs):
    backend.statuses["job-1"] = ["running", "failed"]
    completed = []

    async def on_completed(job):
        completed.append(job)

    controller = JobController(backend, poll_interval=POLL, on_completed=on_completed)
    events = _recorder(controller)

    await controller.create_job(*inputs, "condition")
    state = await controller.wait()

    assert state is JobState.FAILED
    assert isinstance(events[-1].error, JobFailedError)
    assert events[-1].error.job_id == "job-1"
    assert completed == []


@pytest.mark.asyncio
async def test_transport_error_while_polling_fails_job(backend, inputs):
    backend.statuses["job-1"] = [TransportError("down", status_code=503, body="maintenance")]
    controller = JobController(backend, poll_interval=POLL)
    events = _recorder(controller)

    await controller.create_job(*inputs, "condition")
    state = await controller.wait()

    assert state is JobState.FAILED
    assert isinstance(events[-1].error, TransportError)
    assert events[-1].error.body == "maintenance"
    assert backend.status_calls == ["job-1"]


@pytest.mark.asyncio
async def test_new_job_discards_late_status_of_previous(backend, inputs):
    gate_a = threading.Event()
    backend.gates["job-1"] = gate_a
    backend.statuses["job-1"] = ["completed"]
    backend.statuses["job-2"] = ["running"]
    completed = []

    async def on_completed(job):
        completed.append(job.id)

    controller = JobController(backend, poll_interval=POLL, on_completed=on_completed)
    events = _recorder(controller)

    await controller.create_job(*inputs, "condition")
    await asyncio.sleep(POLL * 3)  # job-1's status call is now blocked in flight

    await controller.create_job(*inputs, "condition")
    seen_at_b = len(events)
    gate_a.set()
    await asyncio.sleep(POLL * 10)

    late = [e for e in events[seen_at_b:] if e.job_id == "job-1"]
    assert late == []
    assert completed == []
    assert controller.job.id == "job-2"
    assert controller.current_state() is JobState.RUNNING
    controller.close()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_stops_polling(backend, inputs):
    controller = JobController(backend, poll_interval=POLL)
    await controller.create_job(*inputs, "condition")
    await asyncio.sleep(POLL * 3)

    controller.close()
    controller.close()
    controller.cancel()
    calls = len(backend.status_calls)
    await asyncio.sleep(POLL * 5)

    assert len(backend.status_calls) == calls
    with pytest.raises(ValidationError):
        await controller.create_job(*inputs, "condition")


@pytest.mark.asyncio
async def test_poll_handle_cancel_reports_first_call_only(backend, inputs):
    controller = JobController(backend, poll_interval=POLL)
    await controller.create_job(*inputs, "condition")
    handle = controller._handle

    assert handle.cancel() is True
    assert handle.cancel() is False
    await handle.wait()
    assert handle.done
