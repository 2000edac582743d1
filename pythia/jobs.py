from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from pythia.config import POLL_INTERVAL_S
from pythia.errors import JobFailedError, PythiaError, TransportError, ValidationError
from pythia.models import Job, JobState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobEvent:
    job_id: str
    previous: JobState
    current: JobState
    error: PythiaError | None = None


Listener = Callable[[JobEvent], None]
CompletionCallback = Callable[[Job], Awaitable[None]]


def validate_job_inputs(counts_path, metadata_path, design_column: str | None) -> None:
    for label, path in (("Counts", counts_path), ("Metadata", metadata_path)):
        if path is None or not str(path).strip():
            raise ValidationError(f"{label} file is required")
        if not Path(path).is_file():
            raise ValidationError(f"{label} file not found: {path}")
    if not str(design_column or "").strip():
        raise ValidationError("Design column is required")


class PollHandle:
    """Cancellable handle around one job's polling task."""

    def __init__(self, job_id: str, task: asyncio.Task) -> None:
        self.job_id = job_id
        self._task = task
        self._cancelled = False

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Stop polling. Returns False if it was already stopped."""
        if self._cancelled or self._task.done():
            return False
        self._cancelled = True
        self._task.cancel()
        logger.debug("Cancelled polling for job %s", self.job_id)
        return True

    async def wait(self) -> None:
        await asyncio.wait({self._task})


class JobController:
    """Tracks one remote job from creation to a terminal state.

    State only advances from what the status endpoint reports. Creating a
    new job cancels the previous poll loop before anything is sent, and
    every late response is checked against the active job before it can
    change state.
    """

    def __init__(
        self,
        client,
        poll_interval: float = POLL_INTERVAL_S,
        on_completed: CompletionCallback | None = None,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.on_completed = on_completed
        self._job: Job | None = None
        self._state = JobState.IDLE
        self._handle: PollHandle | None = None
        self._generation = 0
        self._listeners: list[Listener] = []
        self._closed = False

    @property
    def job(self) -> Job | None:
        return self._job

    def current_state(self) -> JobState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: JobEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _is_current(self, job_id: str, generation: int) -> bool:
        return (
            not self._closed
            and generation == self._generation
            and self._job is not None
            and self._job.id == job_id
        )

    def _transition(self, job_id: str, state: JobState, error: PythiaError | None = None) -> None:
        previous = self._state
        self._state = state
        self._job = Job(id=job_id, state=state)
        logger.info("Job %s: %s -> %s", job_id, previous.value, state.value)
        self._emit(JobEvent(job_id=job_id, previous=previous, current=state, error=error))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    async def create_job(self, counts_path, metadata_path, design_column: str) -> Job:
        if self._closed:
            raise ValidationError("Controller has been closed")
        validate_job_inputs(counts_path, metadata_path, design_column)

        # Supersede the previous job before anything goes over the wire.
        self.cancel()
        self._handle = None
        self._generation += 1
        generation = self._generation
        self._job = None
        self._state = JobState.IDLE

        job_id, initial = await asyncio.to_thread(
            self.client.create_job, counts_path, metadata_path, design_column.strip()
        )
        if self._closed or generation != self._generation:
            logger.debug("Job %s was superseded before polling started", job_id)
            return Job(id=job_id, state=initial)

        # Terminal states are only trusted from the status endpoint.
        if initial.is_terminal:
            initial = JobState.QUEUED
        self._transition(job_id, initial)

        task = asyncio.create_task(self._poll(job_id, generation), name=f"poll-{job_id}")
        self._handle = PollHandle(job_id, task)
        return self._job

    async def _poll(self, job_id: str, generation: int) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                state = await asyncio.to_thread(self.client.get_status, job_id)
            except TransportError as exc:
                if not self._is_current(job_id, generation):
                    return
                logger.warning("Status check for job %s failed: %s", job_id, exc)
                self._transition(job_id, JobState.FAILED, error=exc)
                return

            if not self._is_current(job_id, generation):
                logger.debug("Discarding late status %s for job %s", state.value, job_id)
                return

            if state is JobState.FAILED:
                self._transition(job_id, state, error=JobFailedError(job_id))
                return
            if state is not self._state:
                self._transition(job_id, state)
            if state is JobState.COMPLETED:
                await self._complete(self._job)
                return

    async def _complete(self, job: Job) -> None:
        if self.on_completed is None:
            return
        try:
            await self.on_completed(job)
        except PythiaError as exc:
            logger.warning("Post-completion fetch for job %s failed: %s", job.id, exc)

    async def wait(self) -> JobState:
        """Block until the active poll loop has stopped."""
        if self._handle is not None:
            await self._handle.wait()
        return self._state

    def close(self) -> None:
        if self._closed:
            return
        self.cancel()
        self._closed = True
        logger.debug("Job controller closed")
