from __future__ import annotations


class PythiaError(Exception):
    """Base class for every error raised by the client core."""


class ValidationError(PythiaError):
    """Required input is missing or out of range; nothing was sent."""


class TransportError(PythiaError):
    """A backend call failed on the wire or returned a non-2xx status.

    ``body`` is the raw response text (or the network error text). It is
    diagnostic only and may not be JSON.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is not None:
            base = f"{base} (HTTP {self.status_code})"
        if self.body:
            base = f"{base}: {self.body[:500]}"
        return base


class JobFailedError(PythiaError):
    """The backend reported that the job itself failed."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} failed on the server")
        self.job_id = job_id
