"""Error taxonomy for render jobs."""

from typing import Optional


class FlyoverError(Exception):
    """Base class for all journey-flyover failures.

    ``job`` is set once a RenderJob exists, so callers can inspect its final
    status and frame directory after a failure.
    """

    def __init__(self, message: str, job: Optional[object] = None):
        super().__init__(message)
        self.job = job


class InputError(FlyoverError, ValueError):
    """Route or request rejected before any frame work begins."""


class RendererTimeoutError(FlyoverError):
    """Renderer did not report ready in time. Recorded, never fatal."""


class CaptureError(FlyoverError):
    """A frame could not be applied, captured, or written."""

    def __init__(self, message: str, frame_index: int, job: Optional[object] = None):
        super().__init__(message, job=job)
        self.frame_index = frame_index


class EncodeError(FlyoverError, RuntimeError):
    """The encoder pipeline failed; no artifact was produced."""


class ConcurrencyRejected(FlyoverError):
    """Another job is already running on this renderer."""
