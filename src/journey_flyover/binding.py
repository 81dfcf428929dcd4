"""Renderer binding: the two operations the render core needs from a scene."""

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Protocol

from .trajectory import FramePose

logger = logging.getLogger(__name__)

# Returns one captured still as an (H, W, 3) uint8 array or PIL image
CaptureFn = Callable[[], Any]


@dataclass(frozen=True)
class RenderState:
    """Everything the renderer needs to draw one frame."""

    index: int
    leg_index: int
    local_t: float
    global_t: float
    mode: str
    pose: FramePose


class RendererBinding(Protocol):
    def ready(self) -> bool:
        """True once assets and scene are fully loaded."""
        ...

    def apply(self, state: RenderState) -> None:
        """Move vehicle and camera to `state` and repaint synchronously.

        Applying the same state twice must produce the same image.
        """
        ...


def wait_until_ready(
    binding: RendererBinding,
    timeout: float = 30.0,
    poll_interval: float = 0.1,
) -> bool:
    """Poll ``binding.ready()`` for up to ``timeout`` seconds.

    Returns False on timeout instead of raising; the caller marks the job
    degraded and renders anyway.
    """
    deadline = time.monotonic() + max(0.0, timeout)
    while True:
        if binding.ready():
            return True
        if time.monotonic() >= deadline:
            logger.warning("Renderer not ready after %.1fs, continuing degraded", timeout)
            return False
        time.sleep(poll_interval)
