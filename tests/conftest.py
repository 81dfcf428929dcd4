"""Shared fakes: an in-memory renderer binding, capture function and encoder."""

from __future__ import annotations

from pathlib import Path
import threading

import numpy as np
import pytest

from journey_flyover.route import DRIVE, FLIGHT, TRAIN, Route, Waypoint

FRAME_SHAPE = (6, 8, 3)


class FakeBinding:
    """Records every applied state; `ready()` flips after `ready_after` polls."""

    def __init__(self, ready_after: int = 0, never_ready: bool = False):
        self.ready_after = ready_after
        self.never_ready = never_ready
        self.polls = 0
        self.applied = []
        self.release = None  # threading.Event that apply() waits on
        self.entered = threading.Event()

    def ready(self) -> bool:
        self.polls += 1
        return not self.never_ready and self.polls > self.ready_after

    def apply(self, state) -> None:
        self.entered.set()
        if self.release is not None:
            self.release.wait(timeout=10)
        self.applied.append(state)


class FakeCapture:
    """Returns a tiny solid image encoding the frame index; can fail on demand."""

    def __init__(self, binding: FakeBinding, fail_at: int | None = None):
        self.binding = binding
        self.fail_at = fail_at

    def __call__(self) -> np.ndarray:
        index = self.binding.applied[-1].index
        if index == self.fail_at:
            raise RuntimeError("GPU context lost")
        return np.full(FRAME_SHAPE, index % 256, dtype=np.uint8)


class FakeEncoder:
    """Collects raw frames; `finalize` writes a placeholder file at its output."""

    instances: list[FakeEncoder] = []

    def __init__(self, output_path: str, width: int, height: int, fps: int = 30,
                 crf: int = 18, preset: str = "medium"):
        self.output_path = output_path
        self.width = width
        self.height = height
        self.fps = fps
        self.frames: list[bytes] = []
        self.finalized = False
        self.aborted = False
        FakeEncoder.instances.append(self)

    def write_frame(self, raw_bytes: bytes) -> None:
        self.frames.append(raw_bytes)

    def finalize(self) -> None:
        Path(self.output_path).write_bytes(b"fake-mp4")
        self.finalized = True

    def abort(self) -> None:
        self.aborted = True


class FailingEncoder(FakeEncoder):
    """Partially writes its output, then fails in finalize."""

    def finalize(self) -> None:
        Path(self.output_path).write_bytes(b"half")
        raise OSError("disk full")


@pytest.fixture(autouse=True)
def reset_encoders():
    FakeEncoder.instances.clear()
    yield
    FakeEncoder.instances.clear()


@pytest.fixture
def two_stop_route() -> Route:
    return Route.from_waypoints([
        Waypoint("A", 0.0, 0.0, FLIGHT),
        Waypoint("B", 10.0, 10.0, FLIGHT),
    ])


@pytest.fixture
def mixed_route() -> Route:
    return Route.from_waypoints([
        Waypoint("London", 51.5074, -0.1278),
        Waypoint("Paris", 48.8566, 2.3522, TRAIN),
        Waypoint("Lyon", 45.764, 4.8357, DRIVE),
        Waypoint("Lyon Airport", 45.7256, 5.0811, DRIVE,
                 path_geometry=((4.8357, 45.764), (4.95, 45.75), (5.0, 45.74), (5.0811, 45.7256))),
        Waypoint("Tokyo", 35.6762, 139.6503, FLIGHT),
    ])


def write_frames(directory: Path, indices, width: int = 5) -> None:
    from PIL import Image

    directory.mkdir(parents=True, exist_ok=True)
    for i in indices:
        Image.fromarray(np.full(FRAME_SHAPE, i, dtype=np.uint8)).save(
            directory / f"frame_{i:0{width}d}.png"
        )


@pytest.fixture
def frame_writer():
    return write_frames
