"""Render jobs: single-flight guard and the capture → encode lifecycle."""

from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
import tempfile
import threading
from typing import Callable, Iterator, Optional, Sequence
import uuid

from .binding import CaptureFn, RendererBinding, wait_until_ready
from .config import DEFAULT_CONFIG, TrajectoryConfig
from .errors import ConcurrencyRejected, FlyoverError, InputError, RendererTimeoutError
from .frame_store import DEFAULT_MAX_IN_FLIGHT, STORE_PREFIX, FrameStore, clean_stale_stores
from .frames import FrameDriver, resolve_budget
from .route import Route
from .video import EncoderFactory, StreamingEncoder, encode

logger = logging.getLogger(__name__)

DEFAULT_WORK_DIR = Path(tempfile.gettempdir()) / "journey-flyover"


class JobStatus(str, Enum):
    PENDING = "pending"
    CAPTURING = "capturing"
    ENCODING = "encoding"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RenderJob:
    route: Route
    output_path: Path
    budget: list[int]
    fps: int
    token: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: JobStatus = JobStatus.PENDING
    frame_dir: Optional[Path] = None
    degraded: bool = False
    warnings: list[str] = field(default_factory=list)
    frames_captured: int = 0
    artifact: Optional[Path] = None
    error: Optional[BaseException] = None

    @property
    def total_frames(self) -> int:
        return sum(self.budget)

    @property
    def duration_s(self) -> float:
        """Nominal length of the finished video."""
        return self.total_frames / self.fps

    @property
    def finished(self) -> bool:
        return self.status in (JobStatus.DONE, JobStatus.FAILED)


class JobGuard:
    """Single-flight lock: Idle → Running → Idle, never queued.

    The lock lives in memory only, so it cannot outlive the process.
    """

    IDLE = "idle"
    RUNNING = "running"

    def __init__(self):
        self._lock = threading.Lock()
        self._token: Optional[str] = None

    @property
    def state(self) -> str:
        return self.RUNNING if self._lock.locked() else self.IDLE

    @property
    def owner(self) -> Optional[str]:
        return self._token

    @contextmanager
    def hold(self) -> Iterator[str]:
        """Acquire without waiting and yield an ownership token.

        Raises ConcurrencyRejected if another job holds the lock; the release
        runs on every exit path, exceptions included.
        """
        if not self._lock.acquire(blocking=False):
            raise ConcurrencyRejected(
                f"A render job is already running (owner {self._token})"
            )
        token = uuid.uuid4().hex
        self._token = token
        try:
            yield token
        finally:
            self._token = None
            self._lock.release()


class JobRunner:
    """Runs render jobs against one shared renderer binding, one at a time."""

    def __init__(
        self,
        binding: RendererBinding,
        capture: CaptureFn,
        work_dir: Optional[Path] = None,
        config: TrajectoryConfig = DEFAULT_CONFIG,
        ready_timeout: float = 30.0,
        ready_poll_interval: float = 0.1,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        crf: int = 18,
        preset: str = "medium",
        encoder_factory: EncoderFactory = StreamingEncoder,
        guard: Optional[JobGuard] = None,
    ):
        self.binding = binding
        self.capture = capture
        self.work_dir = Path(work_dir) if work_dir is not None else DEFAULT_WORK_DIR
        self.config = config
        self.ready_timeout = ready_timeout
        self.ready_poll_interval = ready_poll_interval
        self.max_in_flight = max_in_flight
        self.crf = crf
        self.preset = preset
        self.encoder_factory = encoder_factory
        self.guard = guard if guard is not None else JobGuard()
        self.last_job: Optional[RenderJob] = None

    @property
    def state(self) -> str:
        return self.guard.state

    def run(
        self,
        route: Route,
        output_path: Path,
        fps: int = 30,
        budget: Optional[Sequence[int]] = None,
        frames_per_leg: Optional[int] = None,
        total_frames: Optional[int] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        encode_callback: Optional[Callable[[int, int], None]] = None,
    ) -> RenderJob:
        """Render ``route`` to ``output_path`` and return the finished job.

        Raises ConcurrencyRejected without side effects if a job is already
        running, InputError before any frame work for a bad request, and
        CaptureError / EncodeError (with ``error.job`` set) on failure.
        """
        with self.guard.hold() as token:
            if fps <= 0:
                raise InputError("fps must be positive")
            leg_budget = resolve_budget(route.num_legs, budget, frames_per_leg, total_frames)
            job = RenderJob(
                route=route,
                output_path=Path(output_path),
                budget=leg_budget,
                fps=fps,
                token=token,
            )
            self.last_job = job
            logger.info(
                "Job %s accepted: %d legs, %d frames at %d fps",
                job.job_id, route.num_legs, job.total_frames, fps,
            )
            try:
                self._execute(job, progress_callback, encode_callback)
            except BaseException as e:
                job.status = JobStatus.FAILED
                job.error = e
                if isinstance(e, FlyoverError):
                    e.job = job
                logger.error("Job %s failed: %s", job.job_id, e)
                raise
            return job

    def _execute(
        self,
        job: RenderJob,
        progress_callback: Optional[Callable[[int, int], None]],
        encode_callback: Optional[Callable[[int, int], None]],
    ) -> None:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        clean_stale_stores(self.work_dir)
        job.frame_dir = self.work_dir / f"{STORE_PREFIX}{job.job_id}"

        if not wait_until_ready(self.binding, self.ready_timeout, self.ready_poll_interval):
            warning = RendererTimeoutError(
                f"Renderer not ready after {self.ready_timeout:.1f}s", job=job,
            )
            job.degraded = True
            job.warnings.append(str(warning))

        def on_frame(current: int, total: int) -> None:
            job.frames_captured = current
            if progress_callback:
                progress_callback(current, total)

        job.status = JobStatus.CAPTURING
        driver = FrameDriver(job.route, job.budget, self.config)
        with FrameStore(job.frame_dir, job.total_frames, self.max_in_flight) as store:
            driver.run(self.binding, self.capture, store, on_frame)
            store.drain()

        job.status = JobStatus.ENCODING
        job.artifact = encode(
            job.frame_dir,
            job.fps,
            job.output_path,
            crf=self.crf,
            preset=self.preset,
            expected_frames=job.total_frames,
            encoder_factory=self.encoder_factory,
            progress_callback=encode_callback,
        )
        job.status = JobStatus.DONE
        logger.info(
            "Job %s done: %s (%.2fs%s)",
            job.job_id, job.artifact, job.duration_s, ", degraded" if job.degraded else "",
        )
