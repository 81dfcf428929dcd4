"""Frame store: numbered PNG stills on disk, written by a bounded thread pool."""

from concurrent.futures import Future, ThreadPoolExecutor, wait
import functools
import logging
from pathlib import Path
import shutil
import threading
from typing import Any, Optional

import numpy as np
from PIL import Image

from .errors import CaptureError

logger = logging.getLogger(__name__)

FRAME_PREFIX = "frame_"
FRAME_SUFFIX = ".png"
STORE_PREFIX = "frames_"
MIN_INDEX_WIDTH = 5
DEFAULT_MAX_IN_FLIGHT = 50


def index_width(total_frames: int) -> int:
    """Zero-pad width so lexical file order equals frame order."""
    return max(MIN_INDEX_WIDTH, len(str(max(0, total_frames - 1))))


def frame_name(index: int, width: int) -> str:
    return f"{FRAME_PREFIX}{index:0{width}d}{FRAME_SUFFIX}"


def list_frames(directory: Path) -> list[Path]:
    """Frame files in index order."""
    return sorted(Path(directory).glob(f"{FRAME_PREFIX}*{FRAME_SUFFIX}"))


def frame_index(path: Path) -> int:
    return int(path.stem[len(FRAME_PREFIX):])


def clean_stale_stores(work_dir: Path, keep: Optional[Path] = None) -> int:
    """Delete frame directories left behind by earlier (crashed or failed) jobs."""
    work_dir = Path(work_dir)
    if not work_dir.is_dir():
        return 0
    deleted = 0
    for stale in work_dir.glob(f"{STORE_PREFIX}*"):
        if not stale.is_dir() or (keep is not None and stale == keep):
            continue
        try:
            shutil.rmtree(stale)
            logger.info("Deleted stale frame store: %s", stale)
            deleted += 1
        except OSError as e:
            logger.warning("Failed to delete %s: %s", stale, e)
    return deleted


class FrameStore:
    """Ordered, zero-padded frame files for one job.

    ``put`` hands each frame to a writer thread and returns immediately
    unless ``max_in_flight`` writes are already outstanding, in which case
    it blocks until one finishes. ``drain`` waits for every write and
    raises the first write failure.

    Example:
        with FrameStore(work_dir / "frames_abc", total_frames=60) as store:
            for i, image in enumerate(images):
                store.put(i, image)
            store.drain()
    """

    def __init__(
        self,
        directory: Path,
        total_frames: int,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        workers: int = 4,
    ):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.directory = Path(directory)
        self.total_frames = total_frames
        self.width = index_width(total_frames)
        self.max_in_flight = max_in_flight
        self.workers = workers
        self._slots = threading.BoundedSemaphore(max_in_flight)
        self._lock = threading.Lock()
        self._pending: dict[Future, int] = {}
        self._failure: Optional[tuple[int, BaseException]] = None
        self._pool: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "FrameStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Queued writes still finish when the job failed
        self.close()
        return False

    def open(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="frame-writer",
            )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def path_for(self, index: int) -> Path:
        return self.directory / frame_name(index, self.width)

    @property
    def in_flight(self) -> int:
        with self._lock:
            return len(self._pending)

    def put(self, index: int, image: Any) -> None:
        """Queue one frame for writing."""
        if self._pool is None:
            raise RuntimeError("FrameStore is not open")
        self._raise_failure()

        self._slots.acquire()
        try:
            future = self._pool.submit(self._write, index, image)
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._pending[future] = index
        future.add_done_callback(functools.partial(self._on_done, index))

    def _write(self, index: int, image: Any) -> None:
        if isinstance(image, np.ndarray):
            image = Image.fromarray(image)
        image.save(self.path_for(index), format="PNG")

    def _on_done(self, index: int, future: Future) -> None:
        self._record_failure(index, future)
        with self._lock:
            self._pending.pop(future, None)
        self._slots.release()

    def _record_failure(self, index: int, future: Future) -> None:
        error = future.exception()
        with self._lock:
            if error is not None and self._failure is None:
                self._failure = (index, error)

    def _raise_failure(self) -> None:
        with self._lock:
            failure = self._failure
        if failure is not None:
            index, error = failure
            raise CaptureError(
                f"Writing frame {index} failed: {type(error).__name__}: {error}",
                frame_index=index,
            ) from error

    def drain(self) -> None:
        """Block until every queued write completes.

        Futures are checked directly: done-callbacks may still be running
        when ``wait`` returns.
        """
        with self._lock:
            pending = dict(self._pending)
        wait(pending)
        for future, index in sorted(pending.items(), key=lambda item: item[1]):
            self._record_failure(index, future)
        self._raise_failure()

    def paths(self) -> list[Path]:
        return list_frames(self.directory)

    def purge(self) -> None:
        if self.directory.exists():
            shutil.rmtree(self.directory)
            logger.info("Deleted frame store: %s", self.directory)
