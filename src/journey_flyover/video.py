"""Video encoding: stream stored frames, in order, to FFmpeg."""

import logging
import os
from pathlib import Path
import shutil
import subprocess
import threading
from typing import Callable, Optional

import numpy as np
from PIL import Image

from .errors import EncodeError
from .frame_store import frame_index, list_frames

logger = logging.getLogger(__name__)


class StreamingEncoder:
    """Streams raw RGB frames to FFmpeg via stdin pipe for constant memory usage."""

    def __init__(
        self,
        output_path: str,
        width: int,
        height: int,
        fps: int = 30,
        crf: int = 18,
        preset: str = "medium",
    ):
        self.output_path = output_path
        self.frame_size = width * height * 3
        self._stderr_chunks: list[bytes] = []
        self._stderr_size = 0
        self._MAX_STDERR = 1024 * 1024  # 1 MB cap
        try:
            self.process = subprocess.Popen(
                [
                    "ffmpeg",
                    "-y",  # overwrite output
                    "-f", "rawvideo",
                    "-pix_fmt", "rgb24",
                    "-s", f"{width}x{height}",
                    "-framerate", str(fps),
                    "-i", "-",  # stdin
                    "-c:v", "libx264",
                    "-preset", preset,
                    "-crf", str(crf),
                    "-pix_fmt", "yuv420p",
                    "-movflags", "+faststart",
                    "-f", "mp4",
                    output_path,
                ],
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeError(f"Cannot start FFmpeg: {e}") from e
        # Drain stderr in a background thread to prevent pipe buffer deadlock
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()

    def _drain_stderr(self) -> None:
        """Read stderr continuously so FFmpeg never blocks on a full pipe."""
        for chunk in iter(lambda: self.process.stderr.read(4096), b""):
            if self._stderr_size < self._MAX_STDERR:
                self._stderr_chunks.append(chunk)
                self._stderr_size += len(chunk)

    def _stderr_text(self) -> str:
        return b"".join(self._stderr_chunks).decode(errors="replace")

    def write_frame(self, raw_bytes: bytes) -> None:
        """Write a single raw RGB frame to the encoder."""
        if len(raw_bytes) != self.frame_size:
            raise EncodeError(
                f"Frame is {len(raw_bytes)} bytes, expected {self.frame_size}"
            )
        try:
            self.process.stdin.write(raw_bytes)
        except (BrokenPipeError, ValueError) as e:
            self.process.wait()
            self._stderr_thread.join(timeout=5)
            raise EncodeError(f"FFmpeg closed its input:\n{self._stderr_text()}") from e

    def finalize(self) -> None:
        """Close input and wait for FFmpeg to finish encoding."""
        if self.process.stdin and not self.process.stdin.closed:
            self.process.stdin.close()
        self.process.wait()
        self._stderr_thread.join(timeout=5)
        if self.process.returncode != 0:
            raise EncodeError(f"FFmpeg encoding failed:\n{self._stderr_text()}")

    def abort(self) -> None:
        """Kill FFmpeg without waiting for a valid file."""
        if self.process.poll() is None:
            self.process.kill()
        if self.process.stdin and not self.process.stdin.closed:
            try:
                self.process.stdin.close()
            except BrokenPipeError:
                pass
        self.process.wait()


EncoderFactory = Callable[..., StreamingEncoder]


def partial_path(output_path: Path) -> Path:
    """Hidden sibling the encoder writes to before the final rename."""
    return output_path.with_name(f".{output_path.stem}.partial{output_path.suffix}")


def _load_rgb(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGB"))


def encode(
    frame_dir: Path,
    fps: int,
    output_path: Path,
    crf: int = 18,
    preset: str = "medium",
    expected_frames: Optional[int] = None,
    encoder_factory: EncoderFactory = StreamingEncoder,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> Path:
    """Encode every frame in ``frame_dir`` into ``output_path``.

    The final path only ever holds a complete video: FFmpeg writes to a
    hidden partial file that is renamed on success. On success the frame
    directory is deleted; on failure it is left for inspection and
    EncodeError is raised.
    """
    frame_dir = Path(frame_dir)
    output_path = Path(output_path)
    frames = list_frames(frame_dir)
    if not frames:
        raise EncodeError(f"No frames found in {frame_dir}")
    indices = [frame_index(p) for p in frames]
    if indices != list(range(len(frames))):
        missing = sorted(set(range(indices[-1] + 1)) - set(indices))
        raise EncodeError(f"Frame sequence in {frame_dir} has gaps: missing {missing[:10]}")
    if expected_frames is not None and len(frames) != expected_frames:
        raise EncodeError(
            f"Expected {expected_frames} frames in {frame_dir}, found {len(frames)}"
        )

    first = _load_rgb(frames[0])
    height, width = first.shape[:2]
    tmp_path = partial_path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Encoding %d frames (%dx%d @ %d fps) to %s", len(frames), width, height, fps, output_path)

    encoder = None
    try:
        encoder = encoder_factory(
            str(tmp_path), width=width, height=height, fps=fps, crf=crf, preset=preset,
        )
        for i, path in enumerate(frames):
            pixels = first if i == 0 else _load_rgb(path)
            if pixels.shape[:2] != (height, width):
                raise EncodeError(
                    f"{path.name} is {pixels.shape[1]}x{pixels.shape[0]}, expected {width}x{height}"
                )
            encoder.write_frame(np.ascontiguousarray(pixels).tobytes())
            if progress_callback:
                progress_callback(i + 1, len(frames))
        encoder.finalize()
        os.replace(tmp_path, output_path)
    except Exception as e:
        if encoder is not None:
            try:
                encoder.abort()
            except OSError as abort_error:
                logger.debug("Encoder abort failed: %s", abort_error)
        tmp_path.unlink(missing_ok=True)
        logger.error("Encoding failed, keeping frames in %s", frame_dir)
        if isinstance(e, EncodeError):
            raise
        raise EncodeError(f"Encoding failed: {type(e).__name__}: {e}") from e

    shutil.rmtree(frame_dir)
    logger.info("Video saved to %s", output_path)
    return output_path
