"""Frame driver: step a fixed frame index space and capture each frame in order."""

from dataclasses import dataclass
import logging
from typing import Callable, Iterator, Optional, Sequence

from .binding import CaptureFn, RendererBinding, RenderState
from .config import DEFAULT_CONFIG, TrajectoryConfig
from .errors import CaptureError, InputError
from .frame_store import FrameStore
from .route import Route
from .trajectory import pose

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameRequest:
    index: int
    leg_index: int
    local_t: float
    global_t: float


def leg_frame_budget(
    total_frames: int,
    num_legs: int,
    weights: Optional[Sequence[float]] = None,
) -> list[int]:
    """Split total_frames across legs (largest remainder), at least 2 per leg."""
    if num_legs < 1:
        raise InputError("A route needs at least one leg.")
    if total_frames < 2 * num_legs:
        raise InputError(
            f"{total_frames} frames is too few for {num_legs} legs "
            f"(need at least {2 * num_legs})."
        )
    if weights is None:
        weights = [1.0] * num_legs
    if len(weights) != num_legs or any(w < 0 for w in weights) or sum(weights) <= 0:
        raise InputError("Leg weights must be non-negative, one per leg, not all zero.")

    spare = total_frames - 2 * num_legs
    total_weight = float(sum(weights))
    shares = [spare * w / total_weight for w in weights]
    budget = [2 + int(s) for s in shares]
    leftover = total_frames - sum(budget)
    by_remainder = sorted(range(num_legs), key=lambda i: (-(shares[i] - int(shares[i])), i))
    for i in by_remainder[:leftover]:
        budget[i] += 1
    return budget


def frame_requests(budget: Sequence[int]) -> Iterator[FrameRequest]:
    """Yield the ordered frame requests for a per-leg frame budget.

    With a uniform budget this is exactly
    ``leg = i // per_leg``, ``local_t = (i % per_leg) / (per_leg - 1)``,
    ``global_t = i / (total - 1)``.
    """
    if not budget:
        raise InputError("Frame budget is empty.")
    if any(n < 2 for n in budget):
        raise InputError("Every leg needs at least 2 frames.")
    total = sum(budget)
    index = 0
    for leg_index, per_leg in enumerate(budget):
        for local in range(per_leg):
            yield FrameRequest(
                index=index,
                leg_index=leg_index,
                local_t=local / (per_leg - 1),
                global_t=index / (total - 1),
            )
            index += 1


def uniform_budget(total_frames: int, frames_per_leg: int) -> list[int]:
    if frames_per_leg < 2:
        raise InputError("frames_per_leg must be at least 2.")
    if total_frames % frames_per_leg:
        raise InputError(
            f"total_frames ({total_frames}) is not a multiple of "
            f"frames_per_leg ({frames_per_leg})."
        )
    return [frames_per_leg] * (total_frames // frames_per_leg)


def resolve_budget(
    num_legs: int,
    budget: Optional[Sequence[int]] = None,
    frames_per_leg: Optional[int] = None,
    total_frames: Optional[int] = None,
) -> list[int]:
    """Per-leg frame counts from whichever of the three forms was given."""
    if budget is not None:
        budget = [int(n) for n in budget]
        if len(budget) != num_legs:
            raise InputError(f"Frame budget has {len(budget)} entries for {num_legs} legs.")
        if any(n < 2 for n in budget):
            raise InputError("Every leg needs at least 2 frames.")
        return budget
    if frames_per_leg is not None:
        if total_frames is None:
            total_frames = frames_per_leg * num_legs
        result = uniform_budget(total_frames, frames_per_leg)
        if len(result) != num_legs:
            raise InputError(
                f"{total_frames} frames at {frames_per_leg} per leg covers "
                f"{len(result)} legs, route has {num_legs}."
            )
        return result
    if total_frames is not None:
        return leg_frame_budget(total_frames, num_legs)
    raise InputError("Give a frame budget, frames_per_leg, or total_frames.")


class FrameDriver:
    """Pushes one pose per frame into the renderer and captures it.

    Frame N+1 is never applied before frame N has been captured: the binding
    is one shared mutable scene. Writes to the frame store may trail behind.
    """

    def __init__(
        self,
        route: Route,
        budget: Sequence[int],
        config: TrajectoryConfig = DEFAULT_CONFIG,
    ):
        if len(budget) != route.num_legs:
            raise InputError(
                f"Frame budget has {len(budget)} entries for {route.num_legs} legs."
            )
        self.route = route
        self.budget = list(budget)
        self.config = config

    @property
    def total_frames(self) -> int:
        return sum(self.budget)

    def states(self) -> Iterator[RenderState]:
        for request in frame_requests(self.budget):
            yield RenderState(
                index=request.index,
                leg_index=request.leg_index,
                local_t=request.local_t,
                global_t=request.global_t,
                mode=self.route.legs[request.leg_index].mode,
                pose=pose(
                    self.route,
                    request.leg_index,
                    request.local_t,
                    request.global_t,
                    self.config,
                ),
            )

    def run(
        self,
        binding: RendererBinding,
        capture: CaptureFn,
        store: FrameStore,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """Capture every frame into the store. Returns the number captured."""
        total = self.total_frames
        captured = 0
        for state in self.states():
            try:
                binding.apply(state)
                image = capture()
            except Exception as e:
                raise CaptureError(
                    f"Frame {state.index} (leg {state.leg_index}, t={state.local_t:.3f}) "
                    f"failed: {type(e).__name__}: {e}",
                    frame_index=state.index,
                ) from e
            store.put(state.index, image)
            captured += 1
            if progress_callback:
                progress_callback(captured, total)

        logger.debug("Captured %d/%d frames", captured, total)
        return captured
