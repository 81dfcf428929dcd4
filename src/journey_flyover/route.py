"""Route model: waypoints, legs, validation and road-path resampling."""

from dataclasses import dataclass, field
import logging
from typing import Optional, Sequence

import numpy as np
from scipy.interpolate import CubicSpline

from .errors import InputError
from .geo import haversine_km

logger = logging.getLogger(__name__)

FLIGHT = "flight"
TRAIN = "train"
DRIVE = "drive"
MODES = (FLIGHT, TRAIN, DRIVE)

# Road paths whose ends miss their stop by more than this are reported
PATH_SNAP_TOLERANCE_KM = 1.0

# Vehicle names used by the original planner UI
MODE_ALIASES = {
    "plane": FLIGHT,
    "fly": FLIGHT,
    "car": DRIVE,
    "road": DRIVE,
    "rail": TRAIN,
}


def normalize_mode(mode: Optional[str]) -> str:
    """Canonical transport mode; missing modes default to flight."""
    if not mode:
        return FLIGHT
    key = mode.strip().lower()
    key = MODE_ALIASES.get(key, key)
    if key not in MODES:
        raise InputError(
            f"Unknown transport mode {mode!r}. Allowed values: {', '.join(MODES)}."
        )
    return key


@dataclass(frozen=True)
class Waypoint:
    name: str
    lat: float
    lng: float
    mode: str = FLIGHT  # mode of the leg arriving here
    path_geometry: Optional[tuple[tuple[float, float], ...]] = None  # (lon, lat)


@dataclass(frozen=True)
class Leg:
    start: Waypoint
    end: Waypoint
    mode: str
    path_geometry: Optional[tuple[tuple[float, float], ...]] = None

    @property
    def uses_geometry(self) -> bool:
        return self.mode == DRIVE and self.path_geometry is not None

    @property
    def distance_km(self) -> float:
        """Great-circle length between the leg endpoints."""
        return haversine_km(self.start.lat, self.start.lng, self.end.lat, self.end.lng)


@dataclass(frozen=True)
class Route:
    """Validated, ordered sequence of at least two waypoints."""

    waypoints: tuple[Waypoint, ...]
    legs: tuple[Leg, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_waypoints(self.waypoints)
        legs = tuple(
            Leg(
                start=a,
                end=b,
                mode=b.mode,
                path_geometry=(
                    pin_path_endpoints(b.path_geometry, a, b)
                    if b.mode == DRIVE and b.path_geometry is not None else None
                ),
            )
            for a, b in zip(self.waypoints, self.waypoints[1:])
        )
        object.__setattr__(self, "legs", legs)

    @classmethod
    def from_waypoints(cls, waypoints: Sequence[Waypoint]) -> "Route":
        return cls(tuple(waypoints))

    def __len__(self) -> int:
        return len(self.waypoints)

    @property
    def num_legs(self) -> int:
        return len(self.legs)


def pin_path_endpoints(
    path: Sequence[tuple[float, float]],
    start: Waypoint,
    end: Waypoint,
    tolerance_km: float = PATH_SNAP_TOLERANCE_KM,
) -> tuple[tuple[float, float], ...]:
    """Road path with its first and last points moved onto the leg's waypoints.

    Logs a warning when an end had to move further than ``tolerance_km``.
    """
    points = [tuple(p) for p in path]
    for i, wp in ((0, start), (-1, end)):
        lon, lat = points[i]
        gap = haversine_km(lat, lon, wp.lat, wp.lng)
        if gap > tolerance_km:
            logger.warning(
                "%s: road path ends %.1f km from the stop, snapping it", wp.name, gap,
            )
        points[i] = (wp.lng, wp.lat)
    return tuple(points)


def validate_waypoints(waypoints: Sequence[Waypoint]) -> None:
    """Raise InputError for routes that cannot be rendered."""
    if len(waypoints) < 2:
        raise InputError(
            f"A route needs at least 2 waypoints (got {len(waypoints)})."
        )
    for i, wp in enumerate(waypoints):
        label = wp.name or f"waypoint {i}"
        if not (np.isfinite(wp.lat) and np.isfinite(wp.lng)):
            raise InputError(f"{label}: coordinates must be finite numbers.")
        if not -90.0 <= wp.lat <= 90.0:
            raise InputError(f"{label}: latitude {wp.lat} outside [-90, 90].")
        if not -180.0 <= wp.lng <= 180.0:
            raise InputError(f"{label}: longitude {wp.lng} outside [-180, 180].")
        if wp.mode not in MODES:
            raise InputError(f"{label}: unknown transport mode {wp.mode!r}.")
        if i > 0 and wp.mode == DRIVE and wp.path_geometry is not None:
            if len(wp.path_geometry) < 2:
                raise InputError(
                    f"{label}: drive path geometry needs at least 2 points "
                    f"(got {len(wp.path_geometry)})."
                )


def compute_cumulative_distances(path: Sequence[tuple[float, float]]) -> np.ndarray:
    """Cumulative great-circle distance (km) along a (lon, lat) path."""
    dists = np.zeros(len(path))
    for i in range(1, len(path)):
        lon1, lat1 = path[i - 1]
        lon2, lat2 = path[i]
        dists[i] = dists[i - 1] + haversine_km(lat1, lon1, lat2, lon2)
    return dists


def resample_path(
    path: Sequence[tuple[float, float]],
    num_samples: int,
) -> tuple[tuple[float, float], ...]:
    """Resample a (lon, lat) road path to evenly spaced points.

    Index-based sampling moves at constant speed only when points are evenly
    spaced, which raw GPS tracks never are. Short or degenerate paths fall
    back to linear interpolation.
    """
    if len(path) < 2:
        raise InputError("Path geometry needs at least 2 points.")
    cum_dist = compute_cumulative_distances(path)
    total_dist = cum_dist[-1]
    lons = np.array([p[0] for p in path])
    lats = np.array([p[1] for p in path])

    # Remove near-duplicate distance entries (stationary points)
    mask = np.ones(len(cum_dist), dtype=bool)
    mask[1:] = np.diff(cum_dist) > 1e-4  # keep points >10cm apart
    cum_dist, lons, lats = cum_dist[mask], lons[mask], lats[mask]

    if total_dist <= 0 or len(cum_dist) < 2:
        return tuple((float(lons[0]), float(lats[0])) for _ in range(max(2, num_samples)))

    sample_dists = np.linspace(0, total_dist, max(2, num_samples))
    if len(cum_dist) < 4:
        new_lons = np.interp(sample_dists, cum_dist, lons)
        new_lats = np.interp(sample_dists, cum_dist, lats)
    else:
        new_lons = CubicSpline(cum_dist, lons)(sample_dists)
        new_lats = CubicSpline(cum_dist, lats)(sample_dists)

    return tuple((float(lo), float(la)) for lo, la in zip(new_lons, new_lats))
