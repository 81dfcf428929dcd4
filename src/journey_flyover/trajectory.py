"""Trajectory engine: vehicle and camera poses along a multi-leg route.

Every function here is pure. A pose depends only on the route, the leg,
the progress values and the configuration, so frames can be computed in any
order and re-rendered bit-for-bit.
"""

from dataclasses import dataclass
import math
from typing import Optional

import numpy as np

from .config import DEFAULT_CONFIG, TrajectoryConfig
from .geo import NORTH_POLE, latlng_to_unit, normalize, north_tangent, smoothstep
from .route import Leg, Route

Vector = tuple[float, float, float]


@dataclass(frozen=True)
class Pose:
    position: Vector
    forward: Vector
    up: Vector
    focal_point: Optional[Vector] = None  # cameras only

    @property
    def camera_position(self) -> list[Vector]:
        """[position, focal point, view-up] as PyVista expects it."""
        focal = self.focal_point
        if focal is None:
            focal = tuple(p + f for p, f in zip(self.position, self.forward))
        return [self.position, focal, self.up]


@dataclass(frozen=True)
class FramePose:
    vehicle: Pose
    camera: Pose
    camera_distance: float


def _as_vector(arr: np.ndarray) -> Vector:
    return (float(arr[0]), float(arr[1]), float(arr[2]))


def _clamp01(t: float) -> float:
    return max(0.0, min(1.0, float(t)))


def great_circle_direction(a: np.ndarray, b: np.ndarray, s: float) -> np.ndarray:
    """Normalized linear blend of two unit vectors (slerp approximation)."""
    blended = normalize((1.0 - s) * a + s * b)
    if blended is not None:
        return blended
    # Antipodal endpoints: the blend passes through the origin at s=0.5
    perp = normalize(np.cross(a, NORTH_POLE))
    if perp is None:
        perp = normalize(np.cross(a, np.array([1.0, 0.0, 0.0])))
    return perp


def geometry_index(local_t: float, num_points: int) -> float:
    """Fractional index into an N-point path for the given progress."""
    return _clamp01(local_t) * (num_points - 1)


def _geometry_direction(path: tuple[tuple[float, float], ...], local_t: float) -> np.ndarray:
    idx = geometry_index(local_t, len(path))
    i0 = int(math.floor(idx))
    i1 = min(i0 + 1, len(path) - 1)
    frac = idx - i0
    lon0, lat0 = path[i0]
    lon1, lat1 = path[i1]
    a = latlng_to_unit(lat0, lon0)
    b = latlng_to_unit(lat1, lon1)
    blended = normalize((1.0 - frac) * a + frac * b)
    return a if blended is None else blended


def is_stationary(leg: Leg) -> bool:
    """True when the leg starts and ends on the same spot and never moves."""
    if leg.uses_geometry:
        first = latlng_to_unit(leg.path_geometry[0][1], leg.path_geometry[0][0])
        return all(
            np.allclose(latlng_to_unit(lat, lon), first, atol=1e-12)
            for lon, lat in leg.path_geometry[1:]
        )
    a = latlng_to_unit(leg.start.lat, leg.start.lng)
    b = latlng_to_unit(leg.end.lat, leg.end.lng)
    return bool(np.allclose(a, b, atol=1e-12))


def leg_direction(leg: Leg, local_t: float) -> np.ndarray:
    """Unit direction from the sphere centre to the vehicle."""
    t = _clamp01(local_t)
    if leg.uses_geometry:
        return _geometry_direction(leg.path_geometry, t)
    a = latlng_to_unit(leg.start.lat, leg.start.lng)
    b = latlng_to_unit(leg.end.lat, leg.end.lng)
    return great_circle_direction(a, b, smoothstep(t))


def leg_altitude(leg: Leg, local_t: float, config: TrajectoryConfig = DEFAULT_CONFIG) -> float:
    profile = config.profile(leg.mode)
    if leg.uses_geometry:
        return profile.base_altitude
    arc = math.sin(math.pi * smoothstep(_clamp01(local_t)))
    return profile.base_altitude + profile.peak_altitude * arc


def vehicle_position(
    route: Route,
    leg_index: int,
    local_t: float,
    config: TrajectoryConfig = DEFAULT_CONFIG,
) -> np.ndarray:
    leg = route.legs[leg_index]
    radius = config.sphere_radius + leg_altitude(leg, local_t, config)
    return leg_direction(leg, local_t) * radius


def vehicle_forward(
    route: Route,
    leg_index: int,
    local_t: float,
    config: TrajectoryConfig = DEFAULT_CONFIG,
) -> np.ndarray:
    """Look-at direction toward a point slightly further along the leg.

    Zero-length legs inherit the previous leg's final heading; the very
    first leg falls back to due north.
    """
    t = _clamp01(local_t)
    eps = config.forward_epsilon
    here = vehicle_position(route, leg_index, t, config)

    forward = None
    if not is_stationary(route.legs[leg_index]):
        ahead = min(t + eps, 1.0)
        if ahead > t:
            forward = normalize(vehicle_position(route, leg_index, ahead, config) - here)
        if forward is None and t > 0.0:
            behind = max(t - eps, 0.0)
            forward = normalize(here - vehicle_position(route, leg_index, behind, config))
    if forward is not None:
        return forward
    if leg_index > 0:
        return vehicle_forward(route, leg_index - 1, 1.0, config)
    return north_tangent(here)


def _overview_weight(
    route: Route,
    leg_index: int,
    local_t: float,
    global_t: float,
    window: float,
) -> float:
    """0 at the very start and end of the route, 1 everywhere else.

    Only the first and last legs blend. The weight reaches 1 by the end of
    the first leg and leaves 1 no earlier than the start of the last,
    however short the leg.
    """
    weight = 1.0
    if leg_index == 0:
        weight = min(weight, smoothstep(max(global_t / window, local_t)))
    if leg_index == route.num_legs - 1:
        weight = min(weight, smoothstep(max((1.0 - global_t) / window, 1.0 - local_t)))
    return weight


def camera_distance(
    route: Route,
    leg_index: int,
    local_t: float,
    global_t: float,
    config: TrajectoryConfig = DEFAULT_CONFIG,
) -> float:
    """Camera height above the surface for a frame.

    Within a leg the camera pulls back from ``near`` to ``cruise`` and back
    again. On the first and last legs it also blends out to the ``overview``
    distance, so the route opens and closes on the whole globe.
    """
    leg = route.legs[leg_index]
    near = config.near_distance
    if config.auto_cruise:
        cruise = config.cruise_for_distance(leg.distance_km)
    else:
        cruise = config.cruise_distance

    t = _clamp01(local_t)
    if t < config.approach_end:
        distance = near + (cruise - near) * smoothstep(t / config.approach_end)
    elif t > config.departure_start:
        span = 1.0 - config.departure_start
        distance = cruise + (near - cruise) * smoothstep((t - config.departure_start) / span)
    else:
        distance = cruise

    window = config.boundary_window
    if window > 0.0:
        weight = _overview_weight(route, leg_index, t, _clamp01(global_t), window)
        distance = config.overview_distance + (distance - config.overview_distance) * weight
    return distance


def camera_pose(
    route: Route,
    leg_index: int,
    local_t: float,
    global_t: float,
    config: TrajectoryConfig = DEFAULT_CONFIG,
) -> tuple[Pose, float]:
    """Camera above the focus point, looking straight down at the globe."""
    leg = route.legs[leg_index]
    target_t = min(_clamp01(local_t) + config.lead_offset, 1.0)
    # Surface point: ignores the vehicle's altitude so the focus does not bob
    direction = leg_direction(leg, target_t)
    distance = camera_distance(route, leg_index, local_t, global_t, config)
    focal = direction * config.sphere_radius
    position = direction * (config.sphere_radius + distance)
    return Pose(
        position=_as_vector(position),
        forward=_as_vector(-direction),
        up=_as_vector(north_tangent(direction)),
        focal_point=_as_vector(focal),
    ), distance


def pose(
    route: Route,
    leg_index: int,
    local_t: float,
    global_t: Optional[float] = None,
    config: TrajectoryConfig = DEFAULT_CONFIG,
) -> FramePose:
    """Vehicle and camera pose for one frame.

    If ``global_t`` is omitted, legs are assumed to take equal time.
    """
    if not 0 <= leg_index < route.num_legs:
        raise IndexError(f"leg_index {leg_index} out of range for {route.num_legs} legs")
    if global_t is None:
        global_t = (leg_index + _clamp01(local_t)) / route.num_legs

    position = vehicle_position(route, leg_index, local_t, config)
    vehicle = Pose(
        position=_as_vector(position),
        forward=_as_vector(vehicle_forward(route, leg_index, local_t, config)),
        up=_as_vector(position / np.linalg.norm(position)),
    )
    camera, distance = camera_pose(route, leg_index, local_t, global_t, config)
    return FramePose(vehicle=vehicle, camera=camera, camera_distance=distance)


def sample_leg(
    route: Route,
    leg_index: int,
    num_samples: int = 64,
    config: TrajectoryConfig = DEFAULT_CONFIG,
) -> np.ndarray:
    """(num_samples, 3) vehicle positions along one leg, for drawing the path."""
    ts = np.linspace(0.0, 1.0, max(2, num_samples))
    return np.array([vehicle_position(route, leg_index, float(t), config) for t in ts])
