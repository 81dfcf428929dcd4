"""Sphere geometry: lat/lng conversion, distances, easing."""

import numpy as np

EARTH_RADIUS_KM = 6371.0

# Unit vector toward geographic north in the globe's Y-up frame
NORTH_POLE = np.array([0.0, 1.0, 0.0])


def smoothstep(t: float) -> float:
    """Smoothstep ease-in-out: 0→1 with zero derivative at endpoints."""
    t = max(0.0, min(1.0, t))
    return t * t * (3.0 - 2.0 * t)


def latlng_to_unit(lat: float, lng: float) -> np.ndarray:
    """Unit direction for a lat/lng on the Y-up globe.

    phi is measured from the north pole and theta from the antimeridian,
    so (0, 0) lands on +X and the north pole on +Y.
    """
    phi = np.radians(90.0 - lat)
    theta = np.radians(lng + 180.0)
    return np.array([
        -np.sin(phi) * np.cos(theta),
        np.cos(phi),
        np.sin(phi) * np.sin(theta),
    ])


def latlng_to_xyz(lat: float, lng: float, radius: float) -> np.ndarray:
    return latlng_to_unit(lat, lng) * radius


def unit_to_latlng(points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Inverse of latlng_to_unit for an (N, 3) array (or a single vector)."""
    pts = np.atleast_2d(np.asarray(points, dtype=float))
    norms = np.linalg.norm(pts, axis=1)
    norms[norms == 0] = 1.0
    unit = pts / norms[:, None]
    lat = np.degrees(np.arcsin(np.clip(unit[:, 1], -1.0, 1.0)))
    theta = np.arctan2(unit[:, 2], -unit[:, 0])
    lng = (np.degrees(theta) % 360.0) - 180.0
    return lat, lng


def sphere_texture_coordinates(points: np.ndarray) -> np.ndarray:
    """Equirectangular (u, v) for mesh points: u from longitude, v from latitude."""
    lat, lng = unit_to_latlng(points)
    u = (lng + 180.0) / 360.0
    v = (lat + 90.0) / 180.0
    return np.column_stack([u, v])


def normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray | None:
    """Return vec / |vec|, or None when the vector is (numerically) zero."""
    norm = float(np.linalg.norm(vec))
    if norm < eps:
        return None
    return vec / norm


def north_tangent(direction: np.ndarray) -> np.ndarray:
    """Tangent at `direction` pointing toward the north pole.

    At the poles, where north is undefined, the +Z tangent is used instead.
    """
    radial = direction / np.linalg.norm(direction)
    tangent = normalize(NORTH_POLE - np.dot(NORTH_POLE, radial) * radial, eps=1e-9)
    if tangent is None:
        fallback = np.array([0.0, 0.0, 1.0])
        tangent = normalize(fallback - np.dot(fallback, radial) * radial)
    return tangent


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres between two lat/lng points."""
    phi1, phi2 = np.radians(lat1), np.radians(lat2)
    dphi = np.radians(lat2 - lat1)
    dlam = np.radians(lng2 - lng1)
    a = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlam / 2) ** 2
    return float(2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(a), np.sqrt(1 - a)))
