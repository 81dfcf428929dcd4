"""Render requests: load a JSON route description into a validated Route."""

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any, Optional

from .errors import InputError
from .frames import leg_frame_budget, resolve_budget
from .geocode import Geocoder
from .gpx_parser import parse_gpx_path
from .route import DRIVE, Route, Waypoint, normalize_mode, resample_path

logger = logging.getLogger(__name__)

# Seconds per leg when neither duration nor frames_per_leg is given
DEFAULT_SECONDS_PER_LEG = 8.0
DEFAULT_FPS = 30
GPX_PATH_SAMPLES = 256


@dataclass
class RenderRequest:
    """A route plus the timing and size the file asked for.

    Unset fields (None) fall back to command-line options or presets.
    """

    route: Route
    fps: Optional[int] = None
    frames_per_leg: Optional[int] = None
    duration: Optional[float] = None  # seconds, whole video
    width: Optional[int] = None
    height: Optional[int] = None

    def budget(self, fps: Optional[int] = None) -> list[int]:
        """Per-leg frame counts for this request."""
        if self.frames_per_leg is not None:
            return resolve_budget(self.route.num_legs, frames_per_leg=self.frames_per_leg)
        fps = fps or self.fps or DEFAULT_FPS
        duration = self.duration
        if duration is None:
            duration = DEFAULT_SECONDS_PER_LEG * self.route.num_legs
        total = int(round(duration * fps))
        return leg_frame_budget(total, self.route.num_legs)


def _optional(payload: dict, key: str, cast):
    value = payload.get(key)
    return None if value is None else cast(value)


def _coerce_float(stop: dict, *keys: str) -> Optional[float]:
    for key in keys:
        if key in stop and stop[key] is not None:
            try:
                return float(stop[key])
            except (TypeError, ValueError):
                raise InputError(f"Stop {stop.get('name', '?')!r}: {key} is not a number") from None
    return None


def _parse_path(raw: Any, label: str) -> tuple[tuple[float, float], ...]:
    try:
        return tuple((float(lon), float(lat)) for lon, lat in raw)
    except (TypeError, ValueError):
        raise InputError(f"{label}: path must be a list of [lon, lat] pairs") from None


def parse_stop(
    stop: Any,
    index: int,
    geocoder: Optional[Geocoder] = None,
    base_dir: Optional[Path] = None,
) -> Waypoint:
    """Build one Waypoint from a request entry (a place name or an object)."""
    if isinstance(stop, str):
        stop = {"name": stop}
    if not isinstance(stop, dict):
        raise InputError(f"Stop {index} must be a place name or an object")

    name = str(stop.get("name") or f"Stop {index + 1}")
    lat = _coerce_float(stop, "lat", "latitude")
    lng = _coerce_float(stop, "lng", "lon", "longitude")
    if lat is None or lng is None:
        if not stop.get("name"):
            raise InputError(f"Stop {index} needs either lat/lng or a name to geocode")
        if geocoder is None:
            geocoder = Geocoder()
        lat, lng = geocoder.lookup(name)

    mode = normalize_mode(stop.get("mode") or stop.get("vehicle"))

    path = None
    if "path" in stop and stop["path"] is not None:
        path = _parse_path(stop["path"], name)
    elif stop.get("path_gpx"):
        gpx_file = Path(stop["path_gpx"])
        if base_dir is not None and not gpx_file.is_absolute():
            gpx_file = base_dir / gpx_file
        raw = parse_gpx_path(str(gpx_file))
        path = resample_path(raw, max(len(raw), GPX_PATH_SAMPLES))
        logger.info("Loaded %d road points for %s from %s", len(raw), name, gpx_file)
    if path is not None and mode != DRIVE:
        logger.warning("%s: path geometry ignored for %s leg", name, mode)

    return Waypoint(name=name, lat=lat, lng=lng, mode=mode, path_geometry=path)


def build_route(
    stops: list,
    geocoder: Optional[Geocoder] = None,
    base_dir: Optional[Path] = None,
) -> Route:
    if not isinstance(stops, list):
        raise InputError("`stops` must be a list")
    return Route.from_waypoints(
        [parse_stop(s, i, geocoder, base_dir) for i, s in enumerate(stops)]
    )


def parse_request(
    payload: dict,
    geocoder: Optional[Geocoder] = None,
    base_dir: Optional[Path] = None,
) -> RenderRequest:
    if not isinstance(payload, dict):
        raise InputError("Render request must be a JSON object")
    route = build_route(payload.get("stops", []), geocoder, base_dir)
    try:
        request = RenderRequest(
            route=route,
            fps=_optional(payload, "fps", int),
            frames_per_leg=_optional(payload, "frames_per_leg", int),
            duration=_optional(payload, "duration", float),
            width=_optional(payload, "width", int),
            height=_optional(payload, "height", int),
        )
    except (TypeError, ValueError) as e:
        raise InputError(f"Invalid render request: {e}") from None
    for key in ("fps", "frames_per_leg", "duration", "width", "height"):
        value = getattr(request, key)
        if value is not None and value <= 0:
            raise InputError(f"`{key}` must be positive")
    return request


def load_request(path: str | Path, geocoder: Optional[Geocoder] = None) -> RenderRequest:
    """Read a render request JSON file; relative GPX paths resolve next to it."""
    path = Path(path)
    try:
        payload = json.loads(path.read_text())
    except OSError as e:
        raise InputError(f"Cannot read render request '{path}': {e}") from None
    except json.JSONDecodeError as e:
        raise InputError(f"'{path}' is not valid JSON: {e}") from None
    # A bare list is shorthand for {"stops": [...]}
    if isinstance(payload, list):
        payload = {"stops": payload}
    return parse_request(payload, geocoder, base_dir=path.parent)
