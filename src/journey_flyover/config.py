"""Tunable trajectory and camera constants.

None of these values are derived; they were tuned by eye and can be
overridden from a JSON file with ``--config``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
import json
from pathlib import Path
from typing import Any

from .errors import InputError
from .route import DRIVE, FLIGHT, TRAIN


@dataclass
class ModeProfile:
    """Altitude profile of a transport mode, in globe units above the sphere."""

    base_altitude: float = 0.0
    peak_altitude: float = 0.0


def _default_mode_profiles() -> dict[str, ModeProfile]:
    return {
        FLIGHT: ModeProfile(base_altitude=0.02, peak_altitude=0.45),
        TRAIN: ModeProfile(base_altitude=0.01, peak_altitude=0.04),
        DRIVE: ModeProfile(base_altitude=0.005, peak_altitude=0.0),
    }


def _default_cruise_tiers() -> list[tuple[float, float]]:
    # (max leg length km, cruise distance); the last tier catches everything
    return [(50.0, 0.8), (300.0, 1.4), (1500.0, 2.6), (float("inf"), 4.0)]


@dataclass
class TrajectoryConfig:
    sphere_radius: float = 2.0
    modes: dict[str, ModeProfile] = field(default_factory=_default_mode_profiles)

    # Look-ahead step for the vehicle's forward vector
    forward_epsilon: float = 1e-3
    # Camera focus leads the vehicle by this much local progress
    lead_offset: float = 0.04

    near_distance: float = 1.2
    cruise_distance: float = 3.0
    overview_distance: float = 10.0
    approach_end: float = 0.25
    departure_start: float = 0.75
    boundary_window: float = 0.08

    auto_cruise: bool = False
    cruise_tiers: list[tuple[float, float]] = field(default_factory=_default_cruise_tiers)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.sphere_radius <= 0:
            raise InputError("`sphere_radius` must be positive.")
        missing = {FLIGHT, TRAIN, DRIVE} - set(self.modes)
        if missing:
            raise InputError(f"Missing mode profiles: {', '.join(sorted(missing))}.")
        if not 0.0 < self.approach_end <= self.departure_start < 1.0:
            raise InputError(
                "Phase thresholds must satisfy 0 < approach_end <= departure_start < 1."
            )
        if not 0.0 < self.forward_epsilon < 0.5:
            raise InputError("`forward_epsilon` must be in (0, 0.5).")
        if not 0.0 <= self.lead_offset <= 1.0:
            raise InputError("`lead_offset` must be in [0, 1].")
        if not 0.0 <= self.boundary_window <= 0.5:
            raise InputError("`boundary_window` must be in [0, 0.5].")
        for name in ("near_distance", "cruise_distance", "overview_distance"):
            if getattr(self, name) <= 0:
                raise InputError(f"`{name}` must be positive.")
        if not self.cruise_tiers:
            raise InputError("`cruise_tiers` must not be empty.")

    def profile(self, mode: str) -> ModeProfile:
        return self.modes[mode]

    def cruise_for_distance(self, distance_km: float) -> float:
        """Cruise distance for a leg of the given length (auto zoom)."""
        for max_km, distance in self.cruise_tiers:
            if distance_km < max_km:
                return distance
        return self.cruise_tiers[-1][1]

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["cruise_tiers"] = [
            [None if km == float("inf") else km, d] for km, d in self.cruise_tiers
        ]
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TrajectoryConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(payload) - known
        if unknown:
            raise InputError(f"Unknown trajectory settings: {', '.join(sorted(unknown))}.")

        kwargs = dict(payload)
        if "modes" in kwargs:
            modes = _default_mode_profiles()
            for name, values in kwargs["modes"].items():
                if name not in modes:
                    raise InputError(f"Unknown mode profile {name!r}.")
                modes[name] = ModeProfile(**values)
            kwargs["modes"] = modes
        if "cruise_tiers" in kwargs:
            kwargs["cruise_tiers"] = [
                (float("inf") if km is None else float(km), float(d))
                for km, d in kwargs["cruise_tiers"]
            ]
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str | Path) -> TrajectoryConfig:
        try:
            payload = json.loads(Path(path).read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise InputError(f"Cannot read trajectory config '{path}': {e}") from None
        return cls.from_dict(payload)

    def to_json(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2))


DEFAULT_CONFIG = TrajectoryConfig()
