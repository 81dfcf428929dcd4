"""Renderer: PyVista-based off-screen globe implementing the renderer binding."""

from concurrent.futures import Future, ThreadPoolExecutor
import logging
from typing import Callable, Optional

import numpy as np
import pyvista as pv
from matplotlib.colors import LinearSegmentedColormap

from .binding import RenderState
from .config import DEFAULT_CONFIG, TrajectoryConfig
from .geo import latlng_to_xyz, sphere_texture_coordinates
from .route import DRIVE, FLIGHT, TRAIN, Route
from .tiles import fetch_world_texture
from .trajectory import sample_leg

logger = logging.getLogger(__name__)

# Route line: gold at the start fading to orange at the destination
_ROUTE_CMAP = LinearSegmentedColormap.from_list("route", ["#FFD166", "#FF8C42"])

MODE_COLORS = {
    FLIGHT: "#FFFFFF",
    TRAIN: "#EF476F",
    DRIVE: "#06D6A0",
}
# Vehicle cone (height, radius) as a fraction of the sphere radius
MODE_SIZES = {
    FLIGHT: (0.045, 0.015),
    TRAIN: (0.03, 0.012),
    DRIVE: (0.025, 0.01),
}

SPACE_COLOR = "#0b0b19"
OCEAN_COLOR = "#1d3b6e"
ATMOSPHERE_COLOR = "#4aa3ff"
LEG_SAMPLES = 96
LABEL_LIFT = 1.02

# Suppress VTK output window
pv.global_theme.allow_empty_mesh = True


def trail_points(
    leg_samples: list[np.ndarray],
    sample_ts: np.ndarray,
    leg_index: int,
    local_t: float,
    current: np.ndarray,
) -> np.ndarray:
    """Path already travelled: finished legs plus the current leg up to the vehicle."""
    parts = list(leg_samples[:leg_index])
    parts.append(leg_samples[leg_index][sample_ts <= local_t])
    parts.append(np.asarray(current, dtype=float)[None, :])
    points = np.vstack([p for p in parts if len(p)])
    if len(points) < 2:
        points = np.vstack([points, points])
    return points


def waypoint_labels(route: Route, radius: float) -> tuple[np.ndarray, list[str]]:
    """Anchor points just above each stop and the stop names to draw there."""
    points = np.array([
        latlng_to_xyz(wp.lat, wp.lng, radius * LABEL_LIFT) for wp in route.waypoints
    ])
    return points, [wp.name for wp in route.waypoints]


def visible_labels(
    points: np.ndarray,
    names: list[str],
    camera_position,
    radius: float,
) -> tuple[np.ndarray, list[str]]:
    """Labels on the hemisphere facing the camera (above its horizon)."""
    camera = np.asarray(camera_position, dtype=float)
    units = points / np.linalg.norm(points, axis=1)[:, None]
    keep = units @ camera > radius
    return points[keep], [name for name, k in zip(names, keep) if k]


class GlobeRenderer:
    """Off-screen globe scene driven one RenderState at a time.

    ``ready()`` turns True once the scene exists and the world texture has
    finished downloading (or failed, in which case the plain ocean colour
    stays). A texture that arrives after capture started is installed on the
    next ``apply``.
    """

    def __init__(
        self,
        route: Route,
        width: int = 1920,
        height: int = 1080,
        config: TrajectoryConfig = DEFAULT_CONFIG,
        texture_zoom: Optional[int] = 3,
        tile_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.route = route
        self.width = width
        self.height = height
        self.config = config
        self.texture_zoom = texture_zoom
        self.tile_callback = tile_callback

        self._plotter: Optional[pv.Plotter] = None
        self._pool: Optional[ThreadPoolExecutor] = None
        self._texture_future: Optional[Future] = None
        self._texture_done = False
        self._sample_ts = np.linspace(0.0, 1.0, LEG_SAMPLES)
        self._leg_samples = [
            sample_leg(route, i, LEG_SAMPLES, config) for i in range(route.num_legs)
        ]

    def start(self) -> "GlobeRenderer":
        """Begin the texture download and build the scene."""
        if self.texture_zoom is not None and self._texture_future is None:
            self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="globe-texture")
            self._texture_future = self._pool.submit(
                fetch_world_texture,
                zoom=self.texture_zoom,
                progress_callback=self.tile_callback,
            )
        else:
            self._texture_done = True
        if self._plotter is None:
            self._build_scene()
        return self

    def _build_scene(self) -> None:
        radius = self.config.sphere_radius
        plotter = pv.Plotter(
            off_screen=True,
            window_size=(self.width, self.height),
        )
        plotter.set_background(SPACE_COLOR)

        globe = pv.Sphere(radius=radius, theta_resolution=180, phi_resolution=90)
        globe.active_texture_coordinates = sphere_texture_coordinates(globe.points)
        self._globe_actor = plotter.add_mesh(
            globe, color=OCEAN_COLOR, smooth_shading=True, specular=0.15,
        )

        atmosphere = pv.Sphere(radius=radius * 1.025, theta_resolution=90, phi_resolution=45)
        plotter.add_mesh(
            atmosphere, color=ATMOSPHERE_COLOR, opacity=0.15, smooth_shading=True,
        )

        # Full route, dim, colored by progress
        route_pts = np.vstack(self._leg_samples)
        route_line = pv.lines_from_points(route_pts)
        route_line["progress"] = np.linspace(0, 1, route_line.n_points)
        plotter.add_mesh(
            route_line.tube(radius=radius * 0.002),
            scalars="progress", cmap=_ROUTE_CMAP,
            show_scalar_bar=False, opacity=0.35,
        )

        # Travelled trail, bright, updated every frame
        self._trail = pv.lines_from_points(np.vstack([route_pts[:1], route_pts[:1]]))
        plotter.add_mesh(
            self._trail, color="#FFD166", line_width=4, render_lines_as_tubes=True,
        )

        for wp in self.route.waypoints:
            marker = pv.Sphere(
                radius=radius * 0.008,
                center=latlng_to_xyz(wp.lat, wp.lng, radius * 1.002),
            )
            plotter.add_mesh(marker, color="#FF3333", lighting=False)

        self._label_points, self._label_names = waypoint_labels(self.route, radius)
        self._label_actor = None

        self._vehicle = pv.Cone(center=(0.0, 0.0, 0.0), direction=(1.0, 0.0, 0.0))
        self._vehicle_actor = plotter.add_mesh(self._vehicle, color=MODE_COLORS[FLIGHT])

        sun = pv.Light(position=(10.0, 6.0, 10.0), focal_point=(0.0, 0.0, 0.0), intensity=0.9)
        plotter.add_light(sun)
        self._plotter = plotter

    def _install_texture(self) -> None:
        if self._texture_done or self._texture_future is None or not self._texture_future.done():
            return
        self._texture_done = True
        try:
            image = self._texture_future.result()
        except Exception as e:
            logger.warning("World texture unavailable, using plain globe: %s", e)
            return
        # PyVista flips rows itself: numpy row 0 (north) ends up at v=1
        tex = pv.numpy_to_texture(np.asarray(image))
        tex.SetInterpolate(True)
        self._globe_actor.texture = tex
        self._globe_actor.prop.color = "white"
        logger.info("World texture installed (%dx%d)", *image.size)

    def _update_labels(self, camera_position) -> None:
        if self._label_actor is not None:
            self._plotter.remove_actor(self._label_actor, render=False)
            self._label_actor = None
        points, names = visible_labels(
            self._label_points, self._label_names, camera_position, self.config.sphere_radius,
        )
        if not names:
            return
        self._label_actor = self._plotter.add_point_labels(
            points, names,
            font_size=max(12, self.height // 45), text_color="white",
            shape=None, show_points=False, always_visible=True,
            reset_camera=False, render=False,
        )

    # -- renderer binding -------------------------------------------------

    def ready(self) -> bool:
        if self._plotter is None:
            return False
        if self._texture_future is not None and not self._texture_future.done():
            return False
        self._install_texture()
        return True

    def apply(self, state: RenderState) -> None:
        if self._plotter is None:
            raise RuntimeError("GlobeRenderer.start() has not been called")
        self._install_texture()

        vehicle = state.pose.vehicle
        height, cone_radius = MODE_SIZES[state.mode]
        radius = self.config.sphere_radius
        self._vehicle.copy_from(pv.Cone(
            center=vehicle.position,
            direction=vehicle.forward,
            height=height * radius,
            radius=cone_radius * radius,
            resolution=24,
        ))
        self._vehicle_actor.prop.color = MODE_COLORS[state.mode]

        self._trail.copy_from(pv.lines_from_points(trail_points(
            self._leg_samples, self._sample_ts,
            state.leg_index, state.local_t, np.asarray(vehicle.position),
        )))

        self._update_labels(state.pose.camera.position)

        self._plotter.camera_position = state.pose.camera.camera_position
        self._plotter.reset_camera_clipping_range()
        self._plotter.render()

    def capture(self) -> np.ndarray:
        """Screenshot of the current scene as an (H, W, 3) uint8 array."""
        if self._plotter is None:
            raise RuntimeError("GlobeRenderer.start() has not been called")
        return self._plotter.screenshot(return_img=True)

    def close(self) -> None:
        if self._plotter is not None:
            self._plotter.close()
            self._plotter = None
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None
