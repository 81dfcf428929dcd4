"""Parse GPX files into road geometry for drive legs."""

import os

import gpxpy
import gpxpy.gpx

from .errors import InputError

MAX_GPX_SIZE = 50 * 1024 * 1024  # 50 MB
_HTML_SIGNATURES = ["<!doctype html", "<html", "<head", "<body"]


def parse_gpx_path(file_path: str) -> list[tuple[float, float]]:
    """Return the (lon, lat) points of every track, or every route if there are no tracks."""
    try:
        file_size = os.path.getsize(file_path)
    except OSError as e:
        raise InputError(f"Cannot read GPX file '{file_path}': {e}") from None
    if file_size > MAX_GPX_SIZE:
        raise InputError(
            f"GPX file too large ({file_size / 1024 / 1024:.1f} MB, max 50 MB)"
        )

    with open(file_path, "r") as f:
        try:
            gpx = gpxpy.parse(f)
        except gpxpy.gpx.GPXXMLSyntaxException:
            # Sniff the file to give an actionable error message
            with open(file_path, "r", errors="replace") as sniff:
                head = sniff.read(500).lower()
            if any(sig in head for sig in _HTML_SIGNATURES):
                raise InputError(
                    f"'{file_path}' appears to be an HTML web page, not a GPX file.\n"
                    "Export the route as GPX from your planner; a page URL\n"
                    "is not a direct download link."
                ) from None
            raise InputError(
                f"Failed to parse '{file_path}' as GPX: the file is not valid XML."
            ) from None

    points = [
        (point.longitude, point.latitude)
        for track in gpx.tracks
        for segment in track.segments
        for point in segment.points
    ]
    if not points:
        points = [
            (point.longitude, point.latitude)
            for route in gpx.routes
            for point in route.points
        ]

    if len(points) < 2:
        raise InputError(f"GPX file '{file_path}' must contain at least 2 points")

    return points
