import json

import pytest

from journey_flyover.errors import InputError
from journey_flyover.request import DEFAULT_SECONDS_PER_LEG, load_request, parse_request
from journey_flyover.route import DRIVE, FLIGHT, TRAIN


class FakeGeocoder:
    def __init__(self, places):
        self.places = places
        self.queries = []

    def lookup(self, query):
        self.queries.append(query)
        if query not in self.places:
            raise InputError(f"Could not find location: {query!r}")
        return self.places[query]


GPX = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="test" xmlns="http://www.topografix.com/GPX/1/1">
  <trk><trkseg>
    <trkpt lat="45.764" lon="4.8357"></trkpt>
    <trkpt lat="45.75" lon="4.95"></trkpt>
    <trkpt lat="45.7256" lon="5.0811"></trkpt>
  </trkseg></trk>
</gpx>
"""


def test_parse_request_mixes_coordinates_and_names():
    geocoder = FakeGeocoder({"Paris": (48.8566, 2.3522)})
    request = parse_request({
        "stops": [
            {"name": "London", "lat": 51.5, "lon": -0.12},
            {"name": "Paris", "vehicle": "rail"},
            {"name": "Lyon", "latitude": 45.76, "longitude": 4.84, "mode": "car",
             "path": [[2.35, 48.85], [3.0, 47.0], [4.84, 45.76]]},
        ],
        "fps": 24,
        "width": 1280,
        "height": 720,
    }, geocoder=geocoder)

    route = request.route
    assert geocoder.queries == ["Paris"]
    assert [wp.mode for wp in route.waypoints] == [FLIGHT, TRAIN, DRIVE]
    assert route.waypoints[1].lat == 48.8566
    assert route.legs[1].uses_geometry
    assert len(route.legs[1].path_geometry) == 3
    assert (request.fps, request.width, request.height) == (24, 1280, 720)


def test_default_budget_is_eight_seconds_per_leg():
    request = parse_request({"stops": [
        {"lat": 0, "lng": 0}, {"lat": 10, "lng": 10}, {"lat": 20, "lng": 20},
    ]})
    assert request.fps is None
    budget = request.budget(30)
    assert sum(budget) == int(DEFAULT_SECONDS_PER_LEG * 2 * 30)
    assert budget == [240, 240]


def test_budget_from_duration_and_frames_per_leg():
    stops = [{"lat": 0, "lng": 0}, {"lat": 10, "lng": 10}]
    assert parse_request({"stops": stops, "duration": 2, "fps": 30}).budget() == [60]
    assert parse_request({"stops": stops, "frames_per_leg": 12}).budget(60) == [12]


def test_name_only_stop_requires_name():
    with pytest.raises(InputError):
        parse_request({"stops": [{"lat": 1}, {"lat": 0, "lng": 0}]}, geocoder=FakeGeocoder({}))


def test_unknown_place_is_input_error():
    with pytest.raises(InputError, match="Atlantis"):
        parse_request({"stops": ["Atlantis", {"lat": 0, "lng": 0}]}, geocoder=FakeGeocoder({}))


@pytest.mark.parametrize("payload", [
    {"stops": [{"lat": 0, "lng": 0}]},
    {"stops": "Paris"},
    {"stops": [{"lat": 0, "lng": 0}, {"lat": 1, "lng": 1}], "fps": 0},
    {"stops": [{"lat": 0, "lng": 0}, {"lat": 1, "lng": 1}], "fps": "fast"},
    {"stops": [{"lat": "north", "lng": 0}, {"lat": 1, "lng": 1}]},
    {"stops": [{"lat": 0, "lng": 0}, {"lat": 1, "lng": 1, "mode": "drive", "path": [[1, 1]]}]},
    [],
])
def test_invalid_requests(payload):
    with pytest.raises(InputError):
        parse_request(payload, geocoder=FakeGeocoder({}))


def test_load_request_resolves_gpx_next_to_file(tmp_path):
    (tmp_path / "lyon.gpx").write_text(GPX)
    request_file = tmp_path / "trip.json"
    request_file.write_text(json.dumps([
        {"name": "Lyon", "lat": 45.764, "lng": 4.8357},
        {"name": "Airport", "lat": 45.7256, "lng": 5.0811, "mode": "drive", "path_gpx": "lyon.gpx"},
    ]))

    request = load_request(request_file, geocoder=FakeGeocoder({}))

    path = request.route.legs[0].path_geometry
    assert len(path) == 256
    assert path[0] == pytest.approx((4.8357, 45.764))
    assert path[-1] == pytest.approx((5.0811, 45.7256))


def test_load_request_bad_json(tmp_path):
    bad = tmp_path / "trip.json"
    bad.write_text("{")
    with pytest.raises(InputError):
        load_request(bad)
    with pytest.raises(InputError):
        load_request(tmp_path / "missing.json")
