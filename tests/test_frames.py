import pytest

from journey_flyover.errors import InputError
from journey_flyover.frames import (
    FrameDriver,
    frame_requests,
    leg_frame_budget,
    resolve_budget,
    uniform_budget,
)


def test_uniform_frame_index_formulas():
    requests = list(frame_requests([20, 20, 20]))
    total = 60
    assert [r.index for r in requests] == list(range(total))
    for r in requests:
        assert r.leg_index == r.index // 20
        assert r.local_t == (r.index % 20) / 19
        assert r.global_t == r.index / (total - 1)


@pytest.mark.parametrize("budget", [[2], [2, 2], [7, 3, 11], [50, 2, 9, 30]])
def test_frame_index_invariants(budget):
    requests = list(frame_requests(budget))
    assert len(requests) == sum(budget)
    assert requests[0].global_t == 0.0
    assert requests[-1].global_t == 1.0
    legs = [r.leg_index for r in requests]
    assert legs == sorted(legs)
    assert all(0.0 <= r.local_t <= 1.0 for r in requests)
    for leg in range(len(budget)):
        ts = [r.local_t for r in requests if r.leg_index == leg]
        assert ts[0] == 0.0 and ts[-1] == 1.0


def test_leg_frame_budget_sums_and_minimum():
    budget = leg_frame_budget(101, 4)
    assert sum(budget) == 101
    assert min(budget) >= 2
    assert max(budget) - min(budget) <= 1


def test_leg_frame_budget_weights():
    budget = leg_frame_budget(100, 3, weights=[1.0, 0.0, 3.0])
    assert sum(budget) == 100
    assert budget[1] == 2
    assert budget[2] > budget[0]


def test_leg_frame_budget_rejects_too_few_frames():
    with pytest.raises(InputError):
        leg_frame_budget(5, 3)


def test_uniform_budget_requires_multiple():
    assert uniform_budget(60, 30) == [30, 30]
    with pytest.raises(InputError):
        uniform_budget(61, 30)
    with pytest.raises(InputError):
        uniform_budget(10, 1)


def test_resolve_budget_forms():
    assert resolve_budget(2, budget=[3, 4]) == [3, 4]
    assert resolve_budget(3, frames_per_leg=10) == [10, 10, 10]
    assert resolve_budget(2, total_frames=60) == [30, 30]
    with pytest.raises(InputError):
        resolve_budget(3, frames_per_leg=10, total_frames=20)
    with pytest.raises(InputError):
        resolve_budget(2, budget=[10])
    with pytest.raises(InputError):
        resolve_budget(2)


def test_driver_states_follow_route_modes(mixed_route):
    driver = FrameDriver(mixed_route, [3, 3, 3, 3])
    states = list(driver.states())
    assert [s.mode for s in states[::3]] == [leg.mode for leg in mixed_route.legs]
    assert [s.index for s in states] == list(range(12))


def test_driver_rejects_mismatched_budget(two_stop_route):
    with pytest.raises(InputError):
        FrameDriver(two_stop_route, [10, 10])
