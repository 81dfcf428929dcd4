import threading

import pytest

from journey_flyover.errors import CaptureError, ConcurrencyRejected, EncodeError, InputError
from journey_flyover.frame_store import frame_index, list_frames
from journey_flyover.job import JobGuard, JobRunner, JobStatus
from journey_flyover.video import partial_path

from conftest import FailingEncoder, FakeBinding, FakeCapture, FakeEncoder


def make_runner(tmp_path, binding, fail_at=None, **kwargs):
    kwargs.setdefault("encoder_factory", FakeEncoder)
    kwargs.setdefault("ready_poll_interval", 0.001)
    capture = FakeCapture(binding, fail_at)
    return JobRunner(binding, capture, work_dir=tmp_path / "work", **kwargs)


def test_two_stop_flight_renders_sixty_frames(tmp_path, two_stop_route):
    binding = FakeBinding()
    runner = make_runner(tmp_path, binding)
    output = tmp_path / "journey.mp4"

    job = runner.run(two_stop_route, output, fps=30, total_frames=60)

    assert job.status is JobStatus.DONE
    assert job.artifact == output
    assert output.exists()
    assert job.frames_captured == 60
    assert job.duration_s == pytest.approx(2.0)
    assert [s.index for s in binding.applied] == list(range(60))

    encoder = FakeEncoder.instances[0]
    assert len(encoder.frames) == 60
    assert encoder.fps == 30
    assert [frame[0] for frame in encoder.frames] == list(range(60))
    assert not job.frame_dir.exists()
    assert runner.state == JobGuard.IDLE
    assert not job.degraded


def test_capture_error_keeps_earlier_frames(tmp_path, two_stop_route):
    binding = FakeBinding()
    runner = make_runner(tmp_path, binding, fail_at=30)
    output = tmp_path / "journey.mp4"

    with pytest.raises(CaptureError) as excinfo:
        runner.run(two_stop_route, output, fps=30, total_frames=60)

    job = excinfo.value.job
    assert job is runner.last_job
    assert job.status is JobStatus.FAILED
    assert excinfo.value.frame_index == 30
    assert "GPU context lost" in str(excinfo.value)
    assert [frame_index(p) for p in list_frames(job.frame_dir)] == list(range(30))
    assert not output.exists()
    assert not partial_path(output).exists()
    assert not FakeEncoder.instances
    assert runner.state == JobGuard.IDLE


def test_encode_error_fails_job_and_keeps_frames(tmp_path, two_stop_route):
    runner = make_runner(tmp_path, FakeBinding(), encoder_factory=FailingEncoder)
    output = tmp_path / "journey.mp4"

    with pytest.raises(EncodeError) as excinfo:
        runner.run(two_stop_route, output, fps=30, total_frames=20)

    job = excinfo.value.job
    assert job.status is JobStatus.FAILED
    assert len(list_frames(job.frame_dir)) == 20
    assert not output.exists()
    assert runner.state == JobGuard.IDLE


def test_ready_timeout_degrades_but_completes(tmp_path, two_stop_route):
    binding = FakeBinding(never_ready=True)
    runner = make_runner(tmp_path, binding, ready_timeout=0.01)

    job = runner.run(two_stop_route, tmp_path / "journey.mp4", fps=30, total_frames=10)

    assert job.status is JobStatus.DONE
    assert job.degraded
    assert job.warnings and "not ready" in job.warnings[0]


def test_waits_for_ready_before_first_frame(tmp_path, two_stop_route):
    binding = FakeBinding(ready_after=3)
    runner = make_runner(tmp_path, binding)
    job = runner.run(two_stop_route, tmp_path / "journey.mp4", fps=30, total_frames=10)
    assert binding.polls == 4
    assert not job.degraded


def test_second_job_rejected_while_running(tmp_path, two_stop_route):
    binding = FakeBinding()
    binding.release = threading.Event()
    runner = make_runner(tmp_path, binding)
    errors = []

    def first_job():
        try:
            runner.run(two_stop_route, tmp_path / "first.mp4", fps=30, total_frames=10)
        except Exception as e:
            errors.append(e)

    worker = threading.Thread(target=first_job)
    worker.start()
    assert binding.entered.wait(timeout=10)
    assert runner.state == JobGuard.RUNNING
    owner = runner.guard.owner

    with pytest.raises(ConcurrencyRejected):
        runner.run(two_stop_route, tmp_path / "second.mp4", fps=30, total_frames=10)
    assert runner.guard.owner == owner
    assert not (tmp_path / "second.mp4").exists()

    binding.release.set()
    worker.join(timeout=10)
    assert not errors
    assert runner.state == JobGuard.IDLE

    binding.release = None
    job = runner.run(two_stop_route, tmp_path / "second.mp4", fps=30, total_frames=10)
    assert job.status is JobStatus.DONE


def test_new_job_after_failure_succeeds(tmp_path, two_stop_route):
    binding = FakeBinding()
    capture = FakeCapture(binding, fail_at=3)
    runner = JobRunner(binding, capture, work_dir=tmp_path / "work",
                       encoder_factory=FakeEncoder, ready_poll_interval=0.001)
    with pytest.raises(CaptureError) as excinfo:
        runner.run(two_stop_route, tmp_path / "a.mp4", fps=30, total_frames=10)
    stale = excinfo.value.job.frame_dir
    assert stale.exists()

    capture.fail_at = None
    job = runner.run(two_stop_route, tmp_path / "b.mp4", fps=30, total_frames=10)
    assert job.status is JobStatus.DONE
    assert not stale.exists()


def test_bad_input_rejected_before_frame_work(tmp_path, two_stop_route):
    binding = FakeBinding()
    runner = make_runner(tmp_path, binding)
    with pytest.raises(InputError):
        runner.run(two_stop_route, tmp_path / "journey.mp4", fps=0, total_frames=10)
    with pytest.raises(InputError):
        runner.run(two_stop_route, tmp_path / "journey.mp4", fps=30, total_frames=1)
    assert not binding.applied
    assert binding.polls == 0
    assert runner.state == JobGuard.IDLE


def test_guard_releases_on_exception():
    guard = JobGuard()
    with pytest.raises(KeyError):
        with guard.hold():
            assert guard.state == JobGuard.RUNNING
            raise KeyError("boom")
    assert guard.state == JobGuard.IDLE
    assert guard.owner is None
