import pytest

from journey_flyover.errors import EncodeError
from journey_flyover.video import encode, partial_path

from conftest import FRAME_SHAPE, FailingEncoder, FakeEncoder


def test_partial_path_is_hidden_sibling(tmp_path):
    assert partial_path(tmp_path / "trip.mp4") == tmp_path / ".trip.partial.mp4"


def test_encode_streams_frames_in_order_and_cleans_up(tmp_path, frame_writer):
    frame_dir = tmp_path / "frames_job"
    frame_writer(frame_dir, range(12))
    output = tmp_path / "out" / "trip.mp4"
    seen = []

    result = encode(
        frame_dir, 30, output,
        expected_frames=12,
        encoder_factory=FakeEncoder,
        progress_callback=lambda cur, total: seen.append((cur, total)),
    )

    assert result == output
    assert output.read_bytes() == b"fake-mp4"
    assert not partial_path(output).exists()
    assert not frame_dir.exists()

    encoder = FakeEncoder.instances[0]
    assert encoder.output_path == str(partial_path(output))
    assert (encoder.width, encoder.height, encoder.fps) == (FRAME_SHAPE[1], FRAME_SHAPE[0], 30)
    assert len(encoder.frames) == 12
    assert [frame[0] for frame in encoder.frames] == list(range(12))
    assert seen[-1] == (12, 12)


def test_encode_rejects_gaps(tmp_path, frame_writer):
    frame_dir = tmp_path / "frames_gap"
    frame_writer(frame_dir, [0, 1, 3])
    with pytest.raises(EncodeError, match="missing \\[2\\]"):
        encode(frame_dir, 30, tmp_path / "trip.mp4", encoder_factory=FakeEncoder)
    assert frame_dir.exists()
    assert not FakeEncoder.instances


def test_encode_rejects_wrong_count(tmp_path, frame_writer):
    frame_dir = tmp_path / "frames_short"
    frame_writer(frame_dir, range(4))
    with pytest.raises(EncodeError):
        encode(frame_dir, 30, tmp_path / "trip.mp4", expected_frames=5, encoder_factory=FakeEncoder)


def test_encode_rejects_empty_store(tmp_path):
    (tmp_path / "frames_empty").mkdir()
    with pytest.raises(EncodeError):
        encode(tmp_path / "frames_empty", 30, tmp_path / "trip.mp4", encoder_factory=FakeEncoder)


def test_encoder_failure_keeps_frames_and_leaves_no_output(tmp_path, frame_writer):
    frame_dir = tmp_path / "frames_fail"
    frame_writer(frame_dir, range(6))
    output = tmp_path / "trip.mp4"

    with pytest.raises(EncodeError, match="disk full"):
        encode(frame_dir, 30, output, encoder_factory=FailingEncoder)

    assert not output.exists()
    assert not partial_path(output).exists()
    assert len(list(frame_dir.iterdir())) == 6
    assert FakeEncoder.instances[0].aborted
