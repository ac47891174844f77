"""End-to-end checks against the real ffmpeg/ffprobe binaries.

Skipped when ffmpeg is not installed. Sources are synthesized WAV files so
durations are exact enough to compare against the planned output length.
"""

import shutil
import wave

import numpy as np
import pytest
from errors import TranscodeFailure
from executor import execute_plan
from models import Segment
from planner import plan_join
from transcoder import FfmpegTranscoder, probe_duration

pytestmark = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg not installed",
)

SAMPLE_RATE = 8000
TOLERANCE_S = 0.05
# encoder delay and frame padding
MP3_TOLERANCE_S = 0.15


def _sine_wav(path, seconds: float, freq: float = 440.0):
    t = np.linspace(0, seconds, int(SAMPLE_RATE * seconds), endpoint=False)
    samples = (0.3 * np.sin(2 * np.pi * freq * t) * 32767).astype(np.int16)
    with wave.open(str(path), "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(SAMPLE_RATE)
        w.writeframes(samples.tobytes())
    return path


@pytest.fixture(scope="module")
def source_bytes(tmp_path_factory):
    path = _sine_wav(tmp_path_factory.mktemp("src") / "source.wav", 40.0)
    return path.read_bytes()


def _output_duration(tmp_path, data: bytes) -> float:
    out = tmp_path / "out.wav"
    out.write_bytes(data)
    return probe_duration(str(out))


@pytest.mark.parametrize(
    "segments, join_mode, fade, expected",
    [
        ([Segment(2.0, 5.0)], "direct", None, 3.0),
        ([Segment(0.0, 10.0), Segment(20.0, 30.0)], "direct", None, 20.0),
        ([Segment(0.0, 10.0), Segment(20.0, 30.0)], "crossfade", 1.0, 19.0),
        ([Segment(0.0, 4.0), Segment(10.0, 14.0), Segment(30.0, 34.0)], "crossfade", 0.5, 11.0),
    ],
)
def test_output_duration_matches_plan(tmp_path, source_bytes, segments, join_mode, fade, expected):
    plan = plan_join(segments, join_mode, fade, ".wav")
    assert plan.expected_duration == pytest.approx(expected)
    data = execute_plan(plan, source_bytes, FfmpegTranscoder(), workspace_dir=str(tmp_path))
    assert _output_duration(tmp_path, data) == pytest.approx(expected, abs=TOLERANCE_S)


@pytest.fixture(scope="module")
def mp3_source_bytes(tmp_path_factory):
    src_dir = tmp_path_factory.mktemp("mp3src")
    wav = _sine_wav(src_dir / "source.wav", 40.0)
    mp3 = src_dir / "source.mp3"
    FfmpegTranscoder().extract(str(wav), 0.0, 40.0, str(mp3))
    return mp3.read_bytes()


@pytest.mark.parametrize(
    "segments, join_mode, fade, expected",
    [
        ([Segment(2.0, 5.0)], "direct", None, 3.0),
        ([Segment(0.0, 10.0), Segment(20.0, 30.0)], "direct", None, 20.0),
        ([Segment(0.0, 10.0), Segment(20.0, 30.0)], "crossfade", 1.0, 19.0),
    ],
)
def test_mp3_output_duration_matches_plan(tmp_path, mp3_source_bytes, segments, join_mode, fade, expected):
    plan = plan_join(segments, join_mode, fade, ".mp3")
    data = execute_plan(plan, mp3_source_bytes, FfmpegTranscoder(), workspace_dir=str(tmp_path))
    out = tmp_path / "out.mp3"
    out.write_bytes(data)
    assert data[:3] == b"ID3" or data[0] == 0xFF
    assert probe_duration(str(out)) == pytest.approx(expected, abs=MP3_TOLERANCE_S)


def test_engine_error_is_transcode_failure(tmp_path):
    plan = plan_join([Segment(0.0, 1.0)], "direct", None, ".wav")
    workspace = tmp_path / "work"
    workspace.mkdir()
    with pytest.raises(TranscodeFailure) as exc:
        execute_plan(plan, b"not audio at all", FfmpegTranscoder(), workspace_dir=str(workspace))
    assert exc.value.step_index == 0
    assert list(workspace.iterdir()) == []


def test_missing_binary(tmp_path, source_bytes):
    plan = plan_join([Segment(0.0, 1.0)], "direct", None, ".wav")
    transcoder = FfmpegTranscoder(ffmpeg_bin="ffmpeg-does-not-exist")
    with pytest.raises(TranscodeFailure) as exc:
        execute_plan(plan, source_bytes, transcoder, workspace_dir=str(tmp_path))
    assert "could not be started" in exc.value.diagnostic


def test_probe_duration(tmp_path):
    path = _sine_wav(tmp_path / "probe.wav", 2.5)
    assert probe_duration(str(path)) == pytest.approx(2.5, abs=0.01)
