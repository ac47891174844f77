import os

import pytest
from conftest import FakeTranscoder
from errors import TranscodeFailure
from executor import execute_plan
from models import Segment
from planner import plan_join


def _run(plan, transcoder, workspace):
    return execute_plan(plan, b"source bytes", transcoder, workspace_dir=str(workspace))


def test_single_segment(tmp_path, fake_transcoder):
    plan = plan_join([Segment(2.0, 5.0)], "direct")
    out = _run(plan, fake_transcoder, tmp_path)
    assert FakeTranscoder.duration_of(out) == pytest.approx(3.0)
    assert fake_transcoder.calls == [("extract", 2.0, 3.0)]


def test_direct_join(tmp_path, fake_transcoder):
    plan = plan_join([Segment(0.0, 10.0), Segment(20.0, 30.0)], "direct")
    out = _run(plan, fake_transcoder, tmp_path)
    assert FakeTranscoder.duration_of(out) == pytest.approx(20.0)
    assert [c[0] for c in fake_transcoder.calls] == ["extract", "extract", "concatenate"]


def test_crossfade_fold(tmp_path, fake_transcoder):
    segments = [Segment(0.0, 10.0), Segment(20.0, 30.0), Segment(40.0, 45.0)]
    plan = plan_join(segments, "crossfade", crossfade_duration=1.0)
    out = _run(plan, fake_transcoder, tmp_path)
    assert FakeTranscoder.duration_of(out) == pytest.approx(25.0 - 2.0)
    assert [c[0] for c in fake_transcoder.calls] == ["extract"] * 3 + ["crossfade"] * 2


@pytest.mark.parametrize(
    "join_mode, fade, written",
    [
        ("direct", None, ["segment-000.wav", "segment-001.wav", "segment-002.wav", "joined.mp3"]),
        ("crossfade", 1.0, ["segment-000.wav", "segment-001.wav", "segment-002.wav", "fold-000.wav", "joined.mp3"]),
    ],
)
def test_mp3_encoded_only_for_final_output(tmp_path, fake_transcoder, join_mode, fade, written):
    segments = [Segment(0.0, 10.0), Segment(20.0, 30.0), Segment(40.0, 45.0)]
    plan = plan_join(segments, join_mode, fade, ".mp3")
    _run(plan, fake_transcoder, tmp_path)
    assert fake_transcoder.outputs == written


def test_workspace_removed_on_success(tmp_path, fake_transcoder):
    _run(plan_join([Segment(0.0, 10.0), Segment(20.0, 30.0)], "direct"), fake_transcoder, tmp_path)
    assert fake_transcoder.workdirs
    assert os.listdir(tmp_path) == []


@pytest.mark.parametrize(
    "fail_on, fail_at_call, step_index",
    [
        ("extract", 1, 0),
        ("extract", 2, 1),
        ("concatenate", 1, 2),
    ],
)
def test_direct_failure_reports_step(tmp_path, fail_on, fail_at_call, step_index):
    transcoder = FakeTranscoder(fail_on=fail_on, fail_at_call=fail_at_call)
    plan = plan_join([Segment(0.0, 10.0), Segment(20.0, 30.0)], "direct")
    with pytest.raises(TranscodeFailure) as exc:
        _run(plan, transcoder, tmp_path)
    assert exc.value.step_index == step_index
    assert "simulated" in exc.value.diagnostic
    assert os.listdir(tmp_path) == []


def test_failure_aborts_remaining_steps(tmp_path):
    transcoder = FakeTranscoder(fail_on="extract", fail_at_call=1)
    plan = plan_join([Segment(0.0, 10.0), Segment(20.0, 30.0)], "direct")
    with pytest.raises(TranscodeFailure):
        _run(plan, transcoder, tmp_path)
    assert len(transcoder.calls) == 1


def test_crossfade_pair_failure_index(tmp_path):
    transcoder = FakeTranscoder(fail_on="crossfade", fail_at_call=2)
    segments = [Segment(0.0, 10.0), Segment(20.0, 30.0), Segment(40.0, 45.0)]
    plan = plan_join(segments, "crossfade", crossfade_duration=1.0)
    with pytest.raises(TranscodeFailure) as exc:
        _run(plan, transcoder, tmp_path)
    assert exc.value.step_index == 4
    assert os.listdir(tmp_path) == []


def test_missing_workspace_root(tmp_path, fake_transcoder):
    plan = plan_join([Segment(0.0, 1.0)], "direct")
    with pytest.raises(TranscodeFailure) as exc:
        _run(plan, fake_transcoder, tmp_path / "does-not-exist")
    assert exc.value.step_index is None
