import logging
import os
import tempfile

from errors import TranscodeFailure, TranscoderError
from models import JoinPlan
from planner import INTERMEDIATE_FORMAT

logger = logging.getLogger(__name__)

WORKSPACE_DIR = os.environ.get("WORKSPACE_DIR") or None


def _step(index: int, fn, *args):
    try:
        fn(*args)
    except TranscoderError as e:
        raise TranscodeFailure(index, str(e)) from e


def execute_plan(plan: JoinPlan, source_bytes: bytes, transcoder, workspace_dir: str | None = None) -> bytes:
    """Run a join plan against the transcoder and return the output bytes.

    All intermediate files live in a private temporary directory that is
    removed on every exit path. Any failing step aborts the plan with a
    TranscodeFailure carrying the step index; extract i is step i, the join
    is step N, and crossfade pair k of the fold is step N+k.
    """
    try:
        workspace = tempfile.TemporaryDirectory(prefix="splice-", dir=workspace_dir or WORKSPACE_DIR)
    except OSError as e:
        raise TranscodeFailure(None, f"could not create workspace: {e}") from e

    with workspace as workdir:
        source_path = os.path.join(workdir, f"source{plan.output_format}")
        try:
            with open(source_path, "wb") as f:
                f.write(source_bytes)
        except OSError as e:
            raise TranscodeFailure(None, f"could not write source: {e}") from e

        def path(name: str) -> str:
            return os.path.join(workdir, name)

        for step in plan.extracts:
            _step(step.index, transcoder.extract, source_path, step.start, step.duration, path(step.artifact))

        join = plan.join
        join_index = len(plan.extracts)
        if join.kind == "concat":
            _step(join_index, transcoder.concatenate, [path(a) for a in join.inputs], path(join.output))
        elif join.kind == "crossfade":
            running = path(join.inputs[0])
            last = len(join.inputs) - 2
            for k, name in enumerate(join.inputs[1:]):
                merged = path(join.output) if k == last else path(f"fold-{k:03d}{INTERMEDIATE_FORMAT}")
                _step(join_index + k, transcoder.crossfade, running, path(name), join.crossfade_duration, merged)
                running = merged

        output_path = path(join.output)
        try:
            with open(output_path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise TranscodeFailure(join_index, f"join produced no output: {e}") from e

    logger.info(f"Plan finished: {len(plan.extracts)} segment(s), {join.kind} join, {len(data)} bytes")
    return data
