import json
import logging
import os
import subprocess

from errors import TranscoderError

logger = logging.getLogger(__name__)

FFMPEG_BIN = os.environ.get("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.environ.get("FFPROBE_BIN", "ffprobe")
FFMPEG_TIMEOUT_S = float(os.environ.get("FFMPEG_TIMEOUT_S", "300"))
OUTPUT_BITRATE = os.environ.get("OUTPUT_BITRATE", "192k")


def _run(cmd: list[str], timeout: float) -> subprocess.CompletedProcess:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise TranscoderError(f"{cmd[0]} timed out after {timeout:.0f}s")
    except OSError as e:
        raise TranscoderError(f"{cmd[0]} could not be started: {e}")

    if result.returncode != 0:
        raise TranscoderError(f"{cmd[0]} exited with {result.returncode}: {result.stderr[-500:].strip()}")
    return result


def probe_duration(path: str, timeout: float | None = None) -> float:
    """Return the duration in seconds reported by ffprobe."""
    result = _run(
        [
            FFPROBE_BIN,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path,
        ],
        timeout or FFMPEG_TIMEOUT_S,
    )
    info = json.loads(result.stdout or "{}")
    duration = info.get("format", {}).get("duration")
    if duration is None:
        for stream in info.get("streams", []):
            if stream.get("codec_type") == "audio":
                duration = stream.get("duration")
                break
    if duration is None:
        raise TranscoderError(f"ffprobe reported no duration for {os.path.basename(path)}")
    return float(duration)


class FfmpegTranscoder:
    """Cut, concatenate and crossfade audio files with the ffmpeg CLI.

    The output codec follows the output file's extension: WAV is written as
    16-bit PCM, anything else as MP3 at OUTPUT_BITRATE.
    """

    def __init__(self, ffmpeg_bin: str = FFMPEG_BIN, timeout: float = FFMPEG_TIMEOUT_S, bitrate: str = OUTPUT_BITRATE):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout
        self.bitrate = bitrate

    def _codec_args(self, output_path: str) -> list[str]:
        if output_path.lower().endswith(".wav"):
            return ["-acodec", "pcm_s16le"]
        return ["-acodec", "libmp3lame", "-ab", self.bitrate]

    def _ffmpeg(self, args: list[str], output_path: str):
        cmd = [self.ffmpeg_bin, "-hide_banner", "-nostdin", "-y", *args, "-vn", *self._codec_args(output_path), output_path]
        logger.debug(f"Running {' '.join(cmd)}")
        _run(cmd, self.timeout)

    def extract(self, source_path: str, start: float, duration: float, output_path: str):
        logger.info(f"Extracting {start:.3f}s +{duration:.3f}s -> {os.path.basename(output_path)}")
        self._ffmpeg(
            ["-ss", f"{start:.3f}", "-t", f"{duration:.3f}", "-i", source_path],
            output_path,
        )

    def concatenate(self, input_paths: list[str], output_path: str):
        logger.info(f"Concatenating {len(input_paths)} segments -> {os.path.basename(output_path)}")
        inputs = []
        for path in input_paths:
            inputs += ["-i", path]
        graph = "".join(f"[{i}:a]" for i in range(len(input_paths))) + f"concat=n={len(input_paths)}:v=0:a=1[out]"
        self._ffmpeg([*inputs, "-filter_complex", graph, "-map", "[out]"], output_path)

    def crossfade(self, first_path: str, second_path: str, duration: float, output_path: str):
        logger.info(f"Crossfading {duration:.2f}s -> {os.path.basename(output_path)}")
        graph = f"[0:a][1:a]acrossfade=d={duration:.3f}:c1=tri:c2=tri[out]"
        self._ffmpeg(
            ["-i", first_path, "-i", second_path, "-filter_complex", graph, "-map", "[out]"],
            output_path,
        )


_transcoder: FfmpegTranscoder | None = None


def get_transcoder() -> FfmpegTranscoder:
    global _transcoder
    if _transcoder is None:
        _transcoder = FfmpegTranscoder()
    return _transcoder
