class ValidationError(Exception):
    """Request rejected before any job is created or engine call is made."""

    code = "validation_error"


class TooFewMarkers(ValidationError):
    code = "too_few_markers"


class OddMarkerCount(ValidationError):
    code = "odd_marker_count"


class MarkerOutOfRange(ValidationError):
    code = "marker_out_of_range"


class InvalidSegment(ValidationError):
    code = "invalid_segment"


class OverlappingSegments(ValidationError):
    code = "overlapping_segments"


class InvalidJoinMode(ValidationError):
    code = "invalid_join_mode"


class MissingCrossfadeDuration(ValidationError):
    code = "missing_crossfade_duration"


class InvalidCrossfadeDuration(ValidationError):
    code = "invalid_crossfade_duration"


class CrossfadeTooLong(ValidationError):
    code = "crossfade_too_long"


class AssetNotFound(LookupError):
    pass


class JobNotFound(LookupError):
    pass


class InvalidTransition(RuntimeError):
    pass


class OutputUnavailable(RuntimeError):
    """Job output cannot be served (not finished, failed, or already downloaded)."""

    def __init__(self, message: str, gone: bool = False):
        super().__init__(message)
        self.gone = gone


class TranscoderError(RuntimeError):
    """A single media engine invocation failed."""


class TranscodeFailure(RuntimeError):
    def __init__(self, step_index: int | None, diagnostic: str):
        self.step_index = step_index
        self.diagnostic = diagnostic
        where = f"step {step_index}" if step_index is not None else "workspace"
        super().__init__(f"Transcode failed at {where}: {diagnostic}")
