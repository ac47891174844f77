from dataclasses import dataclass, field
from typing import Optional

JOIN_MODES = ("direct", "crossfade")
JOB_STATUSES = ("pending", "processing", "completed", "failed")


@dataclass
class Marker:
    timestamp: float
    order: int = 0


@dataclass
class Segment:
    start_time: float
    end_time: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return {"start_time": self.start_time, "end_time": self.end_time}


@dataclass
class SourceAsset:
    id: str
    filename: str
    duration: float
    format: str  # '.mp3' | '.wav'
    uploaded_at: str


@dataclass
class ProcessingJob:
    id: str
    source_asset_id: str
    join_mode: str  # 'direct' | 'crossfade'
    crossfade_duration: Optional[float]
    segments: list[Segment]
    status: str  # 'pending' | 'processing' | 'completed' | 'failed'
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_msg: Optional[str] = None
    output_filename: Optional[str] = None
    output_size: Optional[int] = None
    downloaded_at: Optional[str] = None


@dataclass
class ExtractStep:
    index: int
    start: float
    duration: float
    artifact: str


@dataclass
class JoinStep:
    kind: str  # 'identity' | 'concat' | 'crossfade'
    inputs: list[str]
    output: str
    crossfade_duration: Optional[float] = None


@dataclass
class JoinPlan:
    extracts: list[ExtractStep]
    join: JoinStep
    output_format: str
    segments: list[Segment] = field(default_factory=list)

    @property
    def expected_duration(self) -> float:
        total = sum(s.duration for s in self.segments)
        if self.join.kind == "crossfade":
            total -= (len(self.segments) - 1) * (self.join.crossfade_duration or 0.0)
        return total
