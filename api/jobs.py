import logging
import uuid
from datetime import datetime, timezone

from errors import InvalidTransition, JobNotFound, OutputUnavailable
from models import ProcessingJob, Segment

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"processing"},
    "processing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def output_filename(job_id: str, output_format: str) -> str:
    return f"mixed-audio-{job_id}{output_format}"


class JobTracker:
    """Owns the job lifecycle: pending -> processing -> completed | failed.

    Every transition is a compare-and-set against the store, so a job can be
    claimed by only one worker and terminal states are never left.
    """

    def __init__(self, storage):
        self.storage = storage

    def create(
        self,
        source_asset_id: str,
        join_mode: str,
        segments: list[Segment],
        crossfade_duration: float | None = None,
    ) -> ProcessingJob:
        job = ProcessingJob(
            id=str(uuid.uuid4()),
            source_asset_id=source_asset_id,
            join_mode=join_mode,
            crossfade_duration=crossfade_duration if join_mode == "crossfade" else None,
            segments=list(segments),
            status="pending",
            created_at=_now(),
        )
        self.storage.create_job(job)
        logger.info(f"Job {job.id} created: {len(segments)} segment(s), {join_mode} join, asset {source_asset_id}")
        return job

    def get(self, job_id: str) -> ProcessingJob:
        job = self.storage.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    def _transition(self, job_id: str, to_status: str, **fields) -> ProcessingJob:
        current = self.get(job_id)
        if to_status not in TRANSITIONS[current.status]:
            raise InvalidTransition(f"Job {job_id} cannot go from {current.status} to {to_status}")
        updated = self.storage.update_job(job_id, current.status, status=to_status, **fields)
        if updated is None:
            raise InvalidTransition(f"Job {job_id} changed state concurrently (was {current.status})")
        return updated

    def start(self, job_id: str) -> ProcessingJob:
        return self._transition(job_id, "processing", started_at=_now())

    def claim_next(self) -> ProcessingJob | None:
        """Move the oldest pending job to processing and return it."""
        for job_id in self.storage.pending_job_ids():
            try:
                return self.start(job_id)
            except (InvalidTransition, JobNotFound):
                continue  # claimed by another worker
        return None

    def complete(self, job_id: str, output: bytes, filename: str) -> ProcessingJob:
        self.storage.put_output(job_id, output)
        try:
            job = self._transition(
                job_id,
                "completed",
                completed_at=_now(),
                output_filename=filename,
                output_size=len(output),
                error_msg=None,
            )
        except Exception:
            self.storage.discard_output(job_id)
            raise
        logger.info(f"Job {job_id} completed: {filename} ({len(output)} bytes)")
        return job

    def fail(self, job_id: str, error: str) -> ProcessingJob:
        job = self._transition(job_id, "failed", completed_at=_now(), error_msg=error)
        logger.info(f"Job {job_id} marked failed")
        return job

    def take_output(self, job_id: str) -> tuple[ProcessingJob, bytes]:
        """Hand out a completed job's output once; later calls raise OutputUnavailable(gone=True)."""
        job = self.get(job_id)
        if job.status == "failed":
            raise OutputUnavailable(f"Job failed: {job.error_msg or 'unknown error'}")
        if job.status != "completed":
            raise OutputUnavailable(f"Job is {job.status}")
        if job.downloaded_at:
            raise OutputUnavailable("Output was already downloaded", gone=True)

        data = self.storage.take_output(job_id)
        if data is None:
            raise OutputUnavailable("Output was already downloaded", gone=True)
        # status stays 'completed'; only the download stamp changes
        job = self.storage.update_job(job_id, "completed", downloaded_at=_now()) or job
        logger.info(f"Job {job_id} output downloaded ({len(data)} bytes), storage released")
        return job, data
