"""Storage backends for source assets, markers, jobs and job outputs.

Both backends expose the same narrow interface so the pipeline does not care
where records and bytes live:

- ``SqliteStorage``: records in SQLite (see ``database.py``), bytes as files
  under ``MEDIA_DIR``. Survives restarts.
- ``MemoryStorage``: lock-guarded dicts, gone with the process.

``update_job`` is a compare-and-set on the job status; it returns ``None``
when the stored status no longer matches ``expected_status``.
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone

from database import db
from models import Marker, ProcessingJob, Segment, SourceAsset

logger = logging.getLogger(__name__)

MEDIA_DIR = os.environ.get("MEDIA_DIR", "/media")
STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "sqlite")

JOB_FIELDS = (
    "status",
    "started_at",
    "completed_at",
    "error_msg",
    "output_filename",
    "output_size",
    "downloaded_at",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryStorage:
    def __init__(self):
        self._lock = threading.Lock()
        self._assets: dict[str, SourceAsset] = {}
        self._bytes: dict[str, bytes] = {}
        self._markers: dict[str, list[Marker]] = {}
        self._jobs: dict[str, ProcessingJob] = {}
        self._outputs: dict[str, bytes] = {}

    # Source assets

    def create_asset(self, filename: str, duration: float, fmt: str, data: bytes) -> SourceAsset:
        asset = SourceAsset(id=str(uuid.uuid4()), filename=filename, duration=duration, format=fmt, uploaded_at=_now())
        with self._lock:
            self._assets[asset.id] = asset
            self._bytes[asset.id] = bytes(data)
        return asset

    def get_asset(self, asset_id: str) -> SourceAsset | None:
        with self._lock:
            return self._assets.get(asset_id)

    def get_source_bytes(self, asset_id: str) -> bytes | None:
        with self._lock:
            return self._bytes.get(asset_id)

    def get_source_duration(self, asset_id: str) -> float | None:
        asset = self.get_asset(asset_id)
        return asset.duration if asset else None

    def release_source_if_idle(self, asset_id: str) -> bool:
        """Drop the source bytes unless a pending or processing job still needs them."""
        with self._lock:
            active = any(
                j.source_asset_id == asset_id and j.status in ("pending", "processing") for j in self._jobs.values()
            )
            if active:
                return False
            return self._bytes.pop(asset_id, None) is not None

    def delete_asset(self, asset_id: str) -> bool:
        with self._lock:
            self._bytes.pop(asset_id, None)
            self._markers.pop(asset_id, None)
            for job_id in [j.id for j in self._jobs.values() if j.source_asset_id == asset_id]:
                del self._jobs[job_id]
                self._outputs.pop(job_id, None)
            return self._assets.pop(asset_id, None) is not None

    # Markers

    def replace_markers(self, asset_id: str, markers: list[Marker]) -> list[Marker]:
        saved = [Marker(timestamp=m.timestamp, order=m.order) for m in markers]
        with self._lock:
            self._markers[asset_id] = saved
        return list(saved)

    def get_markers(self, asset_id: str) -> list[Marker]:
        with self._lock:
            return list(self._markers.get(asset_id, []))

    # Jobs

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get_job(self, job_id: str) -> ProcessingJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self, status: str | None = None) -> list[ProcessingJob]:
        with self._lock:
            jobs = list(self._jobs.values())
        if status:
            jobs = [j for j in jobs if j.status == status]
        return sorted(jobs, key=lambda j: j.created_at)

    def pending_job_ids(self) -> list[str]:
        return [j.id for j in self.list_jobs("pending")]

    def count_active_jobs(self, asset_id: str) -> int:
        with self._lock:
            return sum(
                1
                for j in self._jobs.values()
                if j.source_asset_id == asset_id and j.status in ("pending", "processing")
            )

    def update_job(self, job_id: str, expected_status: str, **fields) -> ProcessingJob | None:
        unknown = set(fields) - set(JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != expected_status:
                return None
            updated = replace(job, **fields)
            self._jobs[job_id] = updated
            return updated

    # Outputs

    def put_output(self, job_id: str, data: bytes):
        with self._lock:
            self._outputs[job_id] = data

    def take_output(self, job_id: str) -> bytes | None:
        with self._lock:
            return self._outputs.pop(job_id, None)

    def discard_output(self, job_id: str):
        with self._lock:
            self._outputs.pop(job_id, None)


def _row_to_asset(row) -> SourceAsset:
    return SourceAsset(
        id=row["id"],
        filename=row["filename"],
        duration=row["duration"],
        format=row["format"],
        uploaded_at=row["uploaded_at"],
    )


def _row_to_job(row) -> ProcessingJob:
    return ProcessingJob(
        id=row["id"],
        source_asset_id=row["audio_file_id"],
        join_mode=row["join_mode"],
        crossfade_duration=row["crossfade_duration"],
        segments=[Segment(s["start_time"], s["end_time"]) for s in json.loads(row["segments"])],
        status=row["status"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error_msg=row["error_msg"],
        output_filename=row["output_filename"],
        output_size=row["output_size"],
        downloaded_at=row["downloaded_at"],
    )


def _unlink(path: str | None):
    if path and os.path.exists(path):
        os.unlink(path)
        logger.info(f"Deleted file: {path}")


class SqliteStorage:
    def __init__(self, media_dir: str | None = None):
        self.media_dir = media_dir or MEDIA_DIR
        self.sources_dir = os.path.join(self.media_dir, "sources")
        self.outputs_dir = os.path.join(self.media_dir, "outputs")

    # Source assets

    def create_asset(self, filename: str, duration: float, fmt: str, data: bytes) -> SourceAsset:
        asset = SourceAsset(id=str(uuid.uuid4()), filename=filename, duration=duration, format=fmt, uploaded_at=_now())
        os.makedirs(self.sources_dir, exist_ok=True)
        file_path = os.path.join(self.sources_dir, f"{asset.id}{fmt}")
        with open(file_path, "wb") as f:
            f.write(data)
        try:
            with db() as conn:
                conn.execute(
                    "INSERT INTO audio_files (id, filename, duration, format, file_path, uploaded_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (asset.id, filename, duration, fmt, file_path, asset.uploaded_at),
                )
        except Exception:
            _unlink(file_path)
            raise
        return asset

    def get_asset(self, asset_id: str) -> SourceAsset | None:
        with db() as conn:
            row = conn.execute("SELECT * FROM audio_files WHERE id=?", (asset_id,)).fetchone()
        return _row_to_asset(row) if row else None

    def get_source_bytes(self, asset_id: str) -> bytes | None:
        with db() as conn:
            row = conn.execute("SELECT file_path FROM audio_files WHERE id=?", (asset_id,)).fetchone()
        if not row or not row["file_path"] or not os.path.exists(row["file_path"]):
            return None
        with open(row["file_path"], "rb") as f:
            return f.read()

    def get_source_duration(self, asset_id: str) -> float | None:
        asset = self.get_asset(asset_id)
        return asset.duration if asset else None

    def release_source_if_idle(self, asset_id: str) -> bool:
        """Drop the source file unless a pending or processing job still needs it."""
        with db() as conn:
            # take the write lock before counting so no job can be queued in between
            conn.execute("BEGIN IMMEDIATE")
            active = conn.execute(
                "SELECT COUNT(*) FROM jobs WHERE audio_file_id=? AND status IN ('pending', 'processing')",
                (asset_id,),
            ).fetchone()[0]
            if active:
                return False
            row = conn.execute("SELECT file_path FROM audio_files WHERE id=?", (asset_id,)).fetchone()
            if not row or not row["file_path"]:
                return False
            conn.execute("UPDATE audio_files SET file_path=NULL WHERE id=?", (asset_id,))
        _unlink(row["file_path"])
        return True

    def delete_asset(self, asset_id: str) -> bool:
        with db() as conn:
            row = conn.execute("SELECT file_path FROM audio_files WHERE id=?", (asset_id,)).fetchone()
            if not row:
                return False
            outputs = conn.execute(
                "SELECT output_path FROM jobs WHERE audio_file_id=? AND output_path IS NOT NULL",
                (asset_id,),
            ).fetchall()
            conn.execute("DELETE FROM markers WHERE audio_file_id=?", (asset_id,))
            conn.execute("DELETE FROM jobs WHERE audio_file_id=?", (asset_id,))
            conn.execute("DELETE FROM audio_files WHERE id=?", (asset_id,))
        _unlink(row["file_path"])
        for out in outputs:
            _unlink(out["output_path"])
        return True

    # Markers

    def replace_markers(self, asset_id: str, markers: list[Marker]) -> list[Marker]:
        with db() as conn:
            conn.execute("DELETE FROM markers WHERE audio_file_id=?", (asset_id,))
            conn.executemany(
                'INSERT INTO markers (audio_file_id, timestamp, "order") VALUES (?, ?, ?)',
                [(asset_id, m.timestamp, m.order) for m in markers],
            )
        return [Marker(timestamp=m.timestamp, order=m.order) for m in markers]

    def get_markers(self, asset_id: str) -> list[Marker]:
        with db() as conn:
            rows = conn.execute(
                'SELECT timestamp, "order" FROM markers WHERE audio_file_id=? ORDER BY id',
                (asset_id,),
            ).fetchall()
        return [Marker(timestamp=r["timestamp"], order=r["order"]) for r in rows]

    # Jobs

    def create_job(self, job: ProcessingJob) -> ProcessingJob:
        with db() as conn:
            conn.execute(
                """
                INSERT INTO jobs (id, audio_file_id, join_mode, crossfade_duration, segments, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.source_asset_id,
                    job.join_mode,
                    job.crossfade_duration,
                    json.dumps([s.to_dict() for s in job.segments]),
                    job.status,
                    job.created_at,
                ),
            )
        return job

    def get_job(self, job_id: str) -> ProcessingJob | None:
        with db() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(self, status: str | None = None) -> list[ProcessingJob]:
        with db() as conn:
            if status:
                rows = conn.execute("SELECT * FROM jobs WHERE status=? ORDER BY created_at ASC, rowid ASC", (status,)).fetchall()
            else:
                rows = conn.execute("SELECT * FROM jobs ORDER BY created_at ASC, rowid ASC").fetchall()
        return [_row_to_job(r) for r in rows]

    def pending_job_ids(self) -> list[str]:
        with db() as conn:
            rows = conn.execute("SELECT id FROM jobs WHERE status='pending' ORDER BY created_at ASC, rowid ASC").fetchall()
        return [r["id"] for r in rows]

    def count_active_jobs(self, asset_id: str) -> int:
        with db() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM jobs WHERE audio_file_id=? AND status IN ('pending', 'processing')",
                (asset_id,),
            ).fetchone()[0]

    def update_job(self, job_id: str, expected_status: str, **fields) -> ProcessingJob | None:
        unknown = set(fields) - set(JOB_FIELDS)
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")
        if fields:
            assignments = ", ".join(f"{name}=?" for name in fields)
            with db() as conn:
                cur = conn.execute(
                    f"UPDATE jobs SET {assignments} WHERE id=? AND status=?",
                    (*fields.values(), job_id, expected_status),
                )
                if cur.rowcount != 1:
                    return None
        return self.get_job(job_id)

    # Outputs

    def _output_path(self, job_id: str) -> str:
        return os.path.join(self.outputs_dir, f"{job_id}.out")

    def put_output(self, job_id: str, data: bytes):
        os.makedirs(self.outputs_dir, exist_ok=True)
        path = self._output_path(job_id)
        with open(path, "wb") as f:
            f.write(data)
        with db() as conn:
            conn.execute("UPDATE jobs SET output_path=? WHERE id=?", (path, job_id))

    def take_output(self, job_id: str) -> bytes | None:
        with db() as conn:
            row = conn.execute("SELECT output_path FROM jobs WHERE id=?", (job_id,)).fetchone()
            if not row or not row["output_path"]:
                return None
            cur = conn.execute(
                "UPDATE jobs SET output_path=NULL WHERE id=? AND output_path IS NOT NULL",
                (job_id,),
            )
            if cur.rowcount != 1:
                return None
        path = row["output_path"]
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            data = f.read()
        _unlink(path)
        return data

    def discard_output(self, job_id: str):
        with db() as conn:
            row = conn.execute("SELECT output_path FROM jobs WHERE id=?", (job_id,)).fetchone()
            conn.execute("UPDATE jobs SET output_path=NULL WHERE id=?", (job_id,))
        if row:
            _unlink(row["output_path"])


_storage = None
_storage_lock = threading.Lock()


def get_storage():
    global _storage
    with _storage_lock:
        if _storage is None:
            _storage = MemoryStorage() if STORAGE_BACKEND == "memory" else SqliteStorage()
            logger.info(f"Using {type(_storage).__name__}")
        return _storage


def set_storage(storage):
    global _storage
    with _storage_lock:
        _storage = storage
