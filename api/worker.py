import logging
import os
import threading

from errors import InvalidTransition
from executor import execute_plan
from jobs import JobTracker, output_filename
from planner import plan_join
from storage import get_storage
from transcoder import get_transcoder

logger = logging.getLogger(__name__)

WORKER_COUNT = int(os.environ.get("WORKER_COUNT", "1"))
POLL_INTERVAL_S = float(os.environ.get("WORKER_POLL_INTERVAL_S", "5"))
RELEASE_SOURCE_AFTER_JOB = os.environ.get("RELEASE_SOURCE_AFTER_JOB", "false").lower() == "true"

_worker_threads: list[threading.Thread] = []
_stop_event = threading.Event()
_wake_event = threading.Event()


def notify_worker():
    """Wake idle workers so a freshly submitted job starts without waiting for the next poll."""
    _wake_event.set()


def _process_job(tracker: JobTracker, job, transcoder):
    """Run one claimed job: extract segments, join them, store the output."""
    logger.info(f"Processing job {job.id} for asset {job.source_asset_id}")
    storage = tracker.storage

    try:
        asset = storage.get_asset(job.source_asset_id)
        if asset is None:
            raise RuntimeError(f"Audio file {job.source_asset_id} not found")

        source = storage.get_source_bytes(asset.id)
        if source is None:
            raise RuntimeError(f"Audio bytes for {asset.id} are no longer available")

        plan = plan_join(job.segments, job.join_mode, job.crossfade_duration, asset.format)
        output = execute_plan(plan, source, transcoder)
        tracker.complete(job.id, output, output_filename(job.id, asset.format))

    except Exception as e:
        error_msg = str(e)
        logger.error(f"Job {job.id} failed: {error_msg}", exc_info=True)
        try:
            tracker.fail(job.id, error_msg)
        except InvalidTransition as te:
            logger.warning(f"Could not mark job {job.id} failed: {te}")

    if RELEASE_SOURCE_AFTER_JOB and storage.release_source_if_idle(job.source_asset_id):
        logger.info(f"Released source bytes for asset {job.source_asset_id}")


def run_pending(storage=None, transcoder=None, limit: int | None = None) -> int:
    """Process pending jobs until none are left (or ``limit`` is reached). Returns the count run."""
    tracker = JobTracker(storage or get_storage())
    transcoder = transcoder or get_transcoder()
    processed = 0
    while limit is None or processed < limit:
        job = tracker.claim_next()
        if job is None:
            break
        _process_job(tracker, job, transcoder)
        processed += 1
    return processed


def reset_stuck_jobs(storage=None):
    """Fail any jobs left in 'processing' by a previous crash/restart.

    Their workspaces went away with the old process, and processing may not
    step back to pending, so they are closed out as failed. Callers may
    resubmit. Runs before the worker threads start.
    """
    tracker = JobTracker(storage or get_storage())
    stuck = tracker.storage.list_jobs("processing")
    for job in stuck:
        try:
            tracker.fail(job.id, "Interrupted by server restart")
        except InvalidTransition:
            pass  # finished meanwhile
    if stuck:
        logger.warning(f"Failed {len(stuck)} stuck processing job(s) on startup")
    else:
        logger.info("No stuck processing jobs found on startup")


def _worker_loop():
    """Background worker: poll for pending jobs and process them."""
    logger.info("Worker thread started")
    while not _stop_event.is_set():
        try:
            if run_pending(limit=1) == 0:
                # No pending jobs; wait for a submit or the next poll
                _wake_event.wait(timeout=POLL_INTERVAL_S)
                _wake_event.clear()

        except Exception as e:
            logger.error(f"Worker loop error: {e}", exc_info=True)
            _stop_event.wait(timeout=10.0)

    logger.info("Worker thread stopped")


def start_worker(count: int | None = None):
    _stop_event.clear()
    for i in range(count or WORKER_COUNT):
        thread = threading.Thread(target=_worker_loop, daemon=True, name=f"splice-worker-{i}")
        thread.start()
        _worker_threads.append(thread)


def stop_worker():
    _stop_event.set()
    _wake_event.set()
    for thread in _worker_threads:
        thread.join(timeout=30)
    _worker_threads.clear()
