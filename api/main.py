import logging
import os
from contextlib import asynccontextmanager

from database import init_db
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers import admin, marker_sets, process, upload
from storage import SqliteStorage, get_storage
from worker import reset_stuck_jobs, start_worker, stop_worker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up Audio Splicer API")
    storage = get_storage()
    if isinstance(storage, SqliteStorage):
        init_db()
    reset_stuck_jobs(storage)
    start_worker()
    yield
    logger.info("Shutting down Audio Splicer API")
    stop_worker()


app = FastAPI(title="Audio Splicer API", lifespan=lifespan)

_hostname = os.environ.get("SERVER_HOSTNAME", "")
_origins = [f"https://{_hostname}"] if _hostname else ["http://localhost", "http://localhost:8000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "X-Admin-Token"],
)

app.include_router(upload.router)
app.include_router(marker_sets.router)
app.include_router(process.router)
app.include_router(admin.router)


@app.get("/health")
def health():
    return {"ok": True}
