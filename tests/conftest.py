import json
import os

import database
import pytest
from errors import TranscoderError
from fastapi.testclient import TestClient
from main import app
from storage import MemoryStorage, SqliteStorage, get_storage
from transcoder import get_transcoder


class FakeTranscoder:
    """Stands in for ffmpeg. Artifacts are small JSON files recording their duration."""

    def __init__(self, fail_on: str | None = None, fail_at_call: int = 1):
        self.calls: list[tuple] = []
        self.workdirs: set[str] = set()
        self.outputs: list[str] = []
        self.fail_on = fail_on
        self.fail_at_call = fail_at_call
        self._counts: dict[str, int] = {}

    def _maybe_fail(self, op: str):
        self._counts[op] = self._counts.get(op, 0) + 1
        if op == self.fail_on and self._counts[op] == self.fail_at_call:
            raise TranscoderError(f"ffmpeg exited with 1: simulated {op} failure")

    def _write(self, path: str, duration: float):
        self.workdirs.add(os.path.dirname(path))
        self.outputs.append(os.path.basename(path))
        with open(path, "w") as f:
            json.dump({"duration": round(duration, 6)}, f)

    @staticmethod
    def duration_of(path_or_bytes) -> float:
        if isinstance(path_or_bytes, bytes):
            return json.loads(path_or_bytes)["duration"]
        with open(path_or_bytes) as f:
            return json.load(f)["duration"]

    def extract(self, source_path, start, duration, output_path):
        self.calls.append(("extract", start, duration))
        assert os.path.exists(source_path)
        self._maybe_fail("extract")
        self._write(output_path, duration)

    def concatenate(self, input_paths, output_path):
        self.calls.append(("concatenate", len(input_paths)))
        self._maybe_fail("concatenate")
        self._write(output_path, sum(self.duration_of(p) for p in input_paths))

    def crossfade(self, first_path, second_path, duration, output_path):
        self.calls.append(("crossfade", duration))
        self._maybe_fail("crossfade")
        self._write(output_path, self.duration_of(first_path) + self.duration_of(second_path) - duration)


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()


@pytest.fixture
def sqlite_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_PATH", str(tmp_path / "splicer.db"))
    database.init_db()
    return SqliteStorage(media_dir=str(tmp_path / "media"))


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    if request.param == "memory":
        return MemoryStorage()
    return request.getfixturevalue("sqlite_storage")


@pytest.fixture
def asset(store):
    return store.create_asset("song.mp3", 60.0, ".mp3", b"ID3 fake mp3 bytes")


@pytest.fixture
def client(store, fake_transcoder):
    app.dependency_overrides[get_storage] = lambda: store
    app.dependency_overrides[get_transcoder] = lambda: fake_transcoder
    yield TestClient(app)
    app.dependency_overrides.clear()
