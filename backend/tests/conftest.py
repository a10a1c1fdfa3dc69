"""
Shared fixtures for the socrata_cache tests.

Each test gets its own in-memory SQLite database and a temporary downloads
directory. The Socrata source and the webhook are replaced by small fakes.
"""
import os

# Keep the module-level engine and app away from real files
os.environ.setdefault("SOCRATACACHE_DATABASE_URL", "sqlite://")
os.environ.setdefault("SOCRATACACHE_SCHEDULER_ENABLED", "false")
os.environ.setdefault("SOCRATACACHE_LOG_FORMAT", "text")

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from socrata_cache.core.db import Base
from socrata_cache.core.errors import SourceUnavailable
from socrata_cache.models.dataset import Dataset, DatasetStatus, new_dataset_id
from socrata_cache.models.resource import CacheResource
from socrata_cache.services.storage import ArtifactPaths


# =======================
# DATABASE
# =======================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def downloads_dir(tmp_path):
    path = tmp_path / "downloads"
    path.mkdir()
    return path


# =======================
# FAKES
# =======================

class FakeSocrataClient:
    """In-memory stand-in for SocrataClient."""

    def __init__(self):
        self.last_updated: Dict[str, datetime] = {}
        self.columns: Dict[str, List[str]] = {}
        self.payloads: Dict[str, bytes] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.streams: List["FakeStream"] = []

    def _maybe_fail(self, resource: CacheResource, operation: str):
        error = self.failures.get(f"{resource.resource_id}:{operation}")
        if error is not None:
            raise error

    def get_last_updated(self, resource: CacheResource) -> datetime:
        self.calls.append(("last_updated", resource.resource_id))
        self._maybe_fail(resource, "last_updated")
        if resource.resource_id not in self.last_updated:
            raise SourceUnavailable(resource.resource_id, "no data")
        return self.last_updated[resource.resource_id]

    def get_columns(self, resource: CacheResource) -> List[str]:
        self.calls.append(("columns", resource.resource_id))
        self._maybe_fail(resource, "columns")
        return resource.select_columns(self.columns.get(resource.resource_id, ["id", "name"]))

    def open_download_stream(self, resource: CacheResource, columns: List[str]):
        self.calls.append(("download", resource.resource_id, tuple(columns)))
        self._maybe_fail(resource, "download")
        payload = self.payloads.get(resource.resource_id, b"id,name\n1,a\n2,b\n")
        half = len(payload) // 2
        stream = FakeStream([payload[:half], payload[half:]])
        self.streams.append(stream)
        return stream


class FakeStream:
    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.closed = False

    def __iter__(self):
        return iter(self.chunks)

    def close(self):
        self.closed = True


class RecordingNotifier:
    def __init__(self):
        self.notifications: List[tuple] = []

    def notify(self, ds: Dataset):
        self.notifications.append((ds.dataset_id, ds.resource_id, ds.status.label))


class FailingNotifier(RecordingNotifier):
    """Records the call, then fails like an unreachable webhook."""

    def notify(self, ds: Dataset):
        super().notify(ds)
        raise RuntimeError("webhook down")


@pytest.fixture
def source():
    return FakeSocrataClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


# =======================
# FACTORIES
# =======================

def make_resource(resource_id: str = "R1", **overrides) -> CacheResource:
    values = {"resource_id": resource_id, "socrata_id": f"{resource_id.lower()}-abcd"}
    values.update(overrides)
    return CacheResource(**values)


@pytest.fixture
def make_dataset(db):
    """Insert a dataset row directly, bypassing the lifecycle checks."""

    def _make(
        resource_id: str = "R1",
        status: DatasetStatus = DatasetStatus.DOWNLOADED,
        created_at: Optional[datetime] = None,
        reference_date: Optional[datetime] = None,
        dataset_type: str = "csv",
    ) -> Dataset:
        created_at = created_at or datetime.now()
        ds = Dataset(
            dataset_id=new_dataset_id(),
            resource_id=resource_id,
            status=status,
            type=dataset_type,
            reference_date=reference_date or created_at,
            created_at=created_at,
            updated_at=created_at,
        )
        db.add(ds)
        db.commit()
        db.refresh(ds)
        return ds

    return _make


@pytest.fixture
def write_artifacts(downloads_dir):
    """Write the current and/or staging files of a dataset with given sizes."""

    def _write(ds: Dataset, current: int = 0, staging: int = 0) -> ArtifactPaths:
        paths = ArtifactPaths.build(downloads_dir, ds.resource_id, ds.dataset_id, ds.type)
        if current:
            paths.current.write_bytes(b"x" * current)
            paths.current_compressed.write_bytes(b"z" * (current // 10 or 1))
        if staging:
            paths.staging.write_bytes(b"x" * staging)
            paths.staging_compressed.write_bytes(b"z" * (staging // 10 or 1))
        return paths

    return _write


def days_ago(days: float, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now()) - timedelta(days=days)
