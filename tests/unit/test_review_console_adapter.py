from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from apps.review_ui.adapters import RecordStoreAdapter
from apps.review_ui.domain import ReviewResult
from services.ingestion.storage import AzureBlobStorage, LocalStorage
from services.records.models import AIGrading, ImageMetadata
from services.records.review import ReviewConflict
from services.records.store import FileRecordStore


class StepClock:
    def __init__(self):
        self.now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        t = self.now
        self.now += timedelta(seconds=1)
        return t


@pytest.fixture()
def adapter(tmp_path):
    records = FileRecordStore(str(tmp_path / "records"), clock=StepClock())
    return RecordStoreAdapter(records, LocalStorage(str(tmp_path / "blobs")))


def _seed(adapter, batch="BLK1", url=""):
    return adapter.records.create(
        batch_id=batch,
        ai=AIGrading(smoothness=2, shininess=3, confidence=0.8, model_version="gpt-4.1", processing_time_ms=10),
        image=ImageMetadata(original_image_url=url, image_size_label="1.0 KB"),
        technician_identity="anonymous",
    )


def test_jobs_filter_by_status(adapter):
    a = _seed(adapter)
    _seed(adapter, "BLK2")
    adapter.reviews.submit(a.id, "BLK1", 2, 3)

    assert [j.status for j in adapter.get_jobs("COMPLETED")] == ["completed"]
    assert len(adapter.get_jobs("PENDING")) == 1
    assert len(adapter.get_jobs("ALL")) == 2
    assert [j.batch_id for j in adapter.get_jobs("ALL", batch_id=" BLK2 ")] == ["BLK2"]


def test_save_review_and_stale_version(adapter):
    rec = _seed(adapter)
    (job,) = adapter.get_jobs("PENDING")

    done = adapter.save_review(
        ReviewResult(job_id=job.id, batch_id=job.batch_id, reviewer="qc", smoothness=4.0, shininess=4.5, version=job.version)
    )
    assert done.tech_combined == 8.5
    assert done.status == "completed"

    with pytest.raises(ReviewConflict):
        adapter.save_review(
            ReviewResult(job_id=rec.id, batch_id="BLK1", reviewer="qc", smoothness=1, shininess=1, version=job.version)
        )


def test_accept_ai(adapter):
    _seed(adapter)
    (job,) = adapter.get_jobs("PENDING")
    done = adapter.accept_ai(job, "qc")
    assert (done.tech_smoothness, done.tech_shininess, done.tech_combined) == (2, 3, 5)


def test_load_image_bytes(adapter):
    stored = adapter.storage.store(b"png", "BLK1/a.png")
    assert adapter.load_image_bytes(stored.uri) == b"png"
    assert adapter.load_image_bytes("") is None
    assert adapter.load_image_bytes("file:///definitely/not/here.png") is None


class PrivateContainer:
    """Blob container that only serves bytes through the SDK, never by bare URL."""

    url = "https://acct.blob.core.windows.net/potatoes"

    def __init__(self):
        self.blobs = {}

    def upload_blob(self, name, data, overwrite=False, metadata=None, content_settings=None):
        self.blobs[name] = data
        return SimpleNamespace(url=f"{self.url}/{name}?sv=2024&sig=secret")

    def download_blob(self, name):
        return SimpleNamespace(readall=lambda: self.blobs[name])


def test_load_image_bytes_from_blob_backend(tmp_path):
    container = PrivateContainer()
    adapter = RecordStoreAdapter(FileRecordStore(str(tmp_path / "records")), AzureBlobStorage(container=container))
    stored = adapter.storage.store(b"jpeg-bytes", "BLK1/17-a.jpg", {"contentType": "image/jpeg"})
    _seed(adapter, url=stored.uri)

    (job,) = adapter.get_jobs("PENDING")

    assert "sig=" not in job.image_url
    assert adapter.load_image_bytes(job.image_url) == b"jpeg-bytes"
    assert adapter.load_image_bytes(f"{container.url}/BLK1/missing.jpg") is None


def test_pending_queue_respects_batch_and_limit(adapter):
    for _ in range(3):
        _seed(adapter, "BLK1")
    _seed(adapter, "BLK2")

    assert len(adapter.get_jobs("PENDING", limit=2)) == 2
    assert {j.batch_id for j in adapter.get_jobs("PENDING", batch_id="BLK2")} == {"BLK2"}
