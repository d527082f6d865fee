# tests/integration/test_api_contract.py
from __future__ import annotations

from types import SimpleNamespace

import jwt
import pytest
from fastapi.testclient import TestClient

from apps.api.app_factory import create_app
from apps.api.auth import SessionVerifier
from services.grading import vision_client as vc
from services.grading.service import GradingService
from services.ingestion.storage import LocalStorage
from services.records.store import FileRecordStore

SECRET = "test-secret"
JPEG_2MB = b"\xff\xd8\xff\xe0" + b"\0" * (2 * 1024 * 1024 - 4)


class FakeGrader:
    def __init__(self, exc=None):
        self.exc = exc
        self.calls = []

    def grade(self, data, mime):
        self.calls.append((len(data), mime))
        if self.exc is not None:
            raise self.exc
        return vc.GradingOutcome(
            shininess=4,
            smoothness=3,
            combined=7,
            raw_text="Shininess: 4/5\nSmoothness: 3/5\nCombined: 7/10\nEven skins, light sheen.",
            confidence=0.9,
            model_version="gpt-4.1",
            processing_time_ms=640,
            combined_source="model",
        )


def build(tmp_path, grader=None):
    storage = LocalStorage(str(tmp_path / "blobs"))
    records = FileRecordStore(str(tmp_path / "records"))
    grader = grader or FakeGrader()
    app = create_app(
        grading=GradingService(grader=grader, storage=storage, records=records),
        records=records,
        verifier=SessionVerifier(SECRET),
    )
    return TestClient(app), records, grader


def blob_files(tmp_path):
    root = tmp_path / "blobs"
    return [p for p in root.rglob("*") if p.is_file() and not p.name.endswith(".meta.json")]


def test_health(tmp_path):
    client, _, _ = build(tmp_path)
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_grade_end_to_end(tmp_path):
    client, records, grader = build(tmp_path)

    r = client.post(
        "/grade",
        files={"image": ("tray.jpg", JPEG_2MB, "image/jpeg")},
        data={"batchId": "BLK1", "station": "line-2"},
    )

    assert r.status_code == 200
    assert r.headers["cache-control"].startswith("no-store")
    result = r.json()["result"]
    assert result["grades"] == {"smoothness": 3, "shininess": 4, "combined": 7}
    assert result["batchId"] == "BLK1"
    assert result["persisted"] is True
    assert result["confidence"] == 0.9
    assert result["reasoning"].endswith("light sheen.")
    assert grader.calls == [(len(JPEG_2MB), "image/jpeg")]

    (rec,) = records.list_by_batch("BLK1")
    assert rec.id == result["documentId"]
    assert rec.status == "pending"
    assert rec.review.station == "line-2"
    assert rec.review.technician_identity == "anonymous"
    assert rec.image.original_image_url == result["imageUrl"]
    assert len(blob_files(tmp_path)) == 1


def test_grade_accepts_blk_number_alias(tmp_path):
    client, records, _ = build(tmp_path)
    r = client.post(
        "/grade",
        files={"image": ("a.png", b"\x89PNG-data", "image/png")},
        data={"blkNumber": "BLK9"},
    )
    assert r.status_code == 200
    assert r.json()["result"]["batchId"] == "BLK9"
    assert len(records.list_by_batch("BLK9")) == 1


def test_grade_records_signed_in_technician(tmp_path):
    client, records, _ = build(tmp_path)
    token = jwt.encode({"email": "qc@farm.example"}, SECRET, algorithm="HS256")
    r = client.post(
        "/grade",
        files={"image": ("a.png", b"\x89PNG-data", "image/png")},
        data={"batchId": "BLK1"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 200
    (rec,) = records.list_by_batch("BLK1")
    assert rec.review.technician_identity == "qc@farm.example"


def test_oversized_png_is_rejected_without_side_effects(tmp_path):
    client, records, grader = build(tmp_path)
    r = client.post(
        "/grade",
        files={"image": ("big.png", b"\x89PNG" + b"\0" * (7 * 1024 * 1024), "image/png")},
        data={"batchId": "BLK1"},
    )
    assert r.status_code == 400
    assert r.json() == {"error": "File too large. Maximum size is 6MB."}
    assert grader.calls == []
    assert blob_files(tmp_path) == []
    assert records.list_recent() == []


def test_missing_image_is_400(tmp_path):
    client, _, _ = build(tmp_path)
    r = client.post("/grade", data={"batchId": "BLK1"})
    assert r.status_code == 400
    assert r.json() == {"error": "No image uploaded."}


def test_wrong_type_is_400(tmp_path):
    client, _, _ = build(tmp_path)
    r = client.post("/grade", files={"image": ("a.gif", b"GIF89a", "image/gif")})
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid file type. Please upload a JPEG or PNG image."}


@pytest.mark.parametrize(
    "exc, status, message",
    [
        (vc.GradingTimeout("read timeout after 30s"), 408, "Request timed out. Please try with a smaller image."),
        (vc.GradingRateLimited("429 from provider"), 429, "Rate limit exceeded. Please try again later."),
        (vc.GradingAuthFailure("401 invalid key"), 500, "Authentication error with the vision service."),
        (vc.EmptyGradingResponse(), 500, "No grading result received from API."),
        (vc.GradingFailed("upstream 502"), 500, "Failed to process image. Please try again."),
    ],
)
def test_grading_failures_map_to_status_and_clean_up(tmp_path, exc, status, message):
    client, records, _ = build(tmp_path, FakeGrader(exc=exc))

    r = client.post(
        "/grade",
        files={"image": ("tray.jpg", JPEG_2MB, "image/jpeg")},
        data={"batchId": "BLK1"},
    )

    assert r.status_code == status
    assert r.json() == {"error": message}
    assert blob_files(tmp_path) == []
    assert records.list_by_batch("BLK1") == []


class ScriptedCompletions:
    def __init__(self, text):
        self.text = text

    def create(self, **kwargs):
        message = SimpleNamespace(content=self.text)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def scripted_grader(text):
    client = SimpleNamespace(chat=SimpleNamespace(completions=ScriptedCompletions(text)))
    return vc.VisionGrader(vc.VisionGraderConfig(deployment="gpt-4.1"), client=client)


def test_reported_combined_is_the_stored_combined(tmp_path):
    client, records, _ = build(tmp_path, scripted_grader("Shininess: 4/5\nSmoothness: 3/5\nCombined: 8/10"))

    r = client.post("/grade", files={"image": ("a.png", b"\x89PNG-data", "image/png")}, data={"batchId": "BLK1"})

    assert r.status_code == 200
    result = r.json()["result"]
    (rec,) = records.list_by_batch("BLK1")
    assert result["grades"]["combined"] == rec.ai.combined == 7
    assert result["modelCombined"] == 8


def test_out_of_range_model_scores_are_not_stored(tmp_path):
    client, records, _ = build(tmp_path, scripted_grader("Shininess: 9/5\nSmoothness: 7/5\nCombined: 16/10"))

    r = client.post("/grade", files={"image": ("a.png", b"\x89PNG-data", "image/png")}, data={"batchId": "BLK1"})

    assert r.status_code == 200
    result = r.json()["result"]
    assert result["grades"] == {"smoothness": 0, "shininess": 0, "combined": 0}
    assert result["modelCombined"] is None
    (rec,) = records.list_by_batch("BLK1")
    assert (rec.ai.smoothness, rec.ai.shininess, rec.ai.combined) == (0, 0, 0)
