# services/records/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DOCUMENT_TYPE = "grading_result"

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_record_id(batch_id: str, ts: datetime) -> str:
    return f"grade-{batch_id}-{int(ts.timestamp() * 1000)}"


@dataclass(frozen=True)
class ImageMetadata:
    original_image_url: str
    image_size_label: str = "unknown"
    capture_timestamp: str = ""

    def to_document(self) -> Dict[str, Any]:
        return {
            "originalImageUrl": self.original_image_url,
            "imageSizeLabel": self.image_size_label,
            "captureTimestamp": self.capture_timestamp,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ImageMetadata":
        return cls(
            original_image_url=doc.get("originalImageUrl", ""),
            image_size_label=doc.get("imageSizeLabel", "unknown"),
            capture_timestamp=doc.get("captureTimestamp", ""),
        )


@dataclass(frozen=True)
class AIGrading:
    smoothness: int
    shininess: int
    confidence: float
    model_version: str
    processing_time_ms: int

    @property
    def combined(self) -> int:
        return self.smoothness + self.shininess

    def to_document(self) -> Dict[str, Any]:
        return {
            "smoothness": self.smoothness,
            "shininess": self.shininess,
            "combined": self.combined,
            "confidence": self.confidence,
            "modelVersion": self.model_version,
            "processingTimeMs": self.processing_time_ms,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "AIGrading":
        return cls(
            smoothness=doc["smoothness"],
            shininess=doc["shininess"],
            confidence=doc.get("confidence", 0.0),
            model_version=doc.get("modelVersion", ""),
            processing_time_ms=doc.get("processingTimeMs", 0),
        )


@dataclass(frozen=True)
class Review:
    technician_identity: str
    station: str = "unknown"
    batch_info: str = ""
    technician_smoothness: Optional[float] = None
    technician_shininess: Optional[float] = None

    @property
    def status(self) -> str:
        # Derived so that "completed iff both technician scores are set" cannot drift.
        if self.technician_smoothness is not None and self.technician_shininess is not None:
            return STATUS_COMPLETED
        return STATUS_PENDING

    @property
    def technician_combined(self) -> Optional[float]:
        if self.technician_smoothness is None or self.technician_shininess is None:
            return None
        return round(self.technician_smoothness + self.technician_shininess, 2)

    def to_document(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "technicianIdentity": self.technician_identity,
            "station": self.station,
            "batchInfo": self.batch_info,
            "technicianSmoothness": self.technician_smoothness,
            "technicianShininess": self.technician_shininess,
            "technicianCombined": self.technician_combined,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Review":
        return cls(
            technician_identity=doc.get("technicianIdentity", ""),
            station=doc.get("station", "unknown"),
            batch_info=doc.get("batchInfo", ""),
            technician_smoothness=doc.get("technicianSmoothness"),
            technician_shininess=doc.get("technicianShininess"),
        )


@dataclass(frozen=True)
class GradingRecord:
    id: str
    batch_id: str
    image: ImageMetadata
    ai: AIGrading
    review: Review
    created_at: str
    updated_at: str
    version: int = 1
    document_type: str = DOCUMENT_TYPE
    # Backend concurrency token (Cosmos _etag); never serialized back to clients.
    etag: Optional[str] = field(default=None, compare=False)

    @property
    def status(self) -> str:
        return self.review.status

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "documentType": self.document_type,
            "imageMetadata": self.image.to_document(),
            "aiGrading": self.ai.to_document(),
            "review": self.review.to_document(),
            "timestamps": {"createdAt": self.created_at, "updatedAt": self.updated_at},
            "version": self.version,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "GradingRecord":
        ts = doc.get("timestamps") or {}
        return cls(
            id=doc["id"],
            batch_id=doc["batchId"],
            document_type=doc.get("documentType", DOCUMENT_TYPE),
            image=ImageMetadata.from_document(doc.get("imageMetadata") or {}),
            ai=AIGrading.from_document(doc["aiGrading"]),
            review=Review.from_document(doc.get("review") or {}),
            created_at=ts.get("createdAt", ""),
            updated_at=ts.get("updatedAt", ""),
            version=int(doc.get("version", 1)),
            etag=doc.get("_etag"),
        )
