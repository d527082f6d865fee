# services/grading/service.py
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from services.grading.parser import COMBINED_FROM_MODEL
from services.grading.vision_client import GradingError, GradingOutcome
from services.intake.validation import (
    ImageUpload,
    describe_image,
    sanitize_filename,
    validate_upload,
)
from services.records.models import AIGrading, GradingRecord, ImageMetadata, iso, utc_now
from services.records.store import RecordStoreError

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"
GRADE_LABEL = "Analysis complete"


def generate_batch_id(now: datetime) -> str:
    return f"BATCH-{now:%Y%m%d}-{secrets.token_hex(3)}"


def blob_path(batch_id: str, filename: str, now: datetime) -> str:
    return f"{sanitize_filename(batch_id)}/{int(now.timestamp() * 1000)}-{sanitize_filename(filename)}"


@dataclass(frozen=True)
class GradeResult:
    batch_id: str
    image_url: str
    outcome: GradingOutcome
    record: Optional[GradingRecord]

    @property
    def persisted(self) -> bool:
        return self.record is not None

    @property
    def combined(self) -> int:
        # Same value the record stores: the sum of the parts.
        if self.record is not None:
            return self.record.ai.combined
        return self.outcome.smoothness + self.outcome.shininess

    def to_response(self) -> Dict[str, Any]:
        model_line = self.outcome.combined if self.outcome.combined_source == COMBINED_FROM_MODEL else None
        return {
            "grade": GRADE_LABEL,
            "reasoning": self.outcome.raw_text,
            "documentId": self.record.id if self.record else None,
            "batchId": self.batch_id,
            "imageUrl": self.image_url,
            "grades": {
                "smoothness": self.outcome.smoothness,
                "shininess": self.outcome.shininess,
                "combined": self.combined,
            },
            "modelCombined": model_line,
            "confidence": self.outcome.confidence,
            "processingTimeMs": self.outcome.processing_time_ms,
            "persisted": self.persisted,
        }


class GradingService:
    """
    One grading request end to end:
      validate -> store blob -> grade -> create record (pending)

    Compensation:
      - any GradingError deletes the just-stored blob, then propagates
      - a record-store failure keeps the blob (the caller gets its URL) and
        returns the result with persisted=False
    """

    def __init__(
        self,
        *,
        grader: Any,
        storage: Any,
        records: Any,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.grader = grader
        self.storage = storage
        self.records = records
        self.clock = clock

    def grade_upload(
        self,
        upload: Optional[ImageUpload],
        *,
        batch_id: Optional[str] = None,
        technician: Optional[str] = None,
        station: Optional[str] = None,
        batch_info: Optional[str] = None,
    ) -> GradeResult:
        validate_upload(upload)

        now = self.clock()
        batch_id = (batch_id or "").strip() or generate_batch_id(now)

        stored = self.storage.store(
            upload.data,
            blob_path(batch_id, upload.filename, now),
            {"batchId": batch_id, "contentType": upload.content_type, "originalFilename": upload.filename},
        )
        logger.info("stored upload batch=%s bytes=%d uri=%s", batch_id, upload.size, stored.uri)

        try:
            outcome = self.grader.grade(upload.data, upload.content_type)
        except GradingError as e:
            logger.warning("grading failed (%s); removing %s", type(e).__name__, stored.uri)
            self.storage.delete(stored.uri)
            raise

        record = self._persist(
            batch_id=batch_id,
            outcome=outcome,
            image=ImageMetadata(
                original_image_url=stored.uri,
                image_size_label=describe_image(upload.data),
                capture_timestamp=iso(now),
            ),
            technician=technician or ANONYMOUS,
            station=station,
            batch_info=batch_info,
        )
        return GradeResult(batch_id=batch_id, image_url=stored.uri, outcome=outcome, record=record)

    def _persist(
        self,
        *,
        batch_id: str,
        outcome: GradingOutcome,
        image: ImageMetadata,
        technician: str,
        station: Optional[str],
        batch_info: Optional[str],
    ) -> Optional[GradingRecord]:
        try:
            return self.records.create(
                batch_id=batch_id,
                ai=AIGrading(
                    smoothness=outcome.smoothness,
                    shininess=outcome.shininess,
                    confidence=outcome.confidence,
                    model_version=outcome.model_version,
                    processing_time_ms=outcome.processing_time_ms,
                ),
                image=image,
                technician_identity=technician,
                station=(station or "").strip() or None,
                batch_info=(batch_info or "").strip() or None,
            )
        except RecordStoreError:
            logger.warning(
                "grading result not persisted for batch=%s; blob left in place at %s",
                batch_id, image.original_image_url, exc_info=True,
            )
            return None
