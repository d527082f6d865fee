# services/records/review.py
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, List, Optional

from services.records.models import STATUS_PENDING, GradingRecord, iso

logger = logging.getLogger(__name__)


class ReviewConflict(RuntimeError):
    """The record changed since the caller read it (stale version token)."""


def check_version(record: GradingRecord, expected_version: Optional[int]) -> None:
    if expected_version is not None and int(expected_version) != record.version:
        raise ReviewConflict(
            f"record {record.id} is at version {record.version}, caller expected {expected_version}"
        )


def apply_review(
    record: GradingRecord,
    smoothness: float,
    shininess: float,
    *,
    now: datetime,
) -> GradingRecord:
    """
    pending -> completed (or completed -> completed with new values).

    Only the review sub-object, updatedAt and version change. Values are not
    clamped here; callers validate the 0-5 range before submitting.
    """
    review = replace(
        record.review,
        technician_smoothness=smoothness,
        technician_shininess=shininess,
    )
    return replace(record, review=review, updated_at=iso(now), version=record.version + 1)


class ReviewService:
    """Technician-facing transitions on top of a record store."""

    def __init__(self, store: Any) -> None:
        self.store = store

    def submit(
        self,
        document_id: str,
        batch_id: str,
        smoothness: float,
        shininess: float,
        *,
        expected_version: Optional[int] = None,
    ) -> GradingRecord:
        record = self.store.update_review(
            document_id,
            batch_id,
            smoothness,
            shininess,
            expected_version=expected_version,
        )
        logger.info(
            "review saved id=%s batch=%s technician=(%s, %s) version=%s",
            record.id, record.batch_id, smoothness, shininess, record.version,
        )
        return record

    def accept_ai(
        self,
        document_id: str,
        batch_id: str,
        *,
        expected_version: Optional[int] = None,
    ) -> GradingRecord:
        record = self.store.get_by_id(document_id, batch_id)
        return self.submit(
            document_id,
            batch_id,
            record.ai.smoothness,
            record.ai.shininess,
            expected_version=record.version if expected_version is None else expected_version,
        )

    def pending(self, limit: int = 50, batch_id: Optional[str] = None) -> List[GradingRecord]:
        if batch_id:
            records = self.store.list_by_batch(batch_id)
        else:
            records = self.store.list_recent(limit)
        return [r for r in records if r.status == STATUS_PENDING]
