import logging
from typing import Any, List, Optional

from apps.review_ui.domain import ReviewJob, ReviewResult
from services.records.models import GradingRecord
from services.records.review import ReviewService

logger = logging.getLogger(__name__)


def to_job(record: GradingRecord) -> ReviewJob:
    return ReviewJob(
        id=record.id,
        batch_id=record.batch_id,
        status=record.status,
        image_url=record.image.original_image_url,
        image_size=record.image.image_size_label,
        created_at=record.created_at,
        version=record.version,
        ai_smoothness=record.ai.smoothness,
        ai_shininess=record.ai.shininess,
        ai_combined=record.ai.combined,
        ai_confidence=record.ai.confidence,
        technician=record.review.technician_identity,
        station=record.review.station,
        tech_smoothness=record.review.technician_smoothness,
        tech_shininess=record.review.technician_shininess,
        tech_combined=record.review.technician_combined,
    )


class RecordStoreAdapter:
    def __init__(self, records: Any, storage: Any):
        self.records = records
        self.storage = storage
        self.reviews = ReviewService(records)

    def get_records(self, batch_id: str = "", limit: int = 50) -> List[GradingRecord]:
        batch_id = batch_id.strip()
        if batch_id:
            return self.records.list_by_batch(batch_id)
        return self.records.list_recent(limit)

    def get_jobs(self, status_filter: str = "ALL", batch_id: str = "", limit: int = 50) -> List[ReviewJob]:
        if status_filter == "PENDING":
            return [to_job(r) for r in self.reviews.pending(limit, batch_id.strip() or None)]
        jobs = []
        for record in self.get_records(batch_id, limit):
            if status_filter != "ALL" and record.status != status_filter.lower():
                continue
            jobs.append(to_job(record))
        return jobs

    def load_image_bytes(self, uri: str) -> Optional[bytes]:
        if not uri:
            return None
        try:
            return self.storage.get_bytes(uri=uri)
        except Exception:
            logger.exception("could not load image %s", uri)
            return None

    def save_review(self, review: ReviewResult) -> ReviewJob:
        record = self.reviews.submit(
            review.job_id,
            review.batch_id,
            review.smoothness,
            review.shininess,
            expected_version=review.version,
        )
        logger.info("console review by %s on %s", review.reviewer, record.id)
        return to_job(record)

    def accept_ai(self, job: ReviewJob, reviewer: str) -> ReviewJob:
        record = self.reviews.accept_ai(job.id, job.batch_id, expected_version=job.version)
        logger.info("console accept-AI by %s on %s", reviewer, record.id)
        return to_job(record)
