# services/records/store.py
from __future__ import annotations

import json
import logging
import re
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from azure.core import MatchConditions
from azure.core.exceptions import AzureError
from azure.cosmos import CosmosClient
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosResourceNotFoundError,
)

from services.records.models import (
    DOCUMENT_TYPE,
    AIGrading,
    GradingRecord,
    ImageMetadata,
    Review,
    iso,
    make_record_id,
    utc_now,
)
from services.records.review import ReviewConflict, apply_review, check_version
from services.validation.schema_validation import validate_with_schema

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 10
RECORD_SCHEMA = "grading_result"

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class RecordStoreError(RuntimeError):
    pass


class RecordNotFound(RecordStoreError):
    pass


class RecordStoreUnavailable(RecordStoreError):
    """Any backend failure. Provider error detail stays in the log."""


class RecordStore(Protocol):
    def create(
        self,
        *,
        batch_id: str,
        ai: AIGrading,
        image: ImageMetadata,
        technician_identity: str,
        station: Optional[str] = None,
        batch_info: Optional[str] = None,
    ) -> GradingRecord: ...
    def get_by_id(self, record_id: str, batch_id: str) -> GradingRecord: ...
    def update_review(
        self,
        record_id: str,
        batch_id: str,
        smoothness: float,
        shininess: float,
        *,
        expected_version: Optional[int] = None,
    ) -> GradingRecord: ...
    def list_by_batch(self, batch_id: str) -> List[GradingRecord]: ...
    def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[GradingRecord]: ...


def default_batch_info(day: date) -> str:
    return f"Batch-{day.isoformat()}"


def new_record(
    *,
    batch_id: str,
    ai: AIGrading,
    image: ImageMetadata,
    technician_identity: str,
    station: Optional[str],
    batch_info: Optional[str],
    now: datetime,
) -> GradingRecord:
    """Fresh record: review pending, technician scores unset, version 1."""
    ts = iso(now)
    if not image.capture_timestamp:
        image = ImageMetadata(
            original_image_url=image.original_image_url,
            image_size_label=image.image_size_label or "unknown",
            capture_timestamp=ts,
        )
    record = GradingRecord(
        id=make_record_id(batch_id, now),
        batch_id=batch_id,
        image=image,
        ai=ai,
        review=Review(
            technician_identity=technician_identity,
            station=station or "unknown",
            batch_info=batch_info or default_batch_info(now.date()),
        ),
        created_at=ts,
        updated_at=ts,
    )
    ok, msg = validate_with_schema(record.to_document(), RECORD_SCHEMA)
    if not ok:
        raise RecordStoreError(f"invalid grading record: {msg}")
    return record


def newest_first(records: List[GradingRecord]) -> List[GradingRecord]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


class FileRecordStore:
    """
    One JSON document per record at <root>/<batch>/<id>.json.
    Writes go through tmp + replace; updates are serialized by an in-process lock.
    """

    def __init__(self, root_dir: str, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._lock = threading.Lock()

    @staticmethod
    def _safe(key: str) -> str:
        return _UNSAFE_KEY_CHARS.sub("_", key) or "_"

    def _path(self, record_id: str, batch_id: str) -> Path:
        return self.root / self._safe(batch_id) / f"{self._safe(record_id)}.json"

    def _write(self, path: Path, doc: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(doc, indent=2), encoding="utf-8")
        tmp.replace(path)

    def _read(self, path: Path) -> Dict[str, Any]:
        return json.loads(path.read_text(encoding="utf-8"))

    def _load_all(self, pattern: str) -> List[GradingRecord]:
        out = []
        try:
            for p in self.root.glob(pattern):
                doc = self._read(p)
                if doc.get("documentType") == DOCUMENT_TYPE:
                    out.append(GradingRecord.from_document(doc))
        except (OSError, ValueError, KeyError) as e:
            logger.exception("failed to scan records under %s", self.root)
            raise RecordStoreUnavailable("record store unavailable") from e
        return out

    def create(
        self,
        *,
        batch_id: str,
        ai: AIGrading,
        image: ImageMetadata,
        technician_identity: str,
        station: Optional[str] = None,
        batch_info: Optional[str] = None,
    ) -> GradingRecord:
        record = new_record(
            batch_id=batch_id,
            ai=ai,
            image=image,
            technician_identity=technician_identity,
            station=station,
            batch_info=batch_info,
            now=self.clock(),
        )
        path = self._path(record.id, batch_id)
        with self._lock:
            if path.exists():
                raise RecordStoreUnavailable(f"record {record.id} already exists")
            try:
                self._write(path, record.to_document())
            except OSError as e:
                logger.exception("failed to write record %s", record.id)
                raise RecordStoreUnavailable("record store unavailable") from e
        logger.info("created record id=%s batch=%s", record.id, batch_id)
        return record

    def get_by_id(self, record_id: str, batch_id: str) -> GradingRecord:
        path = self._path(record_id, batch_id)
        if not path.exists():
            raise RecordNotFound(f"record {record_id} not found in batch {batch_id}")
        try:
            doc = self._read(path)
        except (OSError, ValueError) as e:
            logger.exception("failed to read record %s", record_id)
            raise RecordStoreUnavailable("record store unavailable") from e
        if doc.get("batchId") != batch_id:
            raise RecordNotFound(f"record {record_id} not found in batch {batch_id}")
        return GradingRecord.from_document(doc)

    def update_review(
        self,
        record_id: str,
        batch_id: str,
        smoothness: float,
        shininess: float,
        *,
        expected_version: Optional[int] = None,
    ) -> GradingRecord:
        with self._lock:
            current = self.get_by_id(record_id, batch_id)
            check_version(current, expected_version)
            updated = apply_review(current, smoothness, shininess, now=self.clock())
            try:
                self._write(self._path(record_id, batch_id), updated.to_document())
            except OSError as e:
                logger.exception("failed to update record %s", record_id)
                raise RecordStoreUnavailable("record store unavailable") from e
        return updated

    def list_by_batch(self, batch_id: str) -> List[GradingRecord]:
        records = self._load_all(f"{self._safe(batch_id)}/*.json")
        return newest_first([r for r in records if r.batch_id == batch_id])

    def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[GradingRecord]:
        if limit <= 0:
            return []
        return newest_first(self._load_all("*/*.json"))[:limit]


class CosmosRecordStore:
    """Cosmos DB container partitioned on /batchId."""

    BATCH_QUERY = (
        "SELECT * FROM c WHERE c.batchId = @batchId AND c.documentType = @documentType "
        "ORDER BY c.timestamps.createdAt DESC"
    )
    RECENT_QUERY = (
        "SELECT * FROM c WHERE c.documentType = @documentType "
        "ORDER BY c.timestamps.createdAt DESC OFFSET 0 LIMIT @limit"
    )

    def __init__(
        self,
        *,
        endpoint: Optional[str] = None,
        key: Optional[str] = None,
        database: Optional[str] = None,
        container_name: Optional[str] = None,
        container: Any = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if container is None:
            client = CosmosClient(endpoint, credential=key)
            container = client.get_database_client(database).get_container_client(container_name)
        self.container = container
        self.clock = clock

    def create(
        self,
        *,
        batch_id: str,
        ai: AIGrading,
        image: ImageMetadata,
        technician_identity: str,
        station: Optional[str] = None,
        batch_info: Optional[str] = None,
    ) -> GradingRecord:
        record = new_record(
            batch_id=batch_id,
            ai=ai,
            image=image,
            technician_identity=technician_identity,
            station=station,
            batch_info=batch_info,
            now=self.clock(),
        )
        try:
            created = self.container.create_item(body=record.to_document())
        except AzureError as e:
            logger.exception("cosmos create failed for %s", record.id)
            raise RecordStoreUnavailable("record store unavailable") from e
        logger.info("created record id=%s batch=%s", record.id, batch_id)
        return GradingRecord.from_document(created)

    def get_by_id(self, record_id: str, batch_id: str) -> GradingRecord:
        try:
            doc = self.container.read_item(item=record_id, partition_key=batch_id)
        except CosmosResourceNotFoundError as e:
            raise RecordNotFound(f"record {record_id} not found in batch {batch_id}") from e
        except AzureError as e:
            logger.exception("cosmos read failed for %s", record_id)
            raise RecordStoreUnavailable("record store unavailable") from e
        return GradingRecord.from_document(doc)

    def update_review(
        self,
        record_id: str,
        batch_id: str,
        smoothness: float,
        shininess: float,
        *,
        expected_version: Optional[int] = None,
    ) -> GradingRecord:
        current = self.get_by_id(record_id, batch_id)
        check_version(current, expected_version)
        updated = apply_review(current, smoothness, shininess, now=self.clock())

        kwargs: Dict[str, Any] = {}
        if current.etag:
            kwargs = {"etag": current.etag, "match_condition": MatchConditions.IfNotModified}
        try:
            doc = self.container.replace_item(item=record_id, body=updated.to_document(), **kwargs)
        except CosmosAccessConditionFailedError as e:
            raise ReviewConflict(f"record {record_id} was modified concurrently") from e
        except CosmosResourceNotFoundError as e:
            raise RecordNotFound(f"record {record_id} not found in batch {batch_id}") from e
        except AzureError as e:
            logger.exception("cosmos replace failed for %s", record_id)
            raise RecordStoreUnavailable("record store unavailable") from e
        return GradingRecord.from_document(doc)

    def _query(self, query: str, parameters: List[Dict[str, Any]], **kwargs: Any) -> List[GradingRecord]:
        try:
            items = list(self.container.query_items(query=query, parameters=parameters, **kwargs))
        except AzureError as e:
            logger.exception("cosmos query failed")
            raise RecordStoreUnavailable("record store unavailable") from e
        return [GradingRecord.from_document(doc) for doc in items]

    def list_by_batch(self, batch_id: str) -> List[GradingRecord]:
        return self._query(
            self.BATCH_QUERY,
            [
                {"name": "@batchId", "value": batch_id},
                {"name": "@documentType", "value": DOCUMENT_TYPE},
            ],
            partition_key=batch_id,
        )

    def list_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[GradingRecord]:
        if limit <= 0:
            return []
        return self._query(
            self.RECENT_QUERY,
            [
                {"name": "@documentType", "value": DOCUMENT_TYPE},
                {"name": "@limit", "value": int(limit)},
            ],
            enable_cross_partition_query=True,
        )
