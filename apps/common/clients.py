from __future__ import annotations

import logging

from apps.common.settings import AppSettings
from services.grading.service import GradingService
from services.grading.vision_client import VisionGrader, VisionGraderConfig
from services.ingestion.storage import AzureBlobStorage, LocalStorage, Storage
from services.records.store import CosmosRecordStore, FileRecordStore, RecordStore

logger = logging.getLogger(__name__)


def build_storage(settings: AppSettings) -> Storage:
    if settings.storage_backend == "azure":
        return AzureBlobStorage(settings.blob_sas_url)
    return LocalStorage(root_dir=str(settings.storage_root))


def build_record_store(settings: AppSettings) -> RecordStore:
    if settings.record_backend == "cosmos":
        return CosmosRecordStore(
            endpoint=settings.cosmos_endpoint,
            key=settings.cosmos_key,
            database=settings.cosmos_database,
            container_name=settings.cosmos_container,
        )
    return FileRecordStore(root_dir=str(settings.records_root))


def build_grader(settings: AppSettings) -> VisionGrader:
    return VisionGrader(
        VisionGraderConfig(
            provider=settings.vision_provider,
            endpoint=settings.vision_endpoint,
            api_key=settings.vision_api_key,
            deployment=settings.vision_deployment,
            api_version=settings.vision_api_version,
            timeout_s=settings.vision_timeout_s,
        )
    )


def build_grading_service(settings: AppSettings, *, storage: Storage, records: RecordStore) -> GradingService:
    logger.info(
        "grading wired: vision=%s/%s storage=%s records=%s",
        settings.vision_provider,
        settings.vision_deployment,
        settings.storage_backend,
        settings.record_backend,
    )
    return GradingService(grader=build_grader(settings), storage=storage, records=records)
