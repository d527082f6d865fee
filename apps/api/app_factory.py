# apps/api/app_factory.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from apps.api.auth import SessionVerifier
from apps.api.reviews import create_reviews_router, error_response
from services.grading.service import GradingService
from services.grading.vision_client import (
    GradingAuthFailure,
    GradingError,
    GradingRateLimited,
    GradingTimeout,
)
from services.ingestion.storage import StorageError
from services.intake.validation import ImageUpload, ValidationError
from services.records.store import DEFAULT_LIST_LIMIT

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store, max-age=0"}


def _grading_status(err: GradingError) -> int:
    if isinstance(err, GradingTimeout):
        return 408
    if isinstance(err, GradingRateLimited):
        return 429
    # GradingAuthFailure included: operator problem, reported as a server fault.
    return 500


def create_app(
    *,
    grading: GradingService,
    records: Any,
    verifier: SessionVerifier,
    default_limit: int = DEFAULT_LIST_LIMIT,
) -> FastAPI:
    app = FastAPI(title="Potato Grader API")

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.post("/grade")
    async def grade_image(
        request: Request,
        image: Optional[UploadFile] = File(None),
        batchId: Optional[str] = Form(None),
        blkNumber: Optional[str] = Form(None),
        station: Optional[str] = Form(None),
        batchInfo: Optional[str] = Form(None),
    ):
        # Prefer batchId; fall back to blkNumber if provided.
        batch = batchId if batchId else blkNumber
        identity = verifier.identify(request)

        upload = None
        if image is not None:
            upload = ImageUpload(
                data=await image.read(),
                content_type=image.content_type or "",
                filename=image.filename or "upload",
            )

        try:
            result = await run_in_threadpool(
                grading.grade_upload,
                upload,
                batch_id=batch,
                technician=identity.email if identity else None,
                station=station,
                batch_info=batchInfo,
            )
        except ValidationError as e:
            return error_response(400, e.message)
        except GradingError as e:
            if isinstance(e, GradingAuthFailure):
                logger.error("vision service credentials rejected; check deployment configuration")
            return error_response(_grading_status(e), e.message)
        except StorageError:
            return error_response(500, StorageError.message)

        return JSONResponse(status_code=200, content={"result": result.to_response()}, headers=NO_STORE)

    app.include_router(create_reviews_router(records=records, verifier=verifier, default_limit=default_limit))
    return app
