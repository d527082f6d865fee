from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from apps.api.auth import SessionVerifier
from services.records.review import ReviewConflict, ReviewService
from services.records.store import DEFAULT_LIST_LIMIT, RecordNotFound, RecordStoreUnavailable
from services.validation.schema_validation import validate_with_schema

logger = logging.getLogger(__name__)

REVIEW_SCHEMA = "review_request"
MAX_LIST_LIMIT = 500


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_reviews_router(
    *,
    records: Any,
    verifier: SessionVerifier,
    default_limit: int = DEFAULT_LIST_LIMIT,
) -> APIRouter:
    router = APIRouter()
    reviews = ReviewService(records)

    @router.post("/reviews")
    async def submit_review(request: Request):
        identity = verifier.identify(request)
        if identity is None:
            return error_response(401, "Authentication required")

        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return error_response(400, "Request body must be JSON.")

        if not isinstance(body, dict):
            return error_response(400, "Request body must be a JSON object.")

        ok, msg = validate_with_schema(body, REVIEW_SCHEMA)
        if not ok:
            return error_response(
                400,
                f"Missing or invalid fields: documentId, batchId, smoothness, shininess ({msg})",
            )

        try:
            record = await run_in_threadpool(
                reviews.submit,
                body["documentId"],
                body["batchId"],
                body["smoothness"],
                body["shininess"],
                expected_version=body.get("version"),
            )
        except RecordNotFound:
            return error_response(404, "Document not found")
        except ReviewConflict:
            return error_response(409, "Record was modified by someone else. Reload and try again.")
        except RecordStoreUnavailable:
            return error_response(500, "Record store unavailable.")

        logger.info("review by %s on %s", identity.email, record.id)
        return {
            "success": True,
            "message": "Technician grades saved successfully",
            "record": record.to_document(),
        }

    @router.get("/reviews")
    def list_reviews(
        request: Request,
        batchId: Optional[str] = Query(None),
        limit: Optional[str] = Query(None),
    ):
        if verifier.identify(request) is None:
            return error_response(401, "Authentication required")

        try:
            n = int(limit) if limit not in (None, "") else default_limit
        except ValueError:
            return error_response(400, "limit must be an integer")
        n = max(1, min(n, MAX_LIST_LIMIT))

        try:
            if batchId:
                found = records.list_by_batch(batchId)
            else:
                found = records.list_recent(n)
        except RecordStoreUnavailable:
            return error_response(500, "Record store unavailable.")

        return {"records": [r.to_document() for r in found]}

    return router
