from __future__ import annotations

from services.validation.schema_validation import schema_errors, validate_with_schema


def test_valid_review_request():
    ok, msg = validate_with_schema(
        {"documentId": "grade-BLK1-1", "batchId": "BLK1", "smoothness": 3, "shininess": 4.5},
        "review_request",
    )
    assert ok, msg


def test_every_violation_is_reported_with_its_field():
    errors = schema_errors({"documentId": "", "batchId": "BLK1", "smoothness": 9, "shininess": "4"}, "review_request")
    assert any(e.startswith("documentId:") for e in errors)
    assert any(e.startswith("smoothness:") for e in errors)
    assert any(e.startswith("shininess:") for e in errors)


def test_missing_field_is_reported_at_body_level():
    ok, msg = validate_with_schema({"documentId": "x", "batchId": "BLK1", "smoothness": 1}, "review_request")
    assert not ok
    assert "<body>" in msg
    assert "shininess" in msg


def test_unknown_schema_name():
    ok, msg = validate_with_schema({}, "does_not_exist")
    assert not ok
    assert "Schema not found" in msg
