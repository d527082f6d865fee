from functools import lru_cache
from pathlib import Path
from typing import List, Tuple
import json

from jsonschema import Draft7Validator

REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMA_DIR = REPO_ROOT / "config" / "schemas"


@lru_cache(maxsize=None)
def _validator(name: str) -> Draft7Validator:
    schema_path = SCHEMA_DIR / f"{name}.schema.json"
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema not found: {schema_path}")
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    Draft7Validator.check_schema(schema)
    return Draft7Validator(schema)


def _field(path) -> str:
    return ".".join(str(p) for p in path) or "<body>"


def schema_errors(data: dict, name: str) -> List[str]:
    """All violations as 'field: message', ordered by field path."""
    errors = sorted(_validator(name).iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    return [f"{_field(e.absolute_path)}: {e.message}" for e in errors]


def validate_with_schema(data: dict, name: str) -> Tuple[bool, str]:
    try:
        errors = schema_errors(data, name)
    except (OSError, ValueError) as e:
        return False, str(e)
    if errors:
        return False, "; ".join(errors)
    return True, "Valid"
