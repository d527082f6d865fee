# apps/api/main.py
from __future__ import annotations

from apps.api.app_factory import create_app
from apps.api.auth import SessionVerifier
from apps.common.clients import build_grading_service, build_record_store, build_storage
from apps.common.settings import configure_logging, load_settings

settings = load_settings()
configure_logging(settings.log_level)

storage = build_storage(settings)
records = build_record_store(settings)

app = create_app(
    grading=build_grading_service(settings, storage=storage, records=records),
    records=records,
    verifier=SessionVerifier(settings.auth_secret, cookie_name=settings.session_cookie),
    default_limit=settings.default_list_limit,
)
