from __future__ import annotations

import logging

import pytest

from apps.common.settings import LOG_FORMAT, configure_logging, load_settings

BASE_YAML = """
vision_provider: azure
vision_endpoint: https://potato.openai.azure.com
vision_api_key: from-yaml
vision_timeout_s: 20
storage_backend: local
storage_root: {root}/uploads
record_backend: file
records_root: {root}/records
auth_secret: yaml-secret
default_list_limit: 25
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "GRADER_CONFIG_PATH",
        "GRADER_VISION_API_KEY",
        "GRADER_VISION_ENDPOINT",
        "GRADER_AUTH_SECRET",
        "GRADER_RECORD_BACKEND",
        "GRADER_STORAGE_BACKEND",
        "GRADER_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "app.yaml"
    path.write_text(text.format(root=tmp_path), encoding="utf-8")
    return path


def test_yaml_values_are_loaded(tmp_path):
    s = load_settings(str(_write(tmp_path, BASE_YAML)))

    assert s.vision_api_key == "from-yaml"
    assert s.vision_timeout_s == 20.0
    assert s.vision_deployment == "gpt-4.1"
    assert s.storage_root == (tmp_path / "uploads").resolve()
    assert s.default_list_limit == 25
    assert s.session_cookie == "grader_session"
    assert s.log_level == "INFO"


def test_env_overrides_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("GRADER_VISION_API_KEY", "from-env")
    monkeypatch.setenv("GRADER_LOG_LEVEL", "debug")
    s = load_settings(str(_write(tmp_path, BASE_YAML)))
    assert s.vision_api_key == "from-env"
    assert s.log_level == "DEBUG"


def test_config_path_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("GRADER_CONFIG_PATH", str(_write(tmp_path, BASE_YAML)))
    assert load_settings().auth_secret == "yaml-secret"


def test_missing_values_are_listed(tmp_path):
    path = _write(tmp_path, "record_backend: cosmos\nstorage_backend: azure\n")
    with pytest.raises(ValueError) as info:
        load_settings(str(path))
    msg = str(info.value)
    for needle in ("GRADER_AUTH_SECRET", "GRADER_VISION_API_KEY", "GRADER_BLOB_SAS_URL", "GRADER_COSMOS_KEY"):
        assert needle in msg


def test_review_console_does_not_need_vision_credentials(tmp_path, monkeypatch):
    monkeypatch.setenv("GRADER_AUTH_SECRET", "s3cret")
    s = load_settings(str(_write(tmp_path, "storage_root: {root}/u\n")), require_vision=False)
    assert s.vision_api_key is None
    assert s.record_backend == "file"


def test_unknown_backend_rejected(tmp_path, monkeypatch):
    monkeypatch.setenv("GRADER_RECORD_BACKEND", "sqlite")
    with pytest.raises(ValueError, match="record_backend"):
        load_settings(str(_write(tmp_path, BASE_YAML)))


def test_configure_logging_sets_root_level():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging("warning")
        assert root.level == logging.WARNING
        assert root.handlers[0].formatter._fmt == LOG_FORMAT
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
