# test_config.py
# Description: Settings precedence (environment > config file > defaults).
#
# Imports
from pathlib import Path

import pytest
#
# Local Imports
from docsync_Server_API.app.core.config import load_settings, DEFAULT_SINGLE_USER_API_KEY
#
########################################################################################################################
#
# Functions:

ENV_VARS = [
    "APP_MODE", "API_KEY", "SINGLE_USER_FIXED_ID", "SINGLE_USER_EMAIL", "JWT_SECRET_KEY", "SYNC_DB_PATH",
    "ALLOWED_ORIGINS", "FRONTEND_URL", "SYNC_DEFAULT_PAGE_SIZE", "SYNC_MAX_PAGE_SIZE",
    "SYNC_OPERATION_LOG_PAGE_SIZE", "EMBEDDING_DIMENSIONS", "LOG_LEVEL", "DOCSYNC_CONFIG_FILE",
]

CONFIG_TEXT = """
[Server]
app_mode = multi
jwt_secret_key = from-file-secret
allowed_origins = http://a.example, http://b.example
frontend_url = https://app.example/
log_level = debug

[Sync]
db_path = /var/lib/docsync/store.sqlite
max_page_size = 200
embedding_dimensions = 384
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text(CONFIG_TEXT)
    return path


def test_defaults_without_config_file(tmp_path):
    settings = load_settings(tmp_path / "missing.txt")
    assert settings["SINGLE_USER_MODE"] is True
    assert settings["SINGLE_USER_API_KEY"] == DEFAULT_SINGLE_USER_API_KEY
    assert settings["SYNC_DEFAULT_PAGE_SIZE"] == 50
    assert settings["SYNC_MAX_PAGE_SIZE"] == 500
    assert settings["EMBEDDING_DIMENSIONS"] is None
    assert settings["ALLOWED_ORIGINS"] == []
    assert settings["LOG_LEVEL"] == "INFO"


def test_config_file_values(config_file):
    settings = load_settings(config_file)
    assert settings["SINGLE_USER_MODE"] is False
    assert settings["APP_MODE_STR"] == "multi"
    assert settings["JWT_SECRET_KEY"] == "from-file-secret"
    assert settings["ALLOWED_ORIGINS"] == ["http://a.example", "http://b.example"]
    assert settings["FRONTEND_URL"] == "https://app.example"
    assert settings["SYNC_DB_PATH"] == Path("/var/lib/docsync/store.sqlite")
    assert settings["SYNC_MAX_PAGE_SIZE"] == 200
    assert settings["EMBEDDING_DIMENSIONS"] == 384
    assert settings["LOG_LEVEL"] == "DEBUG"


def test_environment_overrides_config_file(config_file, monkeypatch):
    monkeypatch.setenv("APP_MODE", "single")
    monkeypatch.setenv("API_KEY", "env-key")
    monkeypatch.setenv("SYNC_MAX_PAGE_SIZE", "25")
    monkeypatch.setenv("EMBEDDING_DIMENSIONS", "")

    settings = load_settings(config_file)
    assert settings["SINGLE_USER_MODE"] is True
    assert settings["SINGLE_USER_API_KEY"] == "env-key"
    assert settings["SYNC_MAX_PAGE_SIZE"] == 25
    assert settings["EMBEDDING_DIMENSIONS"] is None
    # Untouched keys still come from the file
    assert settings["FRONTEND_URL"] == "https://app.example"


def test_config_file_from_environment(config_file, monkeypatch):
    monkeypatch.setenv("DOCSYNC_CONFIG_FILE", str(config_file))
    assert load_settings()["SYNC_MAX_PAGE_SIZE"] == 200

#
# End of test_config.py
########################################################################################################################
