"""Unit tests for application settings configuration."""

import logging
from pathlib import Path

from rdfrepo.config import Settings
from rdfrepo.infrastructure.database.session import _get_async_url
from rdfrepo.infrastructure.logging.log_config import setup_logging


def test_settings_uses_project_env_file_independent_of_cwd():
    """Settings should always include the project's .env as an env source."""
    env_files = Settings.model_config.get("env_file")
    assert env_files is not None

    normalized = {str(Path(item)) for item in env_files}
    expected_project_env = str(Path(__file__).resolve().parents[2] / ".env")

    assert expected_project_env in normalized
    assert str(Path(".env")) in normalized


def test_header_names_follow_settings():
    settings = Settings(header_metadata_read_mode="X-MODE", header_metadata_parent_property="X-PARENT")

    assert settings.header_names() == {
        "metadata_read_mode": "X-MODE",
        "metadata_parent_property": "X-PARENT",
    }


def test_repository_schema_from_environment(monkeypatch):
    monkeypatch.setenv("REPOSITORY_SCHEMA__ID", "https://vocabs.example.org/id")
    monkeypatch.setenv("REPOSITORY_SCHEMA__LABEL", "https://vocabs.example.org/name")
    monkeypatch.setenv("REPOSITORY_SCHEMA__PARENT", "https://vocabs.example.org/parent")
    monkeypatch.setenv("REPOSITORY_SCHEMA__MODIFICATION_DATE", "https://vocabs.example.org/modified")

    settings = Settings()

    assert settings.repository_schema.label == "https://vocabs.example.org/name"
    assert settings.repository_schema.search.match == "search://match"


def test_async_url_uses_asyncpg_driver():
    assert _get_async_url("postgresql://u:p@db/repo") == "postgresql+asyncpg://u:p@db/repo"
    assert _get_async_url("postgres://u:p@db/repo") == "postgresql+asyncpg://u:p@db/repo"
    assert _get_async_url("postgresql+asyncpg://u:p@db/repo") == "postgresql+asyncpg://u:p@db/repo"


def test_setup_logging_applies_category_levels():
    settings = Settings(log_level_sql="DEBUG", log_level_search="ERROR", log_level_http="verbose")

    applied = setup_logging(settings)

    assert applied["sqlalchemy.engine"] == logging.DEBUG
    assert applied["rdfrepo.search"] == logging.ERROR
    assert logging.getLogger("rdfrepo.search").level == logging.ERROR
    # unknown level names fall back to INFO
    assert applied["httpx"] == logging.INFO
