"""
tests/test_config_and_health.py

Pytest tests for database settings resolution and the container health check.

Coverage
--------
- Database URL priority: DATABASE_URL, then CLOUD_DATABASE_URL in cloud
  environments, then LOCAL_DATABASE_URL; RuntimeError when none applies
- postgres:// URLs rewritten to the psycopg driver
- .env values never override the process environment
- Pool settings read from the environment with safe fallbacks
- Health body evaluation with optional worker / scheduler requirements
"""

from __future__ import annotations

import pytest

import db.config as db_config
from scripts.healthcheck import evaluate

_URL_VARS = ("DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL", "ENVIRONMENT")


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    monkeypatch.setattr(db_config, "_PROJECT_ROOT", tmp_path)
    for name in _URL_VARS + ("DB_POOL_SIZE", "SQL_ECHO"):
        # restored on teardown, including values loaded from .env
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return tmp_path


# ---------------------------------------------------------------------------
# Database URL resolution
# ---------------------------------------------------------------------------


class TestResolveDatabaseUrl:
    def test_direct_url_wins(self, clean_env, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/poi")
        monkeypatch.setenv("LOCAL_DATABASE_URL", "postgresql://u:p@localhost/poi")

        assert db_config.resolve_database_url() == "postgresql+psycopg://u:p@db/poi"

    def test_cloud_url_only_in_cloud_environments(self, clean_env, monkeypatch) -> None:
        monkeypatch.setenv("CLOUD_DATABASE_URL", "postgresql://u:p@cloud/poi")
        monkeypatch.setenv("LOCAL_DATABASE_URL", "postgresql://u:p@localhost/poi")

        local = db_config.resolve_database_url()
        monkeypatch.setenv("ENVIRONMENT", "Staging")
        cloud = db_config.resolve_database_url()

        assert local == "postgresql+psycopg://u:p@localhost/poi"
        assert cloud == "postgresql+psycopg://u:p@cloud/poi"

    def test_nothing_configured(self, clean_env) -> None:
        with pytest.raises(RuntimeError):
            db_config.resolve_database_url()

    def test_env_file_does_not_override_process(self, clean_env, monkeypatch) -> None:
        (clean_env / ".env").write_text(
            "# local\nLOCAL_DATABASE_URL='postgresql://file@localhost/poi'\nDB_POOL_SIZE=3\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("DB_POOL_SIZE", "7")

        settings = db_config.get_database_settings()

        assert settings.url == "postgresql+psycopg://file@localhost/poi"
        assert settings.pool_size == 7


class TestDatabaseSettings:
    def test_invalid_numbers_fall_back(self, clean_env, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://u@db/poi")
        monkeypatch.setenv("DB_POOL_SIZE", "many")
        monkeypatch.setenv("SQL_ECHO", "yes")

        settings = db_config.get_database_settings()

        assert settings.pool_size == 10
        assert settings.echo is True


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


class TestHealthEvaluation:
    BODY = {"status": "ok", "scheduler_running": False, "workers": {"crawl": True, "audit": False}}

    def test_status_only(self) -> None:
        assert evaluate(self.BODY, require_workers=False, require_scheduler=False) == []

    def test_stopped_worker_and_scheduler_reported(self) -> None:
        problems = evaluate(self.BODY, require_workers=True, require_scheduler=True)

        assert problems == ["workers stopped: audit", "scheduler not running"]

    def test_starting_is_unhealthy(self) -> None:
        problems = evaluate({"status": "starting"}, require_workers=False, require_scheduler=False)

        assert problems == ["status='starting'"]
