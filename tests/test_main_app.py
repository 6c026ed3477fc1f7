"""
Tests for src/main.py - FastAPI app creation, middleware, lifespan, and CORS.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.main import (
    CorrelationIdMiddleware,
    create_app,
    lifespan,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "app_base_url": "http://localhost:8000",
        "log_level": "WARNING",
        "encryption_key": "test_encryption_key",
        "strava_client_id": "12345",
        "spotify_client_id": "abcdef",
        "job_processor_enabled": False,
        "job_batch_size": 10,
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _app(**overrides) -> FastAPI:
    with (
        patch("src.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("src.main.configure_structured_logging"),
    ):
        return create_app()


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        assert isinstance(_app(), FastAPI)

    def test_app_metadata(self):
        app = _app()
        assert app.title == "Trailtune"
        assert app.version == "1.0.0"

    def test_configures_structured_logging(self):
        """create_app calls configure_structured_logging with the config log level."""
        with (
            patch("src.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("src.main.configure_structured_logging") as mock_log,
        ):
            create_app()

        mock_log.assert_called_once_with("DEBUG")

    def test_includes_routes(self):
        route_paths = set(_app().openapi()["paths"])
        assert {
            "/health",
            "/health/ready",
            "/api/webhooks/strava",
            "/api/webhooks/subscribe",
            "/api/jobs/process",
            "/api/jobs/{job_id}/requeue",
            "/api/cron/process-jobs",
        } <= route_paths


# ---------------------------------------------------------------------------
# CorrelationIdMiddleware
# ---------------------------------------------------------------------------


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id_when_missing(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        response = client.get("/health")

        assert response.status_code == 200
        assert len(response.headers["x-correlation-id"]) == 32

    def test_uses_existing_correlation_id(self):
        client = TestClient(_app(), raise_server_exceptions=False)
        custom_cid = "abc123def456789012345678abcdef00"
        response = client.get("/health", headers={"X-Correlation-ID": custom_cid})

        assert response.headers["x-correlation-id"] == custom_cid


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------


class TestCorsMiddleware:
    def test_allows_app_base_url_origin(self):
        client = TestClient(_app(app_base_url="https://trailtune.example.com"), raise_server_exceptions=False)
        response = client.options(
            "/health",
            headers={
                "Origin": "https://trailtune.example.com",
                "Access-Control-Request-Method": "GET",
            },
        )

        assert response.headers["access-control-allow-origin"] == "https://trailtune.example.com"


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_warns_when_encryption_key_missing(self):
        with (
            patch("src.main.get_settings", return_value=_make_mock_settings(encryption_key="")),
            patch("src.main.logger") as mock_logger,
        ):
            async with lifespan(MagicMock()):
                pass

        warnings = [c for c in mock_logger.warning.call_args_list if "ENCRYPTION_KEY" in str(c)]
        assert len(warnings) == 1

    async def test_warns_when_provider_credentials_missing(self):
        with (
            patch("src.main.get_settings", return_value=_make_mock_settings(spotify_client_id="")),
            patch("src.main.logger") as mock_logger,
        ):
            async with lifespan(MagicMock()):
                pass

        warnings = [c for c in mock_logger.warning.call_args_list if "client credentials" in str(c)]
        assert len(warnings) == 1

    async def test_processor_disabled_starts_no_tasks(self):
        with (
            patch("src.main.get_settings", return_value=_make_mock_settings()),
            patch("src.main.logger"),
            patch("asyncio.create_task") as mock_create,
        ):
            async with lifespan(MagicMock()):
                pass

        mock_create.assert_not_called()

    async def test_processor_enabled_starts_and_cancels_worker(self):
        created = []

        def capture_create_task(coro):
            coro.close()
            task = MagicMock(spec=asyncio.Task)
            created.append(task)
            return task

        with (
            patch("src.main.get_settings", return_value=_make_mock_settings(job_processor_enabled=True, job_batch_size=5)),
            patch("src.main.logger"),
            patch("src.workers.job_processor.run_job_processor", new_callable=AsyncMock) as mock_run,
            patch("asyncio.create_task", side_effect=capture_create_task),
            patch("asyncio.wait", new_callable=AsyncMock, return_value=(set(), set())),
        ):
            async with lifespan(MagicMock()):
                pass

        mock_run.assert_called_once_with(5)
        assert len(created) == 1
        created[0].cancel.assert_called()
