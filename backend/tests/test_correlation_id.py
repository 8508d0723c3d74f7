"""Tests for correlation ID header on all responses."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException, Request
from fastapi.testclient import TestClient

import cdn_console.main as main_module
from cdn_console.database import get_db
from cdn_console.dependencies import get_storage
from cdn_console.main import add_correlation_id_to_errors, app
from cdn_console.middleware.logging import redact_path
from cdn_console.middleware.rate_limit import limiter


def test_correlation_id_on_success(client):
    """Test that correlation ID is included on successful responses."""
    response = client.get("/health")
    assert response.status_code == 200
    assert "X-Correlation-ID" in response.headers
    assert len(response.headers["X-Correlation-ID"]) == 8  # 4 bytes as hex


def test_correlation_id_on_404_error(client):
    """Test that correlation ID is included on 404 error responses."""
    response = client.get("/api/v1/invites/public/unknown-token")
    assert response.status_code == 404
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_validation_error(client, make_invite):
    """Test that correlation ID is included on validation error (422) responses."""
    _, token = make_invite()
    response = client.post(f"/api/v1/invites/public/{token}/sign-post", json={"filename": ""})
    assert response.status_code == 422
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_unauthorized_error(client):
    """Test that correlation ID is included on 401 error responses."""
    response = client.get("/api/v1/invites", headers={"Authorization": "InvalidFormat"})
    assert response.status_code == 401
    assert len(response.headers["X-Correlation-ID"]) == 8


def test_correlation_id_on_unhandled_exception(db_session, fake_storage, monkeypatch):
    """Unhandled exceptions render a bare 500 that still carries the correlation ID."""
    from cdn_console.routers import public_invites

    def raise_error(*args, **kwargs):
        raise RuntimeError("Unexpected database error")

    monkeypatch.setattr(public_invites, "resolve_invite", raise_error)

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: fake_storage
    limiter.enabled = False
    original_engine = main_module.engine
    main_module.engine = db_session.get_bind()

    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.get("/api/v1/invites/public/some-token")

            assert response.status_code == 500
            assert len(response.headers["X-Correlation-ID"]) == 8
            assert response.json()["detail"] == "Internal Server Error"
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
        main_module.engine = original_engine


def test_correlation_ids_unique_across_requests(client):
    """Test that each request gets a unique correlation ID."""
    response1 = client.get("/health")
    response2 = client.get("/health")

    assert response1.headers["X-Correlation-ID"] != response2.headers["X-Correlation-ID"]


@pytest.mark.asyncio
async def test_http_exception_keeps_status_and_correlation_id():
    mock_request = MagicMock(spec=Request)
    mock_request.url.path = "/api/v1/invites"

    with patch("structlog.contextvars.get_contextvars") as mock_ctx:
        mock_ctx.return_value = {"correlation_id": "http-exc-corr"}

        response = await add_correlation_id_to_errors(
            mock_request, HTTPException(status_code=503, detail="Service Unavailable")
        )

    assert response.status_code == 503
    assert response.headers["x-correlation-id"] == "http-exc-corr"


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/api/v1/invites/public/SECRET", "/api/v1/invites/public/{token}"),
        ("/api/v1/invites/public/SECRET/commit", "/api/v1/invites/public/{token}/commit"),
        ("/api/v1/invites/abc", "/api/v1/invites/abc"),
        ("/health", "/health"),
    ],
)
def test_invite_tokens_redacted_from_logged_paths(path, expected):
    assert redact_path(path) == expected
