"""Tests for the public invite upload flow (metadata, sign-post, commit)."""

import re
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import BackgroundTasks

from cdn_console.errors import CommitConflictError
from cdn_console.middleware import rate_limit
from cdn_console.models.audit_log import AuditLog
from cdn_console.models.invite import Invite, InviteUpload
from cdn_console.schemas.invite import CommitRequest
from cdn_console.services.audit_service import ClientInfo
from cdn_console.services.invite_service import toggle_revocation
from cdn_console.services.upload_service import commit_upload


def utcnow():
    """Get current UTC time as naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def sign(client, token, filename="a.png", content_type="image/png"):
    return client.post(
        f"/api/v1/invites/public/{token}/sign-post",
        json={"filename": filename, "content_type": content_type},
    )


def commit(client, token, key, size=500, content_type="image/png", extension="png", **extra):
    return client.post(
        f"/api/v1/invites/public/{token}/commit",
        json={
            "key": key,
            "size": size,
            "content_type": content_type,
            "extension": extension,
            **extra,
        },
    )


def audit_actions(db_session):
    return [row.action for row in db_session.query(AuditLog).order_by(AuditLog.created_at)]


class TestMetadata:
    def test_redacted_view(self, client, make_invite):
        _, token = make_invite(max_uses=3)

        response = client.get(f"/api/v1/invites/public/{token}")

        assert response.status_code == 200
        data = response.json()
        assert data == {
            "label": "kit",
            "cdn_display_name": "assets",
            "allowed_mime_types": ["image/png"],
            "allowed_extensions": ["png"],
            "max_size_bytes": 1000,
            "expires_at": None,
            "status": "ACTIVE",
            "remaining_uses": 3,
            "max_uses": 3,
        }
        assert token not in response.text

    def test_unknown_token(self, client):
        response = client.get("/api/v1/invites/public/not-a-real-token")

        assert response.status_code == 404
        assert response.json()["detail"] == {"code": "not_found", "message": "Invite not found"}

    def test_expired_invite_is_marked_on_read(self, client, db_session, make_invite):
        invite, token = make_invite(expires_at=utcnow() - timedelta(minutes=5))

        response = client.get(f"/api/v1/invites/public/{token}")

        assert response.json()["status"] == "EXPIRED"
        assert response.json()["expires_at"].endswith("Z")
        db_session.expire_all()
        assert db_session.get(Invite, invite.id).status == "EXPIRED"

    def test_unlimited_invite_reports_null_uses(self, client, make_invite):
        _, token = make_invite(max_uses=None)

        data = client.get(f"/api/v1/invites/public/{token}").json()

        assert data["remaining_uses"] is None
        assert data["max_uses"] is None


class TestUploadScenario:
    def test_single_use_invite(self, client, db_session, fake_storage, make_invite):
        _, token = make_invite(max_uses=1, max_size_bytes=1000)

        signed = sign(client, token, filename="a.png")
        assert signed.status_code == 200
        key = signed.json()["key"]
        assert re.fullmatch(r"invites/kit/a-[A-Za-z0-9_-]{6}\.png", key)
        assert signed.json()["fields"]["key"] == key
        assert fake_storage.policies == [
            {
                "bucket": "assets-bucket",
                "key": key,
                "content_type": "image/png",
                "max_bytes": 1000,
                "ttl": 3600,
            }
        ]

        committed = commit(client, token, key, size=500)
        assert committed.status_code == 200
        data = committed.json()
        assert data["remaining_uses"] == 0
        assert data["key"] == key
        assert data["public_url"] == f"https://cdn.example.com/{key}"
        assert data["signed_url"] is None

        second = commit(client, token, "invites/kit/b-zzzzzz.png", size=500)
        assert second.status_code == 400
        assert second.json()["detail"]["code"] == "invite_exhausted"
        assert second.json()["detail"]["message"] == "Invite has no remaining uses"

        assert db_session.query(InviteUpload).count() == 1

    def test_each_policy_gets_a_fresh_key(self, client, make_invite):
        _, token = make_invite(max_uses=5)

        first = sign(client, token).json()["key"]
        second = sign(client, token).json()["key"]

        assert first != second

    def test_private_cdn_returns_signed_url(self, client, db_session, private_cdn, make_invite):
        _, token = make_invite(cdn_id=private_cdn.id)
        key = sign(client, token).json()["key"]

        data = commit(client, token, key).json()

        assert data["public_url"] is None
        assert data["signed_url"].startswith(f"https://storage.test/private-bucket/{key}")

    def test_records_client_fingerprint(self, client, db_session, make_invite):
        _, token = make_invite()
        key = sign(client, token).json()["key"]

        client.post(
            f"/api/v1/invites/public/{token}/commit",
            json={"key": key, "size": 10, "content_type": "image/png", "extension": "png"},
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "User-Agent": "uploader/1.0"},
        )

        upload = db_session.query(InviteUpload).one()
        assert upload.ip == "203.0.113.9"
        assert upload.user_agent == "uploader/1.0"

    def test_notification_sent_after_commit(self, client, make_invite):
        _, token = make_invite(notify_emails=["owner@example.com"])
        key = sign(client, token).json()["key"]

        with patch(
            "cdn_console.services.upload_service.send_upload_notification",
            new_callable=AsyncMock,
        ) as mock_notify:
            commit(client, token, key)

        mock_notify.assert_called_once()
        assert mock_notify.call_args.kwargs["key"] == key
        assert mock_notify.call_args.kwargs["notify_emails"] == ["owner@example.com"]

    @pytest.mark.asyncio
    async def test_notification_is_deferred_until_after_the_response(
        self, db_session, fake_storage, make_invite
    ):
        invite, _ = make_invite()
        tasks = BackgroundTasks()

        with patch(
            "cdn_console.services.upload_service.send_upload_notification",
            new_callable=AsyncMock,
        ) as mock_notify:
            response = await commit_upload(
                db_session,
                fake_storage,
                invite,
                CommitRequest(
                    key="invites/kit/a-abcdef.png",
                    size=500,
                    content_type="image/png",
                    extension="png",
                ),
                ClientInfo(ip="203.0.113.9", user_agent="pytest"),
                tasks,
            )

            mock_notify.assert_not_called()
            assert len(tasks.tasks) == 1
            assert tasks.tasks[0].func is mock_notify
            assert tasks.tasks[0].kwargs["key"] == response.key


class TestConstraintViolations:
    def test_disallowed_content_type_echoes_allowed_set(self, client, make_invite):
        _, token = make_invite()

        response = sign(client, token, filename="a.pdf", content_type="application/pdf")

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "content_type_not_allowed"
        assert detail["allowed_mime_types"] == ["image/png"]

    def test_disallowed_extension_echoes_allowed_set(self, client, make_invite):
        _, token = make_invite()

        response = sign(client, token, filename="a.gif")

        assert response.status_code == 400
        assert response.json()["detail"]["allowed_extensions"] == ["png"]

    def test_missing_extension_rejected(self, client, make_invite):
        _, token = make_invite()

        assert sign(client, token, filename="README").status_code == 400

    def test_commit_rechecks_content_type(self, client, make_invite):
        _, token = make_invite()
        key = sign(client, token).json()["key"]

        response = commit(client, token, key, content_type="image/gif")

        assert response.status_code == 400
        assert response.json()["detail"]["allowed_mime_types"] == ["image/png"]

    def test_commit_rejects_oversize(self, client, make_invite):
        _, token = make_invite(max_size_bytes=1000)
        key = sign(client, token).json()["key"]

        response = commit(client, token, key, size=1001)

        assert response.status_code == 400
        assert response.json()["detail"]["max_size_bytes"] == 1000

    def test_commit_rejects_key_outside_prefix(self, client, make_invite):
        _, token = make_invite()

        response = commit(client, token, "other/place.png")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "key_not_allowed"

    def test_failed_commit_is_audited_and_consumes_nothing(self, client, db_session, make_invite):
        invite, token = make_invite(max_uses=1)

        commit(client, token, "invites/kit/x.png", size=5000)

        assert "INVITE_UPLOAD_FAILED" in audit_actions(db_session)
        db_session.expire_all()
        assert db_session.get(Invite, invite.id).remaining_uses == 1

    def test_extension_is_checked_on_the_sanitized_name(self, client, fake_storage, make_invite):
        _, token = make_invite()

        for filename in ("x. png", "evil.html. png"):
            response = sign(client, token, filename=filename)

            assert response.status_code == 400
            assert response.json()["detail"]["code"] == "extension_not_allowed"
        assert fake_storage.policies == []

    def test_sanitized_name_keeps_allowed_extension(self, client, make_invite):
        _, token = make_invite()

        response = sign(client, token, filename="holiday photo (1).png")

        assert response.status_code == 200
        assert re.fullmatch(r"invites/kit/holiday-photo-1-[\w-]{6}\.png", response.json()["key"])

    def test_lost_commit_race_is_audited(self, client, db_session, make_invite, monkeypatch):
        from cdn_console.services import upload_service

        invite, token = make_invite()
        key = sign(client, token).json()["key"]

        def always_conflicts(*args, **kwargs):
            raise CommitConflictError("Invite is busy, please retry the commit")

        monkeypatch.setattr(upload_service, "consume_use", always_conflicts)

        response = commit(client, token, key)

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "commit_conflict"
        assert "INVITE_UPLOAD_FAILED" in audit_actions(db_session)
        db_session.expire_all()
        assert db_session.get(Invite, invite.id).remaining_uses == 1

    def test_schema_errors_are_422(self, client, make_invite):
        _, token = make_invite()

        response = client.post(f"/api/v1/invites/public/{token}/commit", json={"key": "x"})

        assert response.status_code == 422


class TestRevocationFlow:
    def test_revoke_then_restore(self, client, db_session, make_invite):
        invite, token = make_invite(max_uses=2)

        toggle_revocation(db_session, invite.id)
        assert client.get(f"/api/v1/invites/public/{token}").json()["status"] == "REVOKED"
        rejected = sign(client, token)
        assert rejected.status_code == 400
        assert rejected.json()["detail"] == {
            "code": "invite_not_active",
            "message": "Invite is not active",
        }

        toggle_revocation(db_session, invite.id)
        assert client.get(f"/api/v1/invites/public/{token}").json()["status"] == "ACTIVE"
        assert sign(client, token).status_code == 200

    def test_expired_invite_rejects_uploads(self, client, make_invite):
        _, token = make_invite(expires_at=utcnow() - timedelta(minutes=1))

        response = sign(client, token)

        assert response.status_code == 400
        assert response.json()["detail"]["message"] == "Invite has expired"


class TestAuditTrail:
    def test_successful_flow_is_audited(self, client, db_session, make_invite):
        _, token = make_invite()
        key = sign(client, token).json()["key"]
        commit(client, token, key)

        rows = db_session.query(AuditLog).order_by(AuditLog.created_at).all()

        assert [row.action for row in rows] == [
            "INVITE_UPLOAD_REQUESTED",
            "INVITE_UPLOAD_SUCCEEDED",
        ]
        assert all(row.actor == "invite:kit" for row in rows)
        assert rows[1].details["key"] == key
        assert token not in str([row.details for row in rows])


class TestRateLimiting:
    def test_limit_per_endpoint_token_and_address(self, client, make_invite, monkeypatch):
        monkeypatch.setattr(rate_limit.settings, "invite_rate_limit_requests", 2)
        _, token = make_invite()
        url = f"/api/v1/invites/public/{token}"

        assert client.get(url).status_code == 200
        assert client.get(url).status_code == 200
        limited = client.get(url)

        assert limited.status_code == 429
        assert limited.json()["detail"]["code"] == "rate_limited"
        assert int(limited.headers["Retry-After"]) > 0
        assert limited.headers["X-RateLimit-Limit"] == "2"
        assert limited.headers["X-RateLimit-Remaining"] == "0"
        assert "X-RateLimit-Reset" in limited.headers
        assert "X-Correlation-ID" in limited.headers

        # Other endpoints and other addresses keep their own budgets
        assert sign(client, token).status_code == 200
        assert client.get(url, headers={"X-Real-IP": "192.0.2.44"}).status_code == 200

    def test_unknown_tokens_are_rate_limited_too(self, client, monkeypatch):
        monkeypatch.setattr(rate_limit.settings, "invite_rate_limit_requests", 1)

        assert client.get("/api/v1/invites/public/guess").status_code == 404
        assert client.get("/api/v1/invites/public/guess").status_code == 429
