"""
Tests for the push dispatch endpoint (POST /api/v1/push/send)
"""
import asyncio
import inspect

import pytest
from fastapi.testclient import TestClient

from push_dispatch.main import app
from push_dispatch.api.v1.push import provide_device_registry, provide_dispatch_service
from push_dispatch.core.config import get_settings
from push_dispatch.services.push.device_registry import RegistryUnavailableError
from tests.conftest import make_session_token
from tests.test_api.conftest import make_settings

SEND_URL = "/api/v1/push/send"


def auth_headers(sub="user-sender"):
    return {"Authorization": f"Bearer {make_session_token(sub)}"}


class TestSendSuccess:
    """Successful dispatches"""

    def test_user_with_ios_and_android_devices(self, api_client, registry, apns_stub, fcm_stub):
        """Both devices of one recipient receive the notification"""
        response = api_client.post(
            SEND_URL,
            json={"user_ids": ["user-a"], "title": "Hi", "body": "There"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json() == {"sent": 2, "failed": 0, "recipients": 1}
        assert [token for token, _ in apns_stub.sent] == ["T1"]
        assert [token for token, _ in fcm_stub.sent] == ["T2"]
        assert registry.lookups == 1

    def test_notification_content_reaches_providers(self, api_client, apns_stub):
        api_client.post(
            SEND_URL,
            json={"user_ids": ["user-a"], "title": "Hi", "body": "There", "data": {"k": "v"}},
            headers=auth_headers(),
        )

        _, notification = apns_stub.sent[0]
        assert notification.title == "Hi"
        assert notification.body == "There"
        assert dict(notification.data) == {"k": "v"}

    def test_defaults_for_missing_title_body_data(self, api_client, apns_stub):
        api_client.post(SEND_URL, json={"user_ids": ["user-a"]}, headers=auth_headers())

        _, notification = apns_stub.sent[0]
        assert notification.title == "BLIP"
        assert notification.body == ""
        assert dict(notification.data) == {}

    def test_recipients_counts_requested_ids(self, api_client):
        """recipients echoes the request, including users without devices"""
        response = api_client.post(
            SEND_URL,
            json={"user_ids": ["user-a", "user-b", "nobody"]},
            headers=auth_headers(),
        )

        assert response.json() == {"sent": 3, "failed": 0, "recipients": 3}

    def test_recipient_without_devices(self, api_client, apns_stub, fcm_stub):
        response = api_client.post(
            SEND_URL, json={"user_ids": ["nobody"]}, headers=auth_headers()
        )

        assert response.status_code == 200
        assert response.json() == {"sent": 0, "failed": 0, "recipients": 1}
        assert apns_stub.sent == [] and fcm_stub.sent == []

    def test_rejected_device_counts_as_failed(self, api_client, fcm_stub):
        fcm_stub.rejected.add("T2")

        response = api_client.post(
            SEND_URL, json={"user_ids": ["user-a"]}, headers=auth_headers()
        )

        assert response.status_code == 200
        assert response.json() == {"sent": 1, "failed": 1, "recipients": 1}

    def test_non_string_user_ids_are_dropped(self, api_client):
        response = api_client.post(
            SEND_URL, json={"user_ids": ["user-b", 42, None]}, headers=auth_headers()
        )

        assert response.json() == {"sent": 1, "failed": 0, "recipients": 1}

    def test_request_id_header_echoed(self, api_client):
        response = api_client.post(
            SEND_URL,
            json={"user_ids": ["user-a"]},
            headers={**auth_headers(), "X-Request-ID": "req-abc"},
        )

        assert response.headers["X-Request-ID"] == "req-abc"


class TestSendRejections:
    """Requests rejected before any lookup or provider call"""

    def test_empty_user_ids(self, api_client, registry, apns_stub, fcm_stub):
        response = api_client.post(SEND_URL, json={"user_ids": []}, headers=auth_headers())

        assert response.status_code == 400
        assert response.json() == {"error": "no_recipients"}
        assert registry.lookups == 0
        assert apns_stub.sent == [] and fcm_stub.sent == []

    @pytest.mark.parametrize("body", [
        {}, {"user_ids": "user-a"}, {"user_ids": [1, 2]}, [], ["user-a"], "user-a", 42,
    ])
    def test_missing_or_invalid_user_ids(self, api_client, registry, body):
        """Any parseable body without string user_ids has no recipients"""
        response = api_client.post(SEND_URL, json=body, headers=auth_headers())

        assert response.status_code == 400
        assert response.json() == {"error": "no_recipients"}
        assert registry.lookups == 0

    def test_missing_authorization(self, api_client, registry, apns_stub, fcm_stub):
        response = api_client.post(SEND_URL, json={"user_ids": ["user-a"]})

        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}
        assert registry.lookups == 0
        assert apns_stub.sent == [] and fcm_stub.sent == []

    @pytest.mark.parametrize("authorization", [
        "Bearer not-a-jwt",
        "Basic dXNlcjpwYXNz",
        "Bearer ",
    ])
    def test_undecodable_authorization(self, api_client, registry, authorization):
        response = api_client.post(
            SEND_URL, json={"user_ids": ["user-a"]}, headers={"Authorization": authorization}
        )

        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}
        assert registry.lookups == 0

    def test_token_without_subject(self, api_client, registry):
        token = make_session_token(sub=None, role="authenticated")

        response = api_client.post(
            SEND_URL, json={"user_ids": ["user-a"]}, headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert registry.lookups == 0

    def test_unauthorized_checked_before_recipients(self, api_client):
        response = api_client.post(SEND_URL, json={"user_ids": []})

        assert response.status_code == 401

    @pytest.mark.parametrize("content", [b"{not json", b"", b"[1, 2", b"\xff\xfe"])
    def test_invalid_json(self, api_client, registry, content):
        response = api_client.post(
            SEND_URL,
            content=content,
            headers={**auth_headers(), "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "invalid_json"}
        assert registry.lookups == 0

    @pytest.mark.parametrize("method", ["get", "put", "delete", "patch"])
    def test_method_not_allowed(self, api_client, registry, method):
        response = getattr(api_client, method)(SEND_URL, headers=auth_headers())

        assert response.status_code == 405
        assert response.json() == {"error": "method_not_allowed"}
        assert registry.lookups == 0


class TestSendConfiguration:
    """Deployment configuration errors"""

    @pytest.fixture
    def unconfigured_client(self, apns_stub, fcm_stub):
        from push_dispatch.services.push.dispatch_service import PushDispatchService

        settings = make_settings(SUPABASE_URL=None, SUPABASE_SERVICE_ROLE_KEY=None)
        service = PushDispatchService(apns_stub, fcm_stub)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[provide_dispatch_service] = lambda: service
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_missing_supabase_env(self, unconfigured_client, apns_stub, fcm_stub):
        response = unconfigured_client.post(
            SEND_URL, json={"user_ids": ["user-a"]}, headers=auth_headers()
        )

        assert response.status_code == 500
        assert response.json() == {"error": "missing_supabase_env"}
        assert apns_stub.sent == [] and fcm_stub.sent == []

    def test_missing_supabase_env_checked_before_auth(self, unconfigured_client):
        response = unconfigured_client.post(SEND_URL, json={"user_ids": []})

        assert response.status_code == 500
        assert response.json() == {"error": "missing_supabase_env"}

    def test_registry_unavailable(self, api_client, registry, apns_stub):
        async def failing_resolve(user_ids):
            raise RegistryUnavailableError("registry down")

        registry.resolve = failing_resolve

        response = api_client.post(
            SEND_URL, json={"user_ids": ["user-a"]}, headers=auth_headers()
        )

        assert response.status_code == 500
        assert response.json() == {"error": "registry_unavailable"}
        assert apns_stub.sent == []


class TestAuditStoreUnavailable:
    """An unreachable audit database never changes dispatch responses"""

    @pytest.fixture
    def audit_down_client(self, tmp_path, monkeypatch, registry):
        from push_dispatch.services.push import dispatch_service

        settings = make_settings(
            AUDIT_DATABASE_URL=f"sqlite:///{tmp_path / 'missing' / 'dir' / 'audit.db'}",
            APNS_KEY=None,
            FCM_SERVER_KEY=None,
        )
        # Build the real service from these settings on first use
        monkeypatch.setattr(dispatch_service, "_push_dispatch_service", None)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[provide_device_registry] = lambda: registry
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_unauthorized_still_returned(self, audit_down_client):
        response = audit_down_client.post(SEND_URL, json={"user_ids": ["user-a"]})

        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}

    def test_no_recipients_still_returned(self, audit_down_client):
        response = audit_down_client.post(SEND_URL, json={"user_ids": []}, headers=auth_headers())

        assert response.status_code == 400
        assert response.json() == {"error": "no_recipients"}

    def test_dispatch_proceeds_without_audit(self, audit_down_client):
        from push_dispatch.services.push import dispatch_service

        response = audit_down_client.post(
            SEND_URL, json={"user_ids": ["user-a"]}, headers=auth_headers()
        )

        # Providers are unconfigured here, so both devices count as failed
        assert response.status_code == 200
        assert response.json() == {"sent": 0, "failed": 2, "recipients": 1}
        assert dispatch_service._push_dispatch_service._audit_sink is None


class TestDependencyProviders:
    """Dependency providers run on the event loop and share one service"""

    def test_providers_are_coroutines(self):
        assert inspect.iscoroutinefunction(provide_device_registry)
        assert inspect.iscoroutinefunction(provide_dispatch_service)

    @pytest.mark.asyncio
    async def test_dispatch_service_built_once(self, monkeypatch):
        from push_dispatch.services.push import dispatch_service

        monkeypatch.setattr(dispatch_service, "_push_dispatch_service", None)
        settings = make_settings(APNS_KEY=None, FCM_SERVER_KEY=None)

        services = await asyncio.gather(
            *(provide_dispatch_service(settings=settings) for _ in range(5))
        )

        assert len({id(service) for service in services}) == 1


class TestServiceEndpoints:
    """Root, health and metrics endpoints"""

    def test_health(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"status", "registry_configured", "apns_configured", "fcm_configured"}

    def test_metrics_include_dispatch_counters(self, api_client):
        api_client.post(SEND_URL, json={"user_ids": ["user-a"]}, headers=auth_headers())

        response = api_client.get("/metrics")

        assert response.status_code == 200
        assert "push_dispatch_requests_total" in response.text
        assert "push_notifications_sent_total" in response.text
