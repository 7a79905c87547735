"""
Shared pytest fixtures for API tests.

Every test gets isolated settings, an in-memory device registry and a
dispatch service wired to fake providers, installed through
app.dependency_overrides and removed afterwards.
"""
import pytest
from fastapi.testclient import TestClient

from push_dispatch.main import app
from push_dispatch.api.v1.push import provide_device_registry, provide_dispatch_service
from push_dispatch.core.config import Settings, get_settings
from push_dispatch.services.push.device_registry import InMemoryDeviceRegistry
from push_dispatch.services.push.dispatch_service import PushDispatchService
from push_dispatch.services.push.models import (
    DeliveryResult,
    DeliveryStatus,
    PushProvider,
)


class StubProvider:
    """Provider double: accepts every token except those listed as rejected."""

    def __init__(self, provider, rejected=()):
        self.provider = provider
        self.rejected = set(rejected)
        self.sent = []

    async def send(self, device_token, notification):
        self.sent.append((device_token, notification))
        status = (
            DeliveryStatus.PROVIDER_REJECTED
            if device_token in self.rejected
            else DeliveryStatus.DELIVERED
        )
        return DeliveryResult(device_token=device_token, status=status, provider=self.provider)

    async def close(self):
        pass


def make_settings(**overrides) -> Settings:
    """Settings independent of the process environment and .env files."""
    values = {
        "SUPABASE_URL": "https://project.supabase.co",
        "SUPABASE_SERVICE_ROLE_KEY": "service-role-key",
        "PUSH_DEFAULT_TITLE": "BLIP",
        "AUDIT_DATABASE_URL": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def registry():
    return InMemoryDeviceRegistry({
        "user-a": [("T1", "ios"), ("T2", "android")],
        "user-b": [("T3", "android")],
    })


@pytest.fixture
def apns_stub():
    return StubProvider(PushProvider.APNS)


@pytest.fixture
def fcm_stub():
    return StubProvider(PushProvider.FCM)


@pytest.fixture
def api_client(registry, apns_stub, fcm_stub):
    """TestClient with the dispatch dependencies overridden."""
    settings = make_settings()
    service = PushDispatchService(apns_stub, fcm_stub)

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[provide_device_registry] = lambda: registry
    app.dependency_overrides[provide_dispatch_service] = lambda: service

    yield TestClient(app)

    app.dependency_overrides.clear()
