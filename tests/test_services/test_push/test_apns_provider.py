"""
Tests for APNS Provider.

Uses httpx.MockTransport in place of Apple's HTTP/2 endpoint.
"""

import json
import pytest
from unittest.mock import MagicMock

import httpx
import jwt

from push_dispatch.services.push.apns_provider import APNSProvider
from push_dispatch.services.push.constants import (
    APNS_PRODUCTION_HOST,
    APNS_SANDBOX_HOST,
    ERROR_INVALID_APNS_KEY,
    ERROR_MISSING_APNS_BUNDLE,
    ERROR_MISSING_APNS_KEY,
    ERROR_TIMEOUT,
    ERROR_TRANSPORT,
)
from push_dispatch.services.push.credentials import APNSTokenSigner, SigningKeyError
from push_dispatch.services.push.models import (
    APNSConfig,
    DeliveryStatus,
    PushProvider,
)

DEVICE_TOKEN = "a" * 64


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, status_code=200, json_body=None, headers=None, exc=None):
        self.status_code = status_code
        self.json_body = json_body
        self.headers = headers or {}
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        if self.json_body is None:
            return httpx.Response(self.status_code, headers=self.headers)
        return httpx.Response(self.status_code, json=self.json_body, headers=self.headers)


def make_provider(config, handler, signer=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return APNSProvider(config, signer=signer, client=client)


class TestAPNSProviderInit:
    """Tests for host selection."""

    def test_sandbox_host(self, apns_config):
        provider = APNSProvider(apns_config)
        assert provider._host == APNS_SANDBOX_HOST

    def test_production_host(self, apns_config):
        provider = APNSProvider(apns_config.model_copy(update={"use_sandbox": False}))
        assert provider._host == APNS_PRODUCTION_HOST

    def test_builds_signer_when_not_given(self, apns_config):
        provider = APNSProvider(apns_config)
        assert isinstance(provider.signer, APNSTokenSigner)


class TestAPNSProviderSend:
    """Tests for request layout and response handling."""

    @pytest.mark.asyncio
    async def test_success(self, apns_config, notification):
        handler = Recorder(200, headers={"apns-id": "11111111-2222-3333-4444-555555555555"})
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.DELIVERED
        assert result.success is True
        assert result.provider == PushProvider.APNS
        assert result.status_code == 200
        assert result.apns_id == "11111111-2222-3333-4444-555555555555"
        await provider.close()

    @pytest.mark.asyncio
    async def test_request_layout(self, apns_config, notification):
        handler = Recorder(200)
        provider = make_provider(apns_config, handler)

        await provider.send(DEVICE_TOKEN, notification)

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"https://{APNS_SANDBOX_HOST}/3/device/{DEVICE_TOKEN}"
        assert request.headers["apns-topic"] == "com.example.blip"
        assert request.headers["apns-push-type"] == "alert"

        scheme, token = request.headers["authorization"].split(" ", 1)
        assert scheme == "bearer"
        assert jwt.get_unverified_header(token)["kid"] == apns_config.key_id

        assert json.loads(request.content) == {
            "aps": {
                "alert": {"title": "BLIP", "body": "You have a new blip"},
                "sound": "default",
            },
            "data": {"blip_id": "b-1"},
        }
        await provider.close()

    @pytest.mark.asyncio
    async def test_concurrent_sends_share_token(self, apns_config, notification):
        handler = Recorder(200)
        provider = make_provider(apns_config, handler)

        await provider.send(DEVICE_TOKEN, notification)
        await provider.send("b" * 64, notification)

        tokens = {r.headers["authorization"] for r in handler.requests}
        assert len(tokens) == 1
        await provider.close()

    @pytest.mark.asyncio
    async def test_rejection_captures_reason(self, apns_config, notification):
        handler = Recorder(400, json_body={"reason": "BadDeviceToken"})
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.PROVIDER_REJECTED
        assert result.status_code == 400
        assert result.error_reason == "BadDeviceToken"
        await provider.close()

    @pytest.mark.asyncio
    async def test_rejection_without_body(self, apns_config, notification):
        handler = Recorder(500)
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.PROVIDER_REJECTED
        assert result.error_reason == "Unknown"
        await provider.close()

    @pytest.mark.asyncio
    async def test_gone_is_rejected(self, apns_config, notification):
        handler = Recorder(410, json_body={"reason": "Unregistered", "timestamp": 1700000000000})
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.PROVIDER_REJECTED
        assert result.error_reason == "Unregistered"
        await provider.close()

    @pytest.mark.asyncio
    async def test_expired_provider_token_invalidates_signer(self, apns_config, notification):
        handler = Recorder(403, json_body={"reason": "ExpiredProviderToken"})
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.PROVIDER_REJECTED
        assert provider.signer.cached_credential is None
        await provider.close()

    @pytest.mark.asyncio
    async def test_other_forbidden_reason_keeps_token(self, apns_config, notification):
        handler = Recorder(403, json_body={"reason": "BadCertificateEnvironment"})
        provider = make_provider(apns_config, handler)

        await provider.send(DEVICE_TOKEN, notification)

        assert provider.signer.cached_credential is not None
        await provider.close()

    @pytest.mark.asyncio
    async def test_timeout(self, apns_config, notification):
        handler = Recorder(exc=httpx.ReadTimeout("timed out"))
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.PROVIDER_REJECTED
        assert result.error_reason == ERROR_TIMEOUT
        await provider.close()

    @pytest.mark.asyncio
    async def test_connection_error(self, apns_config, notification):
        handler = Recorder(exc=httpx.ConnectError("connection refused"))
        provider = make_provider(apns_config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.PROVIDER_REJECTED
        assert result.error_reason == ERROR_TRANSPORT
        await provider.close()


class TestAPNSProviderConfiguration:
    """Tests for incomplete configuration."""

    @pytest.mark.asyncio
    async def test_missing_bundle_id_never_signs(self, apns_config, notification):
        handler = Recorder(200)
        signer = MagicMock(spec=APNSTokenSigner)
        provider = make_provider(
            apns_config.model_copy(update={"bundle_id": None}), handler, signer=signer
        )

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.CONFIGURATION_MISSING
        assert result.error_reason == ERROR_MISSING_APNS_BUNDLE
        signer.get_signing_token.assert_not_called()
        assert handler.requests == []
        await provider.close()

    @pytest.mark.asyncio
    async def test_missing_key_material(self, apns_config, notification):
        handler = Recorder(200)
        config = apns_config.model_copy(update={"key_pem": None})
        provider = make_provider(config, handler)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.CONFIGURATION_MISSING
        assert result.error_reason == ERROR_MISSING_APNS_KEY
        assert handler.requests == []
        await provider.close()

    @pytest.mark.asyncio
    async def test_unloadable_key(self, notification):
        handler = Recorder(200)
        signer = MagicMock(spec=APNSTokenSigner)
        signer.get_signing_token.side_effect = SigningKeyError("bad key")
        config = APNSConfig(key_pem="x", key_id="k", team_id="t", bundle_id="com.example.blip")
        provider = make_provider(config, handler, signer=signer)

        result = await provider.send(DEVICE_TOKEN, notification)

        assert result.status == DeliveryStatus.CONFIGURATION_MISSING
        assert result.error_reason == ERROR_INVALID_APNS_KEY
        assert handler.requests == []
        await provider.close()


class TestAPNSProviderLifecycle:

    @pytest.mark.asyncio
    async def test_close_releases_client(self, apns_config):
        provider = make_provider(apns_config, Recorder(200))
        await provider.close()
        assert provider._client is None

    @pytest.mark.asyncio
    async def test_context_manager(self, apns_config):
        async with make_provider(apns_config, Recorder(200)) as provider:
            assert provider._client is not None
        assert provider._client is None
