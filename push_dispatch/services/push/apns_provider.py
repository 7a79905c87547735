"""
APNS (Apple Push Notification Service) Provider.

Sends one alert notification per device token over HTTP/2 with
token-based authentication. Each endpoint gets exactly one attempt;
failures are reported as results, never raised.
"""

import json
import logging
import time
from typing import Optional

import httpx

from push_dispatch.core.logging_config import mask_token
from push_dispatch.services.push.constants import (
    APNS_AUTH_ERROR_STATUS_CODES,
    APNS_DEVICE_PATH,
    APNS_PRODUCTION_HOST,
    APNS_PROVIDER_TOKEN_REASONS,
    APNS_SANDBOX_HOST,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    ERROR_INVALID_APNS_KEY,
    ERROR_MISSING_APNS_BUNDLE,
    ERROR_MISSING_APNS_KEY,
    ERROR_TIMEOUT,
    ERROR_TRANSPORT,
)
from push_dispatch.services.push.credentials import APNSTokenSigner, SigningKeyError
from push_dispatch.services.push.models import (
    APNSConfig,
    DeliveryResult,
    DeliveryStatus,
    NormalizedNotification,
    PushProvider,
)

logger = logging.getLogger(__name__)


class APNSProvider:
    """
    APNS provider for sending push notifications to Apple devices.

    Usage:
        config = APNSConfig(
            key_pem=pem_text,
            key_id="XXXXXXXXXX",
            team_id="YYYYYYYYYY",
            bundle_id="com.example.blip",
        )
        provider = APNSProvider(config)
        result = await provider.send(device_token, notification)

    Attributes:
        config: APNS configuration
        signer: Shared provider token signer
        _client: httpx AsyncClient with HTTP/2 enabled (lazy)
    """

    def __init__(
        self,
        config: APNSConfig,
        signer: Optional[APNSTokenSigner] = None,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize APNS provider.

        Args:
            config: APNS configuration with auth key details
            signer: Token signer; one is built from config when omitted
            timeout: Per-request timeout in seconds
            client: Optional pre-built HTTP client (tests, shared pools)
        """
        self.config = config
        self.signer = signer or APNSTokenSigner(config)
        self._timeout = timeout
        self._client = client

        self._host = APNS_SANDBOX_HOST if config.use_sandbox else APNS_PRODUCTION_HOST
        self._base_url = f"https://{self._host}"

        logger.info(
            "APNS provider initialized",
            extra={
                "host": self._host,
                "bundle_id": config.bundle_id,
                "signing_configured": config.signing_configured,
            }
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP/2 client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                http2=True,
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._client

    def _build_headers(self, provider_token: str) -> dict:
        """Build request headers for APNS."""
        return {
            "authorization": f"bearer {provider_token}",
            "apns-topic": self.config.bundle_id,
            "apns-push-type": "alert",
        }

    def _config_missing(self, device_token: str, reason: str, error: str) -> DeliveryResult:
        return DeliveryResult(
            device_token=device_token,
            status=DeliveryStatus.CONFIGURATION_MISSING,
            provider=PushProvider.APNS,
            error=error,
            error_reason=reason,
        )

    async def send(
        self,
        device_token: str,
        notification: NormalizedNotification,
    ) -> DeliveryResult:
        """
        Send a push notification to a single device.

        Args:
            device_token: APNS device token (hex string)
            notification: Provider-agnostic notification

        Returns:
            DeliveryResult with the outcome
        """
        if not self.config.bundle_id:
            return self._config_missing(
                device_token, ERROR_MISSING_APNS_BUNDLE, "APNS bundle ID not configured"
            )

        try:
            provider_token = self.signer.get_signing_token()
        except SigningKeyError as e:
            logger.error(f"APNS signing failed: {e}")
            return self._config_missing(device_token, ERROR_INVALID_APNS_KEY, str(e))

        if provider_token is None:
            return self._config_missing(
                device_token, ERROR_MISSING_APNS_KEY, "APNS signing key not configured"
            )

        client = await self._get_client()
        url = f"{self._base_url}{APNS_DEVICE_PATH.format(device_token=device_token)}"
        body = json.dumps(notification.to_apns_dict())
        start_time = time.perf_counter()

        try:
            response = await client.post(
                url,
                content=body,
                headers=self._build_headers(provider_token),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "APNS request timed out",
                extra={"device_token": mask_token(device_token), "timeout": self._timeout}
            )
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.PROVIDER_REJECTED,
                provider=PushProvider.APNS,
                error=f"Timeout: {e}",
                error_reason=ERROR_TIMEOUT,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"APNS HTTP error: {e}",
                extra={"device_token": mask_token(device_token)}
            )
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.PROVIDER_REJECTED,
                provider=PushProvider.APNS,
                error=f"HTTP error: {e}",
                error_reason=ERROR_TRANSPORT,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

        duration_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code
        apns_id = response.headers.get("apns-id")

        if 200 <= status_code < 300:
            logger.debug(
                "APNS notification sent",
                extra={
                    "device_token": mask_token(device_token),
                    "apns_id": apns_id,
                    "duration_ms": round(duration_ms, 2),
                }
            )
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.DELIVERED,
                provider=PushProvider.APNS,
                status_code=status_code,
                apns_id=apns_id,
                duration_ms=duration_ms,
            )

        reason = self._parse_reason(response)

        if status_code in APNS_AUTH_ERROR_STATUS_CODES and reason in APNS_PROVIDER_TOKEN_REASONS:
            # Force a fresh token for the next send
            self.signer.invalidate()

        logger.warning(
            "APNS rejected notification",
            extra={
                "device_token": mask_token(device_token),
                "status_code": status_code,
                "reason": reason,
            }
        )
        return DeliveryResult(
            device_token=device_token,
            status=DeliveryStatus.PROVIDER_REJECTED,
            provider=PushProvider.APNS,
            status_code=status_code,
            error=f"APNS error: {reason}",
            error_reason=reason,
            apns_id=apns_id,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _parse_reason(response: httpx.Response) -> str:
        """Extract the APNS reason field from an error response body."""
        if not response.content:
            return "Unknown"
        try:
            error_body = response.json()
        except ValueError:
            return "Unknown"
        if isinstance(error_body, dict):
            return str(error_body.get("reason", "Unknown"))
        return "Unknown"

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug("APNS provider closed")

    async def __aenter__(self) -> "APNSProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
