"""
FCM (Firebase Cloud Messaging) Provider.

Sends Android notifications through the FCM legacy HTTP endpoint using
server key authorization. One attempt per device token; 2xx is the only
success.
"""

import logging
import time
from typing import Optional

import httpx

from push_dispatch.core.logging_config import mask_token
from push_dispatch.services.push.constants import (
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    ERROR_MISSING_FCM_KEY,
    ERROR_TIMEOUT,
    ERROR_TRANSPORT,
    FCM_SEND_URL,
)
from push_dispatch.services.push.models import (
    DeliveryResult,
    DeliveryStatus,
    FCMConfig,
    NormalizedNotification,
    PushProvider,
)

logger = logging.getLogger(__name__)


class FCMProvider:
    """
    FCM provider for sending push notifications to Android devices.

    Usage:
        provider = FCMProvider(FCMConfig(server_key="AAAA..."))
        result = await provider.send(device_token, notification)

    Attributes:
        config: FCM configuration
        _client: httpx AsyncClient (lazy)
    """

    def __init__(
        self,
        config: FCMConfig,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        send_url: str = FCM_SEND_URL,
    ):
        self.config = config
        self._timeout = timeout
        self._client = client
        self._send_url = send_url

        logger.info(
            "FCM provider initialized",
            extra={"server_key_configured": bool(config.server_key)}
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._client

    async def send(
        self,
        device_token: str,
        notification: NormalizedNotification,
    ) -> DeliveryResult:
        """
        Send a push notification to a single device.

        Args:
            device_token: FCM registration token
            notification: Provider-agnostic notification

        Returns:
            DeliveryResult with the outcome
        """
        if not self.config.server_key:
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.CONFIGURATION_MISSING,
                provider=PushProvider.FCM,
                error="FCM server key not configured",
                error_reason=ERROR_MISSING_FCM_KEY,
            )

        client = await self._get_client()
        start_time = time.perf_counter()

        try:
            response = await client.post(
                self._send_url,
                json=notification.to_fcm_dict(device_token),
                headers={"Authorization": f"key={self.config.server_key}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(
                "FCM request timed out",
                extra={"device_token": mask_token(device_token), "timeout": self._timeout}
            )
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.PROVIDER_REJECTED,
                provider=PushProvider.FCM,
                error=f"Timeout: {e}",
                error_reason=ERROR_TIMEOUT,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"FCM HTTP error: {e}",
                extra={"device_token": mask_token(device_token)}
            )
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.PROVIDER_REJECTED,
                provider=PushProvider.FCM,
                error=f"HTTP error: {e}",
                error_reason=ERROR_TRANSPORT,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )

        duration_ms = (time.perf_counter() - start_time) * 1000

        if response.is_success:
            return DeliveryResult(
                device_token=device_token,
                status=DeliveryStatus.DELIVERED,
                provider=PushProvider.FCM,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        logger.warning(
            "FCM rejected notification",
            extra={
                "device_token": mask_token(device_token),
                "status_code": response.status_code,
            }
        )
        return DeliveryResult(
            device_token=device_token,
            status=DeliveryStatus.PROVIDER_REJECTED,
            provider=PushProvider.FCM,
            status_code=response.status_code,
            error=f"FCM error: HTTP {response.status_code}",
            error_reason=response.reason_phrase or None,
            duration_ms=duration_ms,
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.debug("FCM provider closed")

    async def __aenter__(self) -> "FCMProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
