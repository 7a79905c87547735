"""
Unified Push Dispatch Service.

Fans one notification out to every resolved device endpoint.

Features:
- Platform-aware routing (ios/apns -> APNS, everything else -> FCM)
- Concurrent delivery, capped per provider
- Overall dispatch deadline; unfinished attempts count as failed
- Aggregated counts, with per-endpoint results kept for logging and audit
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from push_dispatch.core.config import Settings
from push_dispatch.core.logging_config import mask_token
from push_dispatch.core.metrics import record_push_notification_sent
from push_dispatch.services.push.apns_provider import APNSProvider
from push_dispatch.services.push.audit import DeliveryAuditSink
from push_dispatch.services.push.constants import (
    DEFAULT_DISPATCH_TIMEOUT_SECONDS,
    DEFAULT_PROVIDER_CONCURRENCY,
    ERROR_DISPATCH_DEADLINE,
)
from push_dispatch.services.push.credentials import APNSTokenSigner
from push_dispatch.services.push.fcm_provider import FCMProvider
from push_dispatch.services.push.models import (
    APNSConfig,
    DeliveryResult,
    DeliveryStatus,
    DeviceEndpoint,
    DispatchResult,
    FCMConfig,
    NormalizedNotification,
    PushProvider,
)

logger = logging.getLogger(__name__)


class PushDispatchService:
    """
    Unified push dispatch service.

    Routes each endpoint to the provider chosen by its platform tag:
    - ``ios`` / ``apns`` -> APNSProvider
    - anything else -> FCMProvider

    Per-endpoint failures never abort the dispatch; they are folded into
    the failed count.

    Usage:
        service = PushDispatchService(apns_provider, fcm_provider)
        result = await service.dispatch(
            notification=NormalizedNotification(title="BLIP", body="hi"),
            endpoints=endpoints,
            recipient_count=1,
        )
    """

    def __init__(
        self,
        apns_provider: APNSProvider,
        fcm_provider: FCMProvider,
        concurrency: int = DEFAULT_PROVIDER_CONCURRENCY,
        dispatch_timeout: float = DEFAULT_DISPATCH_TIMEOUT_SECONDS,
        audit_sink: Optional[DeliveryAuditSink] = None,
    ):
        """
        Initialize dispatch service.

        Args:
            apns_provider: APNS provider (iOS)
            fcm_provider: FCM provider (Android and unrecognized platforms)
            concurrency: Max in-flight requests per provider per dispatch
            dispatch_timeout: Overall deadline for one dispatch, in seconds
            audit_sink: Optional sink for per-endpoint outcome records
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._apns = apns_provider
        self._fcm = fcm_provider
        self._concurrency = concurrency
        self._dispatch_timeout = dispatch_timeout
        self._audit_sink = audit_sink

        logger.info(
            "PushDispatchService initialized",
            extra={
                "concurrency": concurrency,
                "dispatch_timeout": dispatch_timeout,
                "audit_enabled": audit_sink is not None,
            }
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushDispatchService":
        """Build the service and its providers from application settings."""
        apns_config = APNSConfig(
            key_pem=settings.APNS_KEY,
            key_id=settings.APNS_KEY_ID,
            team_id=settings.APNS_TEAM_ID,
            bundle_id=settings.APNS_BUNDLE_ID,
            use_sandbox=settings.APNS_USE_SANDBOX,
        )
        apns = APNSProvider(
            apns_config,
            signer=APNSTokenSigner(apns_config),
            timeout=settings.PUSH_PROVIDER_TIMEOUT_SECONDS,
        )
        fcm = FCMProvider(
            FCMConfig(server_key=settings.FCM_SERVER_KEY),
            timeout=settings.PUSH_PROVIDER_TIMEOUT_SECONDS,
        )

        audit_sink = None
        if settings.audit_enabled:
            try:
                audit_sink = DeliveryAuditSink.from_url(settings.AUDIT_DATABASE_URL)
            except SQLAlchemyError as e:
                logger.error(
                    f"Delivery audit store unavailable, continuing without audit: {e}",
                    extra={"event_type": "audit_store_unavailable"}
                )

        return cls(
            apns,
            fcm,
            concurrency=settings.PUSH_MAX_CONCURRENCY,
            dispatch_timeout=settings.PUSH_DISPATCH_TIMEOUT_SECONDS,
            audit_sink=audit_sink,
        )

    async def _dispatch_to_device(
        self,
        endpoint: DeviceEndpoint,
        notification: NormalizedNotification,
        semaphores: Dict[PushProvider, asyncio.Semaphore],
    ) -> DeliveryResult:
        """
        Deliver to a single endpoint through its provider.

        Never raises: unexpected provider exceptions become a rejected result.
        """
        provider = endpoint.provider
        client = self._apns if provider == PushProvider.APNS else self._fcm

        async with semaphores[provider]:
            try:
                result = await client.send(endpoint.token, notification)
            except Exception as e:
                logger.error(
                    f"Error dispatching to device: {e}",
                    extra={"device_token": mask_token(endpoint.token), "provider": provider.value},
                    exc_info=True,
                )
                result = DeliveryResult(
                    device_token=endpoint.token,
                    status=DeliveryStatus.PROVIDER_REJECTED,
                    provider=provider,
                    error=str(e),
                )

        record_push_notification_sent(
            provider=provider.value,
            status=result.status.value,
            duration_seconds=result.duration_ms / 1000,
        )
        return result

    async def dispatch(
        self,
        notification: NormalizedNotification,
        endpoints: Sequence[DeviceEndpoint],
        recipient_count: int,
        sender_id: Optional[str] = None,
    ) -> DispatchResult:
        """
        Dispatch notification to every endpoint.

        Args:
            notification: Envelope shared by all deliveries
            endpoints: Resolved device endpoints
            recipient_count: Number of requested recipients, echoed back
            sender_id: Caller identity, recorded by the audit sink

        Returns:
            DispatchResult with aggregated counts
        """
        start_time = time.time()

        attempted = [e for e in endpoints if e.token]
        skipped = len(endpoints) - len(attempted)

        if not attempted:
            logger.debug(
                "No deliverable endpoints",
                extra={"recipient_count": recipient_count, "skipped": skipped}
            )
            return DispatchResult(
                recipient_count=recipient_count,
                skipped_count=skipped,
                duration_ms=(time.time() - start_time) * 1000,
            )

        semaphores = {
            PushProvider.APNS: asyncio.Semaphore(self._concurrency),
            PushProvider.FCM: asyncio.Semaphore(self._concurrency),
        }
        tasks = [
            asyncio.create_task(self._dispatch_to_device(endpoint, notification, semaphores))
            for endpoint in attempted
        ]

        _, pending = await asyncio.wait(tasks, timeout=self._dispatch_timeout)
        if pending:
            logger.warning(
                "Dispatch deadline exceeded, cancelling unfinished deliveries",
                extra={"pending": len(pending), "timeout": self._dispatch_timeout}
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: List[Tuple[DeviceEndpoint, DeliveryResult]] = []
        for endpoint, task in zip(attempted, tasks):
            if task in pending:
                result = DeliveryResult(
                    device_token=endpoint.token,
                    status=DeliveryStatus.PROVIDER_REJECTED,
                    provider=endpoint.provider,
                    error="Dispatch deadline exceeded",
                    error_reason=ERROR_DISPATCH_DEADLINE,
                )
                record_push_notification_sent(endpoint.provider.value, result.status.value)
            else:
                result = task.result()
            outcomes.append((endpoint, result))

        results = [result for _, result in outcomes]
        sent_count = sum(1 for r in results if r.success)
        failed_count = len(results) - sent_count
        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            "Dispatch complete",
            extra={
                "recipient_count": recipient_count,
                "endpoints": len(endpoints),
                "sent": sent_count,
                "failed": failed_count,
                "skipped": skipped,
                "configuration_missing": sum(
                    1 for r in results if r.status == DeliveryStatus.CONFIGURATION_MISSING
                ),
                "duration_ms": round(duration_ms, 2),
            }
        )

        if self._audit_sink is not None and sender_id:
            await self._audit_sink.record(sender_id, outcomes)

        return DispatchResult(
            sent_count=sent_count,
            failed_count=failed_count,
            recipient_count=recipient_count,
            skipped_count=skipped,
            duration_ms=duration_ms,
            results=results,
        )

    async def close(self) -> None:
        """Close providers and release resources."""
        await self._apns.close()
        await self._fcm.close()
        logger.debug("PushDispatchService closed")

    async def __aenter__(self) -> "PushDispatchService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


# Global singleton instance
_push_dispatch_service: Optional[PushDispatchService] = None


def get_push_dispatch_service(settings: Optional[Settings] = None) -> PushDispatchService:
    """
    Get the global PushDispatchService singleton instance.

    Args:
        settings: Settings used on first construction (default: process settings)
    """
    global _push_dispatch_service
    if _push_dispatch_service is None:
        if settings is None:
            from push_dispatch.core.config import settings as process_settings
            settings = process_settings
        _push_dispatch_service = PushDispatchService.from_settings(settings)
    return _push_dispatch_service


async def shutdown_push_dispatch_service() -> None:
    """Close and drop the global PushDispatchService instance."""
    global _push_dispatch_service
    if _push_dispatch_service is not None:
        await _push_dispatch_service.close()
        _push_dispatch_service = None
