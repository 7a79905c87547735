"""
Push notification dispatch for mobile platforms.

This package contains:
- APNSTokenSigner - cached ES256 provider tokens for APNS
- APNSProvider (iOS) and FCMProvider (Android) delivery clients
- DeviceRegistry - bulk user -> endpoint resolution
- PushDispatchService - concurrent fan-out with aggregated counts
- DeliveryAuditSink - optional per-endpoint outcome records
"""

from push_dispatch.services.push.apns_provider import APNSProvider
from push_dispatch.services.push.audit import DeliveryAuditSink
from push_dispatch.services.push.credentials import APNSTokenSigner, SigningKeyError
from push_dispatch.services.push.device_registry import (
    DeviceRegistry,
    InMemoryDeviceRegistry,
    RegistryUnavailableError,
    SupabaseDeviceRegistry,
)
from push_dispatch.services.push.dispatch_service import PushDispatchService
from push_dispatch.services.push.fcm_provider import FCMProvider
from push_dispatch.services.push.models import (
    APNSConfig,
    DeliveryResult,
    DeliveryStatus,
    DeviceEndpoint,
    DispatchResult,
    FCMConfig,
    NormalizedNotification,
    NotificationRequest,
    Platform,
    PushProvider,
    SignedCredential,
    route_for_platform,
)

__all__ = [
    # Dispatch Service
    "PushDispatchService",
    "DispatchResult",
    "NotificationRequest",
    "NormalizedNotification",
    # Registry
    "DeviceRegistry",
    "SupabaseDeviceRegistry",
    "InMemoryDeviceRegistry",
    "RegistryUnavailableError",
    "DeviceEndpoint",
    "Platform",
    "PushProvider",
    "route_for_platform",
    # APNS
    "APNSProvider",
    "APNSConfig",
    "APNSTokenSigner",
    "SignedCredential",
    "SigningKeyError",
    # FCM
    "FCMProvider",
    "FCMConfig",
    # Common
    "DeliveryResult",
    "DeliveryStatus",
    "DeliveryAuditSink",
]
