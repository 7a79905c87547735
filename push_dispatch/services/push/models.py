"""
Models for the push dispatch pipeline.

Dataclasses carry per-dispatch state between the coordinator and the
providers; pydantic models validate configuration and inbound requests.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from push_dispatch.services.push.constants import (
    APNS_PLATFORM_TAGS,
    DEFAULT_NOTIFICATION_TITLE,
)


class Platform(str, Enum):
    """Device platform as understood by the dispatcher."""

    IOS = "ios"
    ANDROID = "android"
    UNKNOWN = "unknown"

    @classmethod
    def from_tag(cls, tag: str) -> "Platform":
        """Classify a registry platform tag. Matching is exact; tags are not normalized."""
        if tag in APNS_PLATFORM_TAGS:
            return cls.IOS
        if tag == "android":
            return cls.ANDROID
        return cls.UNKNOWN


class PushProvider(str, Enum):
    """The two delivery providers an endpoint can be routed to."""

    APNS = "apns"
    FCM = "fcm"


def route_for_platform(platform_tag: str) -> PushProvider:
    """
    Pick the provider for a registry platform tag.

    Only the exact tags ``ios`` and ``apns`` go to APNS. Every other tag,
    including empty and unrecognized ones, is routed to FCM on purpose:
    registry tags are free-form and a malformed tag must still produce a
    delivery attempt rather than a dropped send.
    """
    if Platform.from_tag(platform_tag) == Platform.IOS:
        return PushProvider.APNS
    return PushProvider.FCM


class DeliveryStatus(str, Enum):
    """Outcome of one endpoint delivery attempt."""

    DELIVERED = "delivered"
    PROVIDER_REJECTED = "provider_rejected"
    CONFIGURATION_MISSING = "configuration_missing"


@dataclass
class DeliveryResult:
    """Result of a push notification delivery attempt."""

    device_token: str
    status: DeliveryStatus
    provider: PushProvider
    status_code: Optional[int] = None
    error: Optional[str] = None
    error_reason: Optional[str] = None  # APNS reason field or local error code
    apns_id: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


@dataclass(frozen=True)
class DeviceEndpoint:
    """A (device token, platform) pair borrowed from the device registry.

    Attributes:
        token: Opaque provider token, never interpreted
        platform_tag: Raw platform string as stored in the registry
    """

    token: str
    platform_tag: str = ""

    @property
    def platform(self) -> Platform:
        return Platform.from_tag(self.platform_tag)

    @property
    def provider(self) -> PushProvider:
        return route_for_platform(self.platform_tag)


@dataclass(frozen=True)
class NormalizedNotification:
    """Provider-agnostic envelope shared read-only by every fan-out task."""

    title: str
    body: str
    data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        if not isinstance(self.data, MappingProxyType):
            object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    def to_apns_dict(self) -> Dict[str, Any]:
        """Convert to the APNS JSON payload."""
        return {
            "aps": {
                "alert": {"title": self.title, "body": self.body},
                "sound": "default",
            },
            "data": dict(self.data),
        }

    def to_fcm_dict(self, device_token: str) -> Dict[str, Any]:
        """Convert to the FCM legacy HTTP JSON payload for one device."""
        return {
            "to": device_token,
            "priority": "high",
            "notification": {"title": self.title, "body": self.body},
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class SignedCredential:
    """APNS provider authentication token and its expiry (epoch seconds)."""

    token: str
    expires_at: int

    def is_fresh(self, now: float, margin_seconds: int) -> bool:
        """True if the credential stays valid for more than margin_seconds."""
        return self.expires_at > now + margin_seconds


@dataclass
class DispatchResult:
    """Aggregated result of dispatching one notification.

    Attributes:
        sent_count: Endpoints the provider accepted
        failed_count: Endpoints rejected, misconfigured, or timed out
        recipient_count: Number of requested recipient user IDs
        skipped_count: Endpoints skipped for an empty token
        duration_ms: Total dispatch duration in milliseconds
        results: Per-endpoint results, kept for logging and audit only
    """

    sent_count: int = 0
    failed_count: int = 0
    recipient_count: int = 0
    skipped_count: int = 0
    duration_ms: float = 0.0
    results: List[DeliveryResult] = field(default_factory=list)

    @property
    def attempted_count(self) -> int:
        return self.sent_count + self.failed_count

    def to_response(self) -> Dict[str, int]:
        """Externally visible counts."""
        return {
            "sent": self.sent_count,
            "failed": self.failed_count,
            "recipients": self.recipient_count,
        }


class NotificationRequest(BaseModel):
    """Validated, immutable dispatch request."""

    model_config = ConfigDict(frozen=True)

    sender_id: str = Field(..., min_length=1, description="Caller identity (JWT subject)")
    recipient_user_ids: List[str] = Field(..., min_length=1, description="Target user IDs")
    title: str = Field(default=DEFAULT_NOTIFICATION_TITLE, description="Notification title")
    body: str = Field(default="", description="Notification body text")
    data: Dict[str, Any] = Field(default_factory=dict, description="Opaque data passthrough")

    def normalize(self) -> NormalizedNotification:
        """Build the envelope shared across all endpoint deliveries."""
        return NormalizedNotification(title=self.title, body=self.body, data=self.data)


# =============================================================================
# Provider configuration
# =============================================================================


class APNSConfig(BaseModel):
    """Configuration for APNS provider.

    Every field may be missing; a provider built from an incomplete config
    reports ConfigurationMissing per endpoint instead of failing at startup.

    Attributes:
        key_pem: PEM-encoded .p8 auth key material
        key_id: Key identifier from Apple Developer Portal
        team_id: Team identifier, used as the token issuer
        bundle_id: App bundle identifier, sent as apns-topic
        use_sandbox: Whether to use sandbox environment (development)
    """

    key_pem: Optional[str] = Field(default=None, description="PEM-encoded .p8 auth key")
    key_id: Optional[str] = Field(default=None, description="Key ID")
    team_id: Optional[str] = Field(default=None, description="Team ID")
    bundle_id: Optional[str] = Field(default=None, description="App bundle identifier")
    use_sandbox: bool = Field(default=False, description="Use sandbox environment")

    @field_validator("key_pem")
    @classmethod
    def unescape_newlines(cls, v: Optional[str]) -> Optional[str]:
        """Environment values often carry the PEM with literal \\n sequences."""
        if v is None:
            return None
        return v.replace("\\n", "\n")

    @field_validator("key_pem", "key_id", "team_id", "bundle_id")
    @classmethod
    def blank_as_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def signing_configured(self) -> bool:
        return bool(self.key_pem and self.key_id and self.team_id)


class FCMConfig(BaseModel):
    """Configuration for FCM provider (legacy server key auth)."""

    server_key: Optional[str] = Field(default=None, description="FCM legacy server key")

    @field_validator("server_key")
    @classmethod
    def blank_as_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v
