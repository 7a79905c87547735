"""Push notification dispatch service (APNS + FCM fan-out)."""

__version__ = "1.0.0"
