"""
Constants for APNS, FCM and the push dispatch pipeline.
"""

# APNS Hosts
APNS_PRODUCTION_HOST = "api.push.apple.com"
APNS_SANDBOX_HOST = "api.sandbox.push.apple.com"

# APNS API path
APNS_DEVICE_PATH = "/3/device/{device_token}"

# FCM legacy HTTP endpoint
FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"

# JWT configuration
JWT_ALGORITHM = "ES256"
JWT_TOKEN_LIFETIME_SECONDS = 50 * 60
JWT_REFRESH_MARGIN_SECONDS = 30  # Never hand out a token closer than this to expiry

# Dispatch defaults
DEFAULT_PROVIDER_CONCURRENCY = 20
DEFAULT_PROVIDER_TIMEOUT_SECONDS = 10.0
DEFAULT_DISPATCH_TIMEOUT_SECONDS = 30.0
DEFAULT_NOTIFICATION_TITLE = "BLIP"

# Platform tags routed to APNS; every other tag goes to FCM
APNS_PLATFORM_TAGS = frozenset({"ios", "apns"})

# Device registry (PostgREST)
DEVICE_TOKENS_TABLE = "device_tokens"
REGISTRY_REST_PATH = "/rest/v1/{table}"

# Local error codes recorded on DeliveryResult.error_reason
ERROR_MISSING_APNS_BUNDLE = "missing_apns_bundle"
ERROR_MISSING_APNS_KEY = "missing_apns_key"
ERROR_INVALID_APNS_KEY = "invalid_apns_key"
ERROR_MISSING_FCM_KEY = "missing_fcm_key"
ERROR_TIMEOUT = "timeout"
ERROR_TRANSPORT = "transport_error"
ERROR_DISPATCH_DEADLINE = "dispatch_deadline_exceeded"

# APNS rejection reasons that mean the provider token itself is bad
APNS_PROVIDER_TOKEN_REASONS = frozenset({
    "ExpiredProviderToken",
    "InvalidProviderToken",
    "MissingProviderToken",
})
APNS_AUTH_ERROR_STATUS_CODES = {401, 403}
