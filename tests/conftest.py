"""Pytest fixtures and configuration for test suite

This module provides:
1. Generated APNS signing keys (no key material is checked in)
2. Provider configurations built from those keys
3. Notification and endpoint factories

Factory Functions:
    - make_notification(**overrides) -> NormalizedNotification
    - make_endpoint(token, platform_tag) -> DeviceEndpoint
    - make_session_token(sub, **claims) -> str
"""
import pytest
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from push_dispatch.services.push.models import (
    APNSConfig,
    DeviceEndpoint,
    FCMConfig,
    NormalizedNotification,
)


# =============================================================================
# Factory Functions for Test Objects
# =============================================================================

def make_notification(
    title: str = "BLIP",
    body: str = "You have a new blip",
    data: dict = None,
) -> NormalizedNotification:
    """Factory function to create a NormalizedNotification for testing."""
    return NormalizedNotification(
        title=title,
        body=body,
        data=data if data is not None else {"blip_id": "b-1"},
    )


def make_endpoint(token: str = "a" * 64, platform_tag: str = "ios") -> DeviceEndpoint:
    """Factory function to create a DeviceEndpoint for testing."""
    return DeviceEndpoint(token=token, platform_tag=platform_tag)


def make_session_token(sub="user-123", **claims) -> str:
    """
    Build a session JWT with the given subject.

    Signed with a throwaway HMAC secret; the service only decodes the
    subject and never checks the signature.
    """
    payload = dict(claims)
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, "test-secret-not-used-for-verification", algorithm="HS256")


def generate_ec_pem() -> str:
    """Generate a fresh P-256 private key in PKCS8 PEM form."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


# =============================================================================
# Pytest Fixtures
# =============================================================================

@pytest.fixture
def ec_key_pem():
    """PEM text of a generated APNS-style EC signing key."""
    return generate_ec_pem()


@pytest.fixture
def apns_config(ec_key_pem):
    """Fully configured APNS settings."""
    return APNSConfig(
        key_pem=ec_key_pem,
        key_id="KEYID12345",
        team_id="TEAMID1234",
        bundle_id="com.example.blip",
        use_sandbox=True,
    )


@pytest.fixture
def fcm_config():
    """Configured FCM settings."""
    return FCMConfig(server_key="AAAA-test-server-key")


@pytest.fixture
def notification():
    """A standard notification envelope."""
    return make_notification()
