"""
APNS provider token signer.

Produces the ES256 bearer token APNS expects for token-based
authentication and caches it so that concurrent deliveries share one
token. APNS throttles providers that re-sign too often
(TooManyProviderTokenUpdates), so a token is reused for 50 minutes and
replaced once it is within 30 seconds of that expiry.
"""

import logging
import time
from typing import Callable, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from push_dispatch.core.metrics import record_signing_token_minted
from push_dispatch.services.push.constants import (
    JWT_ALGORITHM,
    JWT_REFRESH_MARGIN_SECONDS,
    JWT_TOKEN_LIFETIME_SECONDS,
)
from push_dispatch.services.push.models import APNSConfig, SignedCredential

logger = logging.getLogger(__name__)


class SigningKeyError(Exception):
    """The configured APNS key material is not a usable EC private key."""
    pass


class APNSTokenSigner:
    """
    Caching signer for APNS provider authentication tokens.

    One instance is owned by each dispatch service; nothing is kept at
    module level, so tests construct a fresh signer per case.

    The read path takes no lock: it reads the current credential reference
    and compares its expiry. Credentials are immutable and swapped
    wholesale, so a concurrent refresh can at worst sign one extra token.

    Usage:
        signer = APNSTokenSigner(APNSConfig(key_pem=..., key_id=..., team_id=...))
        token = signer.get_signing_token()  # None if not configured
    """

    def __init__(
        self,
        config: APNSConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self._clock = clock
        self._cached: Optional[SignedCredential] = None
        self._private_key: Optional[ec.EllipticCurvePrivateKey] = None

    @property
    def cached_credential(self) -> Optional[SignedCredential]:
        return self._cached

    def get_signing_token(self) -> Optional[str]:
        """
        Return a bearer token valid for at least 30 more seconds.

        Returns:
            Signed token, or None when key material, key ID or team ID is
            not configured.

        Raises:
            SigningKeyError: If the configured key cannot be loaded.
        """
        if not self.config.signing_configured:
            return None

        now = self._clock()
        cached = self._cached
        if cached is not None and cached.is_fresh(now, JWT_REFRESH_MARGIN_SECONDS):
            return cached.token

        credential = self._mint(now)
        self._cached = credential
        return credential.token

    def invalidate(self) -> None:
        """Drop the cached token so the next call signs a new one."""
        self._cached = None

    def _load_private_key(self) -> ec.EllipticCurvePrivateKey:
        """Load the EC private key from the configured PEM material."""
        if self._private_key is None:
            try:
                key = serialization.load_pem_private_key(
                    self.config.key_pem.encode("utf-8"),
                    password=None,
                )
            except (ValueError, TypeError) as e:
                raise SigningKeyError(f"APNS key could not be loaded: {e}") from e

            if not isinstance(key, ec.EllipticCurvePrivateKey):
                raise SigningKeyError("APNS key must be an EC private key (ES256)")

            self._private_key = key
            logger.debug("Loaded APNS private key", extra={"key_id": self.config.key_id})

        return self._private_key

    def _mint(self, now: float) -> SignedCredential:
        """Sign a new token issued at now."""
        private_key = self._load_private_key()

        issued_at = int(now)
        token = jwt.encode(
            {"iss": self.config.team_id, "iat": issued_at},
            private_key,
            algorithm=JWT_ALGORITHM,
            headers={"kid": self.config.key_id, "typ": None},
        )
        credential = SignedCredential(
            token=token,
            expires_at=issued_at + JWT_TOKEN_LIFETIME_SECONDS,
        )

        record_signing_token_minted()
        logger.info(
            "Generated new APNS provider token",
            extra={
                "team_id": self.config.team_id,
                "key_id": self.config.key_id,
                "expires_at": credential.expires_at,
            }
        )
        return credential
