"""
Device registry access.

Resolves recipient user IDs to device endpoints with a single bulk read
against the ``device_tokens`` table exposed through Supabase PostgREST.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Sequence

import httpx

from push_dispatch.services.push.constants import (
    DEVICE_TOKENS_TABLE,
    REGISTRY_REST_PATH,
)
from push_dispatch.services.push.models import DeviceEndpoint

logger = logging.getLogger(__name__)


class RegistryUnavailableError(Exception):
    """The bulk endpoint lookup could not be completed."""
    pass


class DeviceRegistry(ABC):
    """Read-only view of user_id -> registered device endpoints."""

    @abstractmethod
    async def resolve(self, user_ids: Sequence[str]) -> List[DeviceEndpoint]:
        """
        Look up every endpoint registered to any of the given users.

        Returns an empty list when nothing is registered.

        Raises:
            RegistryUnavailableError: If the lookup itself failed.
        """

    async def close(self) -> None:
        """Release resources held by the registry."""


def _quote_filter_value(value: str) -> str:
    """Quote a value for a PostgREST ``in.(...)`` filter."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def rows_to_endpoints(rows: Iterable[Any]) -> List[DeviceEndpoint]:
    """
    Convert registry rows to endpoints.

    Non-string tokens become empty tokens (skipped later by the
    dispatcher) and non-string platform tags become empty tags.
    """
    endpoints = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        token = row.get("token")
        platform = row.get("platform")
        endpoints.append(DeviceEndpoint(
            token=token if isinstance(token, str) else "",
            platform_tag=platform if isinstance(platform, str) else "",
        ))
    return endpoints


class SupabaseDeviceRegistry(DeviceRegistry):
    """
    Device registry backed by the Supabase REST API.

    Usage:
        registry = SupabaseDeviceRegistry(url, service_role_key)
        endpoints = await registry.resolve(["user-1", "user-2"])
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        table: str = DEVICE_TOKENS_TABLE,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key
        self._timeout = timeout
        self._table = table
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    def _headers(self) -> dict:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept": "application/json",
        }

    async def resolve(self, user_ids: Sequence[str]) -> List[DeviceEndpoint]:
        if not user_ids:
            return []

        url = f"{self._base_url}{REGISTRY_REST_PATH.format(table=self._table)}"
        params = {
            "select": "token,platform",
            "user_id": "in.({})".format(",".join(_quote_filter_value(u) for u in user_ids)),
        }

        client = await self._get_client()
        try:
            response = await client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Device registry request failed: {e}")
            raise RegistryUnavailableError(f"Device registry request failed: {e}") from e

        if not response.is_success:
            logger.error(
                "Device registry returned an error",
                extra={"status_code": response.status_code}
            )
            raise RegistryUnavailableError(
                f"Device registry returned HTTP {response.status_code}"
            )

        try:
            rows = response.json()
        except ValueError as e:
            raise RegistryUnavailableError("Device registry returned invalid JSON") from e

        if not isinstance(rows, list):
            raise RegistryUnavailableError("Device registry returned an unexpected payload")

        endpoints = rows_to_endpoints(rows)
        logger.debug(
            "Resolved device endpoints",
            extra={"user_count": len(user_ids), "endpoint_count": len(endpoints)}
        )
        return endpoints

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class InMemoryDeviceRegistry(DeviceRegistry):
    """
    Registry held in a dict, used for local development and tests.

    Attributes:
        devices: Mapping of user_id to list of (token, platform) pairs
        lookups: Number of bulk lookups performed
    """

    def __init__(self, devices: Optional[dict] = None):
        self.devices = devices or {}
        self.lookups = 0

    async def resolve(self, user_ids: Sequence[str]) -> List[DeviceEndpoint]:
        self.lookups += 1
        endpoints = []
        # One row per registered device, however often a user is listed
        for user_id in dict.fromkeys(user_ids):
            for token, platform in self.devices.get(user_id, []):
                endpoints.append(DeviceEndpoint(token=token, platform_tag=platform))
        return endpoints


# Global singleton instance
_device_registry: Optional[DeviceRegistry] = None


def get_device_registry() -> DeviceRegistry:
    """
    Get the global DeviceRegistry singleton instance.

    Raises:
        RuntimeError: If SUPABASE_URL or the service key is not configured.
    """
    global _device_registry
    if _device_registry is None:
        from push_dispatch.core.config import settings
        if not settings.registry_ready:
            raise RuntimeError("Device registry connection is not configured")
        _device_registry = SupabaseDeviceRegistry(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY,
            timeout=settings.REGISTRY_TIMEOUT_SECONDS,
        )
    return _device_registry


async def shutdown_device_registry() -> None:
    """Close and drop the global DeviceRegistry instance."""
    global _device_registry
    if _device_registry is not None:
        await _device_registry.close()
        _device_registry = None
