"""
Device inventory REST API client.
Auth: Bearer token per account.
GET /devices        -> {"data": [{"id": ..., "connected": bool, ...}, ...]}
GET /devices/{id}   -> {"id": ..., "connected": bool, ...}
"""
import httpx
import logging
from typing import Optional
from app.config import settings
from app.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)


class InventoryClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        verify: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.INVENTORY_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.INVENTORY_TIMEOUT_SECONDS
        self.verify = settings.INVENTORY_SSL_VERIFY if verify is None else verify
        self._transport = transport

    async def _get(self, credential: str, path: str, params: Optional[dict] = None):
        headers = {"Authorization": f"Bearer {credential}"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                verify=self.verify,
                transport=self._transport,
            ) as client:
                resp = await client.get(path, headers=headers, params=params)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(
                f"Inventory API {path} returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailable(f"Inventory API {path} failed: {e}") from e

    async def list_devices(self, credential: str) -> list[dict]:
        """All devices visible to the credential, as [{"id", "connected", ...}]."""
        data = await self._get(
            credential,
            "/devices",
            params={"page": 1, "limit": settings.INVENTORY_PAGE_LIMIT, "views": "basic,status"},
        )
        if isinstance(data, dict):
            data = data.get("data")
        if not isinstance(data, list):
            raise UpstreamUnavailable("Inventory API returned no device list")
        return data

    async def get_device(self, credential: str, device_id: str) -> dict:
        data = await self._get(credential, f"/devices/{device_id}")
        if not isinstance(data, dict):
            raise UpstreamUnavailable(f"Inventory API returned no detail for device {device_id}")
        return data
