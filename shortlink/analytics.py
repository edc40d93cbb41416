"""HTTP client for the analytics collaborator.

Every call either returns normally (2xx) or raises one of two errors, so the
dispatcher can decide about retries without looking at HTTP details:

- ``TransientDeliveryFailure``: connection error, timeout or 5xx. Retry.
- ``MalformedEvent``: 4xx. The event itself is bad; never retry.
"""

import logging

import httpx

from shortlink.errors import MalformedEvent, TransientDeliveryFailure
from shortlink.schemas import ClickEvent

__all__ = ["AnalyticsClient", "TRACK_PATH", "TRACK_BATCH_PATH", "HEALTH_PATH"]

logger = logging.getLogger(__name__)

TRACK_PATH = "/api/track"
TRACK_BATCH_PATH = "/api/track/batch"
HEALTH_PATH = "/health"


class AnalyticsClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        health_timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._health_timeout = health_timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def ingest(self, event: ClickEvent) -> None:
        await self._post(TRACK_PATH, event.to_payload())

    async def ingest_batch(self, events: list[ClickEvent]) -> None:
        await self._post(TRACK_BATCH_PATH, {"clicks": [event.to_payload() for event in events]})

    async def health(self) -> bool:
        try:
            response = await self._client.get(HEALTH_PATH, timeout=self._health_timeout)
        except httpx.HTTPError as exc:
            logger.warning(f"Analytics service health check failed: {exc}")
            return False
        if response.status_code != 200:
            logger.warning(f"Analytics service health check returned {response.status_code}")
            return False
        try:
            payload = response.json()
        except ValueError:
            return False
        if not isinstance(payload, dict):
            return False
        return str(payload.get("status", "")).upper() in ("OK", "HEALTHY")

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: dict) -> None:
        try:
            response = await self._client.post(path, json=body)
        except httpx.TransportError as exc:
            raise TransientDeliveryFailure(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code >= 500:
            raise TransientDeliveryFailure(
                f"Analytics responded {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise MalformedEvent(response.status_code, response.text[:200])
