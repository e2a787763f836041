"""Fire-and-forget lifecycle event sinks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from shipyard import __version__
from shipyard.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_DISTINCT_ID = "shipyard-deployments"


@dataclass(slots=True)
class AnalyticsEvent:
    """Named lifecycle event with scalar properties."""

    event: str
    properties: dict[str, Any] = field(default_factory=dict)


class AnalyticsSink(Protocol):
    """Protocol implemented by analytics collectors."""

    def track(self, event: AnalyticsEvent) -> None:
        """Deliver one event; callers swallow and log any failure."""


class NullAnalytics:
    """Sink used when analytics are disabled."""

    def track(self, event: AnalyticsEvent) -> None:
        logger.debug("Analytics disabled, dropping %s", event.event)

    def close(self) -> None:
        return None


class PostHogAnalytics:
    """Posts events to a PostHog ``/capture/`` endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        host: str = "https://app.posthog.com",
        timeout_seconds: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._capture_url = f"{host.rstrip('/')}/capture/"
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=timeout_seconds),
            headers={"User-Agent": f"shipyard-analytics/{__version__}"},
            transport=transport,
        )

    def track(self, event: AnalyticsEvent) -> None:
        properties = {k: v for k, v in event.properties.items() if v is not None}
        payload = {
            "api_key": self._api_key,
            "event": event.event,
            "properties": {
                **properties,
                "$lib": "shipyard",
                "$lib_version": __version__,
            },
            "timestamp": utc_now().isoformat(),
            "distinct_id": str(event.properties.get("user_id") or DEFAULT_DISTINCT_ID),
        }
        try:
            response = self._client.post(self._capture_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as error:
            logger.warning("Failed to deliver analytics event %s: %s", event.event, error)

    def close(self) -> None:
        self._client.close()
