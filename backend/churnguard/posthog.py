"""PostHog events API client (read-only)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterator, Optional

import requests

from .config import settings
from .errors import PostHogError
from .log import get_logger

logger = get_logger(__name__)

Event = Dict[str, Any]


class PostHogClient:
    name = "posthog"

    def __init__(
        self,
        api_key: str,
        project_id: str,
        host: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        max_pages: int = 50,
    ):
        if not api_key or not project_id:
            raise PostHogError("PostHog API key or project ID not configured")
        self.api_key = api_key
        self.project_id = project_id
        self.host = (host or settings.posthog_host).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.session = session or requests.Session()
        self.max_pages = max_pages

    def fetch_events(self, since: datetime, until: datetime) -> Iterator[Event]:
        """Yield raw events between `since` and `until` (naive UTC), following `next` links."""
        url: Optional[str] = f"{self.host}/api/projects/{self.project_id}/events/"
        params: Optional[dict] = {
            "after": since.isoformat() + "Z",
            "before": until.isoformat() + "Z",
            "limit": 500,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        pages = 0
        while url and pages < self.max_pages:
            try:
                resp = self.session.get(url, headers=headers, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise PostHogError(f"PostHog request failed: {e}") from e
            if not resp.ok:
                raise PostHogError(f"PostHog API error: {resp.status_code} {resp.text}", status_code=resp.status_code)

            try:
                data = resp.json()
            except ValueError as e:
                raise PostHogError(f"PostHog returned a non-JSON response: {e}", status_code=resp.status_code) from e
            for event in data.get("results") or []:
                yield event
            pages += 1
            url, params = data.get("next"), None

        logger.debug("posthog_events_fetched", project_id=self.project_id, pages=pages)
