"""
WakaTime Adapter (coding-activity).
Summarizes one day of coding durations by project and by language.
"""

import base64
import logging
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional

from ..base import FetchParams, ServiceAdapter
from ..config import REQUEST_TIMEOUT_SECONDS, WAKATIME_API_URL
from ..errors import Malformed
from ..models import CodingSummary, ServiceId
from .utils import get_json, parse_timestamp

logger = logging.getLogger(__name__)


class WakatimeAdapter(ServiceAdapter):
    """Adapter for the WakaTime durations API."""

    def __init__(
        self, base_url: str = WAKATIME_API_URL, timeout: float = REQUEST_TIMEOUT_SECONDS
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def service_id(self) -> ServiceId:
        return ServiceId.CODING_ACTIVITY

    @staticmethod
    def _headers(secret: str) -> Dict[str, str]:
        token = base64.b64encode(secret.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}

    def _durations(
        self, secret: str, day: date, slice_by: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {"date": day.isoformat()}
        if slice_by:
            params["slice_by"] = slice_by

        payload = get_json(
            f"{self.base_url}/users/current/durations",
            service="wakatime",
            headers=self._headers(secret),
            timeout=self.timeout,
            params=params,
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise Malformed("wakatime durations response has no 'data' list")
        return payload["data"]

    @staticmethod
    def _top(durations: List[Dict[str, Any]], key: str) -> Optional[str]:
        """Return the value of `key` with the largest total duration."""
        totals: Dict[str, float] = defaultdict(float)
        for item in durations:
            name = item.get(key)
            if name:
                totals[name] += float(item.get("duration", 0))
        if not totals:
            return None
        return max(totals, key=totals.get)

    def fetch_summary(self, secret: str, params: FetchParams) -> CodingSummary:
        day = params.resolved_day()
        projects = self._durations(secret, day)
        languages = self._durations(secret, day, slice_by="language")

        try:
            total_seconds = sum(float(item.get("duration", 0)) for item in projects)
            latest = max(projects, key=lambda item: float(item["time"]), default=None)
            top_project = self._top(projects, "project")
            top_language = self._top(languages, "language")
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise Malformed(f"wakatime duration entry is malformed: {e}") from e

        last_activity_at = None
        if latest is not None:
            last_activity_at = parse_timestamp(
                float(latest["time"]) + float(latest.get("duration", 0)), "wakatime"
            )

        summary = CodingSummary(
            day=day,
            total_seconds=total_seconds,
            durations_count=len(projects),
            last_activity_at=last_activity_at,
            current_project=latest.get("project") if latest else None,
            top_project=top_project,
            top_language=top_language,
        )
        logger.info(
            f"Fetched {len(projects)} wakatime durations for {day} ({summary.hours_display})"
        )
        return summary

    def validate_credential(self, secret: str) -> bool:
        get_json(
            f"{self.base_url}/users/current",
            service="wakatime",
            headers=self._headers(secret),
            timeout=self.timeout,
        )
        return True
