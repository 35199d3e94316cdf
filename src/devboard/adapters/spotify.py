"""
Spotify Adapter (listening-activity).
Wraps spotipy with a user access token to read recently played tracks.
"""

import logging
from typing import Any, Callable, Dict, List

import requests
import spotipy
from pydantic import ValidationError
from spotipy.exceptions import SpotifyException

from ..base import FetchParams, ServiceAdapter
from ..config import REQUEST_TIMEOUT_SECONDS, SPOTIFY_PAGE_SIZE
from ..errors import AdapterError, Malformed, RateLimited, Unauthorized, Unreachable
from ..models import ListeningSummary, ServiceId, Track
from .utils import parse_timestamp

logger = logging.getLogger(__name__)


def _translate(error: SpotifyException) -> AdapterError:
    """Map a spotipy error onto the adapter taxonomy."""
    status = error.http_status or 0
    if status == 429:
        headers = error.headers or {}
        retry_after = headers.get("Retry-After")
        return RateLimited(
            "spotify rate limit reached",
            retry_after=float(retry_after) if retry_after else None,
        )
    if status in (401, 403):
        return Unauthorized(f"spotify rejected the access token (HTTP {status})")
    if status >= 500:
        return Unreachable(f"spotify returned HTTP {status}")
    return Malformed(f"spotify call failed (HTTP {status}): {error.msg}")


class SpotifyAdapter(ServiceAdapter):
    """Adapter for the Spotify Web API."""

    def __init__(
        self, timeout: float = REQUEST_TIMEOUT_SECONDS, page_size: int = SPOTIFY_PAGE_SIZE
    ):
        self.timeout = timeout
        self.page_size = page_size

    @property
    def service_id(self) -> ServiceId:
        return ServiceId.LISTENING_ACTIVITY

    def _client(self, secret: str) -> spotipy.Spotify:
        # Retries are the orchestrator's job
        return spotipy.Spotify(
            auth=secret,
            requests_timeout=self.timeout,
            retries=0,
            status_retries=0,
        )

    def _call(self, fn: Callable[..., Any], **kwargs) -> Any:
        try:
            return fn(**kwargs)
        except SpotifyException as e:
            raise _translate(e) from e
        except requests.exceptions.Timeout as e:
            raise Unreachable(f"spotify timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise Unreachable(f"spotify request failed: {e}") from e

    @staticmethod
    def _to_track(item: Dict[str, Any]) -> Track:
        track = item["track"]
        return Track(
            name=track["name"],
            artist=", ".join(artist["name"] for artist in track.get("artists", [])),
            album=(track.get("album") or {}).get("name", ""),
            played_at=parse_timestamp(item["played_at"], "spotify"),
        )

    def fetch_summary(self, secret: str, params: FetchParams) -> ListeningSummary:
        client = self._client(secret)
        results = self._call(
            client.current_user_recently_played, limit=params.page_size or self.page_size
        )

        if not isinstance(results, dict):
            raise Malformed("spotify returned an unexpected payload shape")

        try:
            tracks: List[Track] = [self._to_track(item) for item in results.get("items", [])]
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise Malformed(f"spotify track entry is malformed: {e}") from e

        logger.info(f"Fetched {len(tracks)} recently played spotify tracks")
        return ListeningSummary(tracks=tracks)

    def validate_credential(self, secret: str) -> bool:
        self._call(self._client(secret).current_user)
        return True
