"""
Shared HTTP helpers for the service adapters.
Maps transport failures and HTTP status codes onto the adapter error taxonomy.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from ..errors import Malformed, RateLimited, Unauthorized, Unreachable


def _retry_after(resp: requests.Response) -> Optional[float]:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def raise_for_status(resp: requests.Response, service: str) -> None:
    """
    Raise the adapter error matching a non-2xx response.

    Args:
        resp: Response to inspect.
        service: Service name used in error messages.
    """
    status = resp.status_code
    if 200 <= status < 300:
        return

    if status == 429 or (status == 403 and resp.headers.get("X-RateLimit-Remaining") == "0"):
        raise RateLimited(f"{service} rate limit reached", retry_after=_retry_after(resp))
    if status in (401, 403):
        raise Unauthorized(f"{service} rejected the credential (HTTP {status})")
    if status >= 500:
        raise Unreachable(f"{service} returned HTTP {status}")
    raise Malformed(f"{service} returned unexpected HTTP {status}")


def get_json(
    url: str,
    service: str,
    headers: Dict[str, str],
    timeout: float,
    params: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    GET a JSON document.

    Raises:
        Unreachable: On connection errors and timeouts.
        AdapterError: For error statuses, see raise_for_status.
        Malformed: If the body is not JSON.
    """
    try:
        resp = requests.get(url, headers=headers, params=params, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise Unreachable(f"{service} timed out after {timeout}s") from e
    except requests.exceptions.RequestException as e:
        raise Unreachable(f"{service} request failed: {e}") from e

    raise_for_status(resp, service)

    try:
        return resp.json()
    except ValueError as e:
        raise Malformed(f"{service} returned a non-JSON body") from e


def parse_timestamp(value: Any, service: str) -> datetime:
    """Parse an ISO-8601 string or epoch seconds into an aware UTC datetime."""
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError, OverflowError) as e:
        raise Malformed(f"{service} returned an invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
