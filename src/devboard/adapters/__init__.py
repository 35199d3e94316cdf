"""Service adapters, one per ServiceId."""

from typing import Dict

from ..base import ServiceAdapter
from ..config import DashboardConfig
from ..models import ServiceId
from .github import GithubAdapter
from .spotify import SpotifyAdapter
from .wakatime import WakatimeAdapter

__all__ = ["GithubAdapter", "SpotifyAdapter", "WakatimeAdapter", "build_adapters"]


def build_adapters(config: DashboardConfig) -> Dict[ServiceId, ServiceAdapter]:
    """Create one adapter for every service."""
    adapters = [
        WakatimeAdapter(base_url=config.wakatime_api_url, timeout=config.request_timeout),
        GithubAdapter(
            base_url=config.github_api_url,
            timeout=config.request_timeout,
            page_size=config.github_page_size,
        ),
        SpotifyAdapter(timeout=config.request_timeout, page_size=config.spotify_page_size),
    ]
    registry = {adapter.service_id: adapter for adapter in adapters}

    missing = set(ServiceId) - set(registry)
    if missing:
        raise ValueError(f"No adapter for: {', '.join(sorted(s.value for s in missing))}")
    return registry
