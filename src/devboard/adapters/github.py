"""
GitHub Adapter (repository-activity).
Fetches the most recently updated repositories and the user's profile.
"""

import logging
from typing import Dict

from pydantic import ValidationError

from ..base import FetchParams, ServiceAdapter
from ..config import GITHUB_API_URL, GITHUB_PAGE_SIZE, REQUEST_TIMEOUT_SECONDS
from ..errors import Malformed
from ..models import Repository, RepositorySummary, ServiceId
from .utils import get_json, parse_timestamp

logger = logging.getLogger(__name__)


class GithubAdapter(ServiceAdapter):
    """Adapter for the GitHub REST API."""

    def __init__(
        self,
        base_url: str = GITHUB_API_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        page_size: int = GITHUB_PAGE_SIZE,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size

    @property
    def service_id(self) -> ServiceId:
        return ServiceId.REPOSITORY_ACTIVITY

    @staticmethod
    def _headers(secret: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {secret}",
            "Accept": "application/vnd.github+json",
        }

    def _get(self, path: str, secret: str, params=None):
        return get_json(
            f"{self.base_url}{path}",
            service="github",
            headers=self._headers(secret),
            timeout=self.timeout,
            params=params,
        )

    def fetch_summary(self, secret: str, params: FetchParams) -> RepositorySummary:
        repos = self._get(
            "/user/repos",
            secret,
            params={"sort": params.sort, "per_page": params.page_size or self.page_size},
        )
        user = self._get("/user", secret)

        if not isinstance(repos, list) or not isinstance(user, dict):
            raise Malformed("github returned an unexpected payload shape")

        try:
            recent = [
                Repository(
                    name=repo["name"],
                    updated_at=parse_timestamp(repo["updated_at"], "github"),
                    language=repo.get("language"),
                    stars=repo.get("stargazers_count") or 0,
                )
                for repo in repos
            ]
            summary = RepositorySummary(
                recent_repos=recent,
                total_repos=user.get("public_repos") or 0,
                total_stars=sum(repo.stars for repo in recent),
            )
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            raise Malformed(f"github repository entry is malformed: {e}") from e

        logger.info(f"Fetched {len(recent)} github repositories ({summary.total_repos} total)")
        return summary

    def validate_credential(self, secret: str) -> bool:
        self._get("/user", secret)
        return True
