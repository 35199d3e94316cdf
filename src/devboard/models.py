"""
Devboard data model: service identifiers, normalized summaries, fetch
states and the aggregate snapshot the dashboard renders.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Dict, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import AdapterError, ErrorKind


class ServiceId(str, Enum):
    """External activity-data providers."""

    CODING_ACTIVITY = "coding-activity"
    REPOSITORY_ACTIVITY = "repository-activity"
    LISTENING_ACTIVITY = "listening-activity"


class FetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class RequestKey(NamedTuple):
    """Identifies one in-flight fetch: the service and the secret it was started with."""

    service: ServiceId
    secret: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Credential(BaseModel):
    """Secret for one service, None when not configured."""

    model_config = ConfigDict(frozen=True)

    service: ServiceId = Field(..., description="Service the secret belongs to")
    secret: Optional[str] = Field(None, description="API key or access token")


# =============================================================================
# Summaries (one tagged variant per service)
# =============================================================================


class CodingSummary(BaseModel):
    """Coding time for one day"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["coding"] = "coding"
    day: date = Field(..., description="Day the durations cover")
    total_seconds: float = Field(0.0, description="Total coding time in seconds")
    durations_count: int = Field(0, description="Number of duration blocks")
    last_activity_at: Optional[datetime] = Field(None, description="End of the latest block")
    current_project: Optional[str] = Field(None, description="Project of the latest block")
    top_project: Optional[str] = Field(None, description="Project with the most time")
    top_language: Optional[str] = Field(None, description="Language with the most time")

    @property
    def hours_display(self) -> str:
        minutes = int(self.total_seconds // 60)
        return f"{minutes // 60}h {minutes % 60:02d}m"


class Repository(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    updated_at: datetime
    language: Optional[str] = None
    stars: int = 0


class RepositorySummary(BaseModel):
    """Recently updated repositories"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["repository"] = "repository"
    recent_repos: List[Repository] = Field(default_factory=list)
    total_repos: int = Field(0, description="Public repositories owned by the user")
    total_stars: int = Field(0, description="Stars across the fetched repositories")


class Track(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    artist: str
    album: str
    played_at: datetime


class ListeningSummary(BaseModel):
    """Recently played tracks"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["listening"] = "listening"
    tracks: List[Track] = Field(default_factory=list)


Summary = Annotated[
    Union[CodingSummary, RepositorySummary, ListeningSummary],
    Field(discriminator="kind"),
]


class ActivityDigest(BaseModel):
    """Fields every summary is normalized into."""

    model_config = ConfigDict(frozen=True)

    activity_count: int = 0
    last_activity_at: Optional[datetime] = None


def digest(summary: Union[CodingSummary, RepositorySummary, ListeningSummary]) -> ActivityDigest:
    """
    Project a service-specific summary onto the common digest fields.

    Raises:
        TypeError: For a summary type with no projection.
    """
    if isinstance(summary, CodingSummary):
        return ActivityDigest(
            activity_count=summary.durations_count,
            last_activity_at=summary.last_activity_at,
        )
    elif isinstance(summary, RepositorySummary):
        return ActivityDigest(
            activity_count=summary.total_repos,
            last_activity_at=max((r.updated_at for r in summary.recent_repos), default=None),
        )
    elif isinstance(summary, ListeningSummary):
        return ActivityDigest(
            activity_count=len(summary.tracks),
            last_activity_at=max((t.played_at for t in summary.tracks), default=None),
        )
    raise TypeError(f"No digest for summary type {type(summary).__name__}")


# =============================================================================
# Fetch state
# =============================================================================

USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.UNAUTHORIZED: "Add or fix your API key in settings",
    ErrorKind.RATE_LIMITED: "Rate limited, try again later",
    ErrorKind.UNREACHABLE: "Service unreachable",
    ErrorKind.MALFORMED: "Unexpected response",
}


class ErrorInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str = ""
    retry_after: Optional[float] = None

    @classmethod
    def from_exception(cls, error: AdapterError) -> "ErrorInfo":
        return cls(kind=error.kind, message=error.message, retry_after=error.retry_after)

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


class FetchState(BaseModel):
    """Per-service fetch record owned by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    status: FetchStatus = FetchStatus.IDLE
    value: Optional[Summary] = None
    error: Optional[ErrorInfo] = None
    fetched_at: Optional[datetime] = None


# =============================================================================
# Snapshot
# =============================================================================


class ServiceView(BaseModel):
    model_config = ConfigDict(frozen=True)

    service: ServiceId
    has_credential: bool
    status: FetchStatus
    value: Optional[Summary] = None
    digest: Optional[ActivityDigest] = None
    error: Optional[ErrorInfo] = None
    fetched_at: Optional[datetime] = None


class AggregateSnapshot(BaseModel):
    """Read-only merged view of all fetch states."""

    model_config = ConfigDict(frozen=True)

    services: Dict[ServiceId, ServiceView]
    is_refreshing: bool = False
    total_activity_count: int = 0
    last_activity_at: Optional[datetime] = None
    generated_at: datetime = Field(default_factory=utcnow)

    def __getitem__(self, service: ServiceId) -> ServiceView:
        return self.services[service]


def build_snapshot(
    states: Dict[ServiceId, FetchState],
    configured: Dict[ServiceId, bool],
    now: Optional[datetime] = None,
) -> AggregateSnapshot:
    """Merge the per-service states into one snapshot."""
    views: Dict[ServiceId, ServiceView] = {}
    total = 0
    latest: Optional[datetime] = None

    for service in ServiceId:
        state = states.get(service, FetchState())
        service_digest = digest(state.value) if state.value is not None else None
        if service_digest is not None:
            total += service_digest.activity_count
            if service_digest.last_activity_at is not None and (
                latest is None or service_digest.last_activity_at > latest
            ):
                latest = service_digest.last_activity_at

        views[service] = ServiceView(
            service=service,
            has_credential=configured.get(service, False),
            status=state.status,
            value=state.value,
            digest=service_digest,
            error=state.error,
            fetched_at=state.fetched_at,
        )

    return AggregateSnapshot(
        services=views,
        is_refreshing=any(v.status == FetchStatus.LOADING for v in views.values()),
        total_activity_count=total,
        last_activity_at=latest,
        generated_at=now or utcnow(),
    )


def format_time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    """Short relative label such as '5h ago' or '3d ago'."""
    now = now or utcnow()
    # Clock skew can put the moment slightly in the future
    hours = max(int((now - moment).total_seconds() // 3600), 0)
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"
