"""
Request and response models for the activity endpoint.

These Pydantic models validate the incoming activity query and define the
shape of the JSON report handed to the dashboard (and, downstream, to the
summary generator).
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, Field, field_validator, model_validator

from .config import settings
from .domain import ActivityStats, Commit, DateWindow


def _default_since() -> str:
    start = datetime.now(timezone.utc) - timedelta(days=settings.default_window_days)
    return start.date().isoformat()


def _default_until() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _as_utc(value: str) -> datetime:
    dt = date_parser.isoparse(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class ActivityQuery(BaseModel):
    """
    Filters for an activity request.

    Dates are ISO-8601 strings; a bare date is accepted. The window defaults
    to the last ``default_window_days`` days.
    """

    since: str = Field(default_factory=_default_since)
    until: str = Field(default_factory=_default_until)
    author: Optional[str] = None
    repositories: List[str] = Field(default_factory=list)
    cursor: Optional[str] = None
    limit: int = Field(default=50, ge=1, le=100)

    @field_validator("since", "until")
    @classmethod
    def validate_iso_date(cls, v):
        """Reject anything that is not an ISO-8601 date or timestamp."""
        try:
            date_parser.isoparse(v)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid ISO-8601 date: {v!r}") from e
        return v

    @field_validator("author", "cursor")
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_window_order(self):
        if _as_utc(self.since) > _as_utc(self.until):
            raise ValueError("'since' must not be later than 'until'")
        return self

    @property
    def window(self) -> DateWindow:
        return DateWindow(since=self.since, until=self.until)


class CommitPayload(BaseModel):
    """Minimal commit projection sent to the dashboard."""

    sha: str
    message: str
    author_name: str
    author_date: str
    author_login: Optional[str] = None
    author_avatar: Optional[str] = None
    repo_name: str
    html_url: str

    @classmethod
    def from_commit(cls, commit: Commit) -> "CommitPayload":
        return cls(
            sha=commit.sha,
            message=commit.message,
            author_name=commit.author_name,
            author_date=commit.author_date,
            author_login=commit.author_login,
            author_avatar=commit.author_avatar_url,
            repo_name=commit.source_repository.full_name,
            html_url=commit.html_url,
        )


class StatsPayload(BaseModel):
    total_commits: int
    repositories: List[str]
    dates: List[str]

    @classmethod
    def from_stats(cls, stats: ActivityStats) -> "StatsPayload":
        return cls(
            total_commits=stats.total_commits,
            repositories=list(stats.repositories),
            dates=list(stats.dates),
        )


class Pagination(BaseModel):
    has_more: bool
    next_cursor: Optional[str] = None


class DateRange(BaseModel):
    since: str
    until: str


class ActivityReport(BaseModel):
    """The activity response body."""

    commits: List[CommitPayload]
    stats: StatsPayload
    pagination: Pagination
    user: str
    date_range: DateRange
