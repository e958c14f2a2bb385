"""
Domain models for the commit activity pipeline.

This module provides clean domain objects that isolate the aggregation and
caching logic from GitHub REST payloads, implementing an anti-corruption
layer, together with the error taxonomy every component raises.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, FrozenSet, Mapping


@dataclass(frozen=True)
class Credential:
    """
    Authorization context handed over by the sign-in layer.

    Either a user OAuth token or an app-installation access token. When an
    installation id is present the token is treated as an installation token.
    """

    access_token: str
    installation_id: Optional[int] = None

    def __post_init__(self):
        if not self.access_token:
            raise ConfigurationError("GitHub access token is required")

    @property
    def auth_method(self) -> str:
        return "app" if self.installation_id else "oauth"

    def __repr__(self) -> str:
        return (
            f"Credential(auth_method={self.auth_method!r}, "
            f"installation_id={self.installation_id!r})"
        )

    @classmethod
    def from_settings(cls, settings) -> "Credential":
        """Build a credential from environment-backed settings."""
        if not settings.github_token:
            raise ConfigurationError(
                "No GitHub authentication available. Set GITHUB_TOKEN."
            )
        return cls(
            access_token=settings.github_token,
            installation_id=settings.github_installation_id,
        )


@dataclass(frozen=True)
class Repository:
    """Immutable snapshot of a GitHub repository."""

    id: int
    name: str
    owner: str
    html_url: str
    is_private: bool = False
    primary_language: Optional[str] = None

    @property
    def full_name(self) -> str:
        """Full repository identifier in owner/name format."""
        return f"{self.owner}/{self.name}"

    def __post_init__(self):
        if self.id <= 0:
            raise ValueError("Repository ID must be positive")
        if not self.name or not self.owner:
            raise ValueError("Repository name and owner are required")


@dataclass(frozen=True)
class RepositoryRef:
    """Repository a commit was fetched from."""

    full_name: str

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]


@dataclass(frozen=True)
class Commit:
    """Immutable commit projection tagged with its source repository."""

    sha: str
    message: str
    author_name: str
    author_date: str
    html_url: str
    source_repository: RepositoryRef
    author_login: Optional[str] = None
    author_avatar_url: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.sha, self.source_repository.full_name)


@dataclass(frozen=True)
class DateWindow:
    """Inclusive ISO-8601 window; ordering is the caller's responsibility."""

    since: str
    until: str


@dataclass(frozen=True)
class RateLimitInfo:
    """Core REST rate limit as reported by GitHub."""

    limit: int
    remaining: int
    reset_at: datetime

    @property
    def used_percent(self) -> float:
        if self.limit <= 0:
            return 100.0
        return round(100 - (self.remaining / self.limit) * 100, 1)


@dataclass(frozen=True)
class ScopeReport:
    """Result of comparing granted OAuth scopes against the wanted ones."""

    granted: FrozenSet[str]
    missing_required: FrozenSet[str] = frozenset()
    missing_optional: FrozenSet[str] = frozenset()

    @property
    def is_valid(self) -> bool:
        return not self.missing_required


@dataclass(frozen=True)
class CacheEntry:
    """Key, validator and freshness policy for one response."""

    key: str
    etag: str
    payload: Any
    max_age_seconds: int
    stale_while_revalidate_seconds: int
    is_private: bool = True


@dataclass(frozen=True)
class ActivityStats:
    """Headline numbers for an aggregated commit list."""

    total_commits: int = 0
    repositories: Tuple[str, ...] = ()
    dates: Tuple[str, ...] = ()


class GitHubError(Exception):
    """Base exception for every failure raised by the pipeline."""

    default_status: Optional[int] = None

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status = status if status is not None else self.default_status
        self.context = context or {}


class ConfigurationError(GitHubError):
    """Missing client or credentials; never retried."""

    pass


class AuthError(GitHubError):
    """Invalid or expired credentials (401/403)."""

    default_status = 401


class AuthScopeError(AuthError):
    """Credential lacks a mandatory permission scope."""

    default_status = 403


class RateLimitError(GitHubError):
    """GitHub API rate limit exhausted; carries the reset time."""

    default_status = 429

    def __init__(
        self,
        message: str,
        reset_at: Optional[datetime] = None,
        status: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, status=status, context=context)
        self.reset_at = reset_at


class NotFoundError(GitHubError):
    """Repository or resource missing or invisible to the credential."""

    default_status = 404


class UpstreamApiError(GitHubError):
    """Any other non-2xx upstream response or transport failure."""

    default_status = 500


def parse_reset_header(value: Optional[str]) -> Optional[datetime]:
    """Parse an ``X-RateLimit-Reset`` epoch-seconds header."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def classify_http_error(
    status: int, message: str, headers: Optional[Mapping[str, str]] = None
) -> GitHubError:
    """
    Map a failed GitHub response onto the error taxonomy.

    403 is ambiguous on GitHub: it is a rate limit when the remaining budget
    header reads zero, a scope problem when the message mentions scopes or
    permissions, and a plain authorization failure otherwise.
    """
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    reset_at = parse_reset_header(headers.get("x-ratelimit-reset"))
    context = {"status": status}

    if status in (401, 403):
        lowered = message.lower()
        if headers.get("x-ratelimit-remaining") == "0" or "rate limit" in lowered:
            return RateLimitError(
                f"GitHub API rate limit exceeded. {message}",
                reset_at=reset_at,
                status=status,
                context=context,
            )
        if "scope" in lowered or "permission" in lowered:
            return AuthScopeError(
                f"GitHub permission or scope error: {message}",
                status=status,
                context=context,
            )
        return AuthError(
            f"GitHub authentication/authorization error (Status {status}): "
            f"{message}",
            status=status,
            context=context,
        )
    if status == 404:
        return NotFoundError(
            f"GitHub resource not found (Status 404): {message}", context=context
        )
    if status == 429:
        return RateLimitError(
            f"GitHub API rate limit exceeded (Status 429). {message}",
            reset_at=reset_at,
            status=status,
            context=context,
        )
    return UpstreamApiError(
        f"GitHub API error (Status {status}): {message}",
        status=status,
        context=context,
    )


def user_message(error: BaseException) -> str:
    """Actionable text for an error surfaced to the person using the dashboard."""
    if isinstance(error, ConfigurationError):
        return "GitHub is not connected. Please sign in again."
    if isinstance(error, AuthScopeError):
        return (
            "Your GitHub authorization is missing required permissions. "
            "Please re-authenticate and grant repository access."
        )
    if isinstance(error, AuthError):
        return "GitHub authentication failed. Please re-authenticate."
    if isinstance(error, RateLimitError):
        if error.reset_at:
            return (
                "GitHub API rate limit reached. Retry after "
                f"{error.reset_at.isoformat()}."
            )
        return "GitHub API rate limit reached. Please retry later."
    if isinstance(error, NotFoundError):
        return (
            "Repository not found. It may not exist or you may lack access to it."
        )
    if isinstance(error, UpstreamApiError):
        return "GitHub is unavailable right now. Please try again shortly."
    return "An unexpected error occurred while loading your activity."


def split_full_name(full_name: str) -> Tuple[str, str]:
    """Split ``owner/repo``; anything else is reported as not found."""
    parts = full_name.split("/") if isinstance(full_name, str) else []
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise NotFoundError(
            f"Invalid repository identifier: {full_name!r}",
            context={"repository": full_name},
        )
    return parts[0], parts[1]


def transform_repository_response(api_response: Dict[str, Any]) -> Repository:
    """
    Transform a GitHub REST repository object into a domain Repository.

    This function implements the anti-corruption layer by converting
    external API format into our internal domain model.
    """
    try:
        return Repository(
            id=api_response["id"],
            name=api_response["name"],
            owner=api_response["owner"]["login"],
            html_url=api_response.get("html_url") or "",
            is_private=bool(api_response.get("private", False)),
            primary_language=api_response.get("language"),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise ValueError(f"Invalid GitHub API response format: {e}") from e


def transform_commit_response(
    api_response: Dict[str, Any], full_name: str
) -> Commit:
    """Transform a GitHub REST commit object and tag it with its repository."""
    try:
        git_commit = api_response.get("commit") or {}
        git_author = git_commit.get("author") or {}
        author = api_response.get("author") or {}
        return Commit(
            sha=api_response["sha"],
            message=git_commit.get("message", ""),
            author_name=git_author.get("name") or "Unknown",
            author_date=git_author.get("date") or "",
            html_url=api_response.get("html_url") or "",
            source_repository=RepositoryRef(full_name=full_name),
            author_login=author.get("login"),
            author_avatar_url=author.get("avatar_url"),
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Invalid GitHub commit format: {e}") from e


def summarize(commits) -> ActivityStats:
    """Count commits and collect distinct repositories and days, first seen first."""
    repositories: Dict[str, None] = {}
    dates: Dict[str, None] = {}
    total = 0
    for commit in commits:
        total += 1
        repositories.setdefault(commit.source_repository.full_name, None)
        dates.setdefault(commit.author_date.split("T")[0], None)
    return ActivityStats(
        total_commits=total,
        repositories=tuple(repositories),
        dates=tuple(dates),
    )
