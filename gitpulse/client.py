import aiohttp
import asyncio
import logging
from typing import Any, Dict, FrozenSet, List, NamedTuple, Optional
from datetime import datetime, timezone
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .config import settings
from .domain import (
    Commit,
    ConfigurationError,
    Credential,
    RateLimitInfo,
    Repository,
    UpstreamApiError,
    classify_http_error,
    transform_commit_response,
    transform_repository_response,
)
from .log_sanitizer import get_logger

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {502, 503, 504}


class ApiResponse(NamedTuple):
    data: Any
    headers: Dict[str, str]
    next_url: Optional[str]


def next_link(resp) -> Optional[str]:
    """Return the ``rel="next"`` URL of a response's ``Link`` header, if any."""
    url = resp.links.get("next", {}).get("url")
    return str(url) if url else None


class GitHubClient:
    """
    Authenticated GitHub REST client with retry mechanisms and an
    anti-corruption layer.

    This client:
    - Returns domain models instead of raw API responses
    - Retries transient transport failures with tenacity
    - Maps failed responses onto the pipeline's error taxonomy
    - Hides Link-header pagination behind ``paginate``
    """

    def __init__(
        self,
        credential: Credential,
        base_url: str = settings.github_api_url,
        per_page: int = settings.per_page,
        max_pages: int = settings.max_pages,
        log: Optional[logging.Logger] = None,
    ):
        if credential is None:
            raise ConfigurationError("GitHub credential is required")

        self.credential = credential
        self.base_url = base_url.rstrip("/")
        self.per_page = per_page
        self.max_pages = max_pages
        self.headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": settings.user_agent,
        }
        self.log = get_logger(__name__, log)
        self._connector = None
        self._session = None

    @property
    def auth_method(self) -> str:
        return self.credential.auth_method

    async def __aenter__(self):
        """Async context manager entry."""
        self._connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=20,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        self._session = aiohttp.ClientSession(
            connector=self._connector,
            headers=self.headers,
            timeout=aiohttp.ClientTimeout(total=settings.request_timeout_seconds),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._session:
            await self._session.close()
        if self._connector:
            await self._connector.close()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    @retry(
        stop=stop_after_attempt(settings.max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request(
        self, method: str, path: str, params: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        """
        Perform one REST call, retrying transport failures and 502/503/504.

        Any other non-2xx response is converted into a domain error and is
        not retried.
        """
        if not self._session:
            raise RuntimeError("Client must be used as async context manager")

        url = self._url(path)
        try:
            async with self._session.request(method, url, params=params) as resp:
                headers = {k.lower(): v for k, v in resp.headers.items()}

                if resp.status in RETRYABLE_STATUSES:
                    raise aiohttp.ClientResponseError(
                        resp.request_info,
                        resp.history,
                        status=resp.status,
                        message=f"Server error: {resp.status}",
                    )

                if 200 <= resp.status < 300:
                    data = await resp.json() if resp.status != 204 else None
                    return ApiResponse(
                        data=data,
                        headers=headers,
                        next_url=next_link(resp),
                    )

                message = await self._error_message(resp)
                raise classify_http_error(resp.status, message, headers)
        except aiohttp.ClientError as e:
            self.log.warning(f"🔁 Network error: {e}", data={"url": url})
            raise

    @staticmethod
    async def _error_message(resp) -> str:
        try:
            body = await resp.json()
        except (aiohttp.ContentTypeError, ValueError):
            return (await resp.text()) or f"HTTP {resp.status}"
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"HTTP {resp.status}"

    async def request(
        self, method: str, path: str, params: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        """``_request`` with exhausted transport retries surfaced as UpstreamApiError."""
        try:
            return await self._request(method, path, params)
        except aiohttp.ClientResponseError as e:
            raise UpstreamApiError(
                f"GitHub API error (Status {e.status}): {e.message}",
                status=e.status,
                context={"path": path},
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamApiError(
                f"GitHub API request failed: {e}", context={"path": path}
            ) from e

    async def paginate(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        items_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Collect every item of a paginated listing.

        Follows ``Link: rel="next"`` until it disappears. A listing longer
        than ``max_pages`` raises UpstreamApiError instead of returning a
        truncated result. ``items_key`` names the list inside wrapped
        responses such as ``/installation/repositories``.
        """
        query = dict(params or {})
        query.setdefault("per_page", self.per_page)

        items: List[Dict[str, Any]] = []
        next_path: Optional[str] = path
        pages = 0
        while next_path and pages < self.max_pages:
            response = await self.request(
                "GET", next_path, query if next_path == path else None
            )
            page = response.data or []
            if items_key is not None:
                page = page.get(items_key, []) if isinstance(page, dict) else []
            items.extend(page)
            pages += 1
            next_path = response.next_url

        if next_path:
            self.log.error(
                "❌ Pagination hit the page limit",
                data={"path": path, "max_pages": self.max_pages},
            )
            raise UpstreamApiError(
                f"Listing {path} has more than {self.max_pages} pages",
                context={"path": path, "max_pages": self.max_pages},
            )
        return items

    async def list_repositories_for_user(self, **opts) -> List[Repository]:
        """Repositories visible to the authenticated user."""
        params = {
            "affiliation": "owner,collaborator,organization_member",
            "visibility": "all",
            "sort": "updated",
        }
        params.update(opts)
        raw = await self.paginate("/user/repos", params)
        return [transform_repository_response(item) for item in raw]

    async def list_repositories_for_installation(self, **opts) -> List[Repository]:
        """Repositories the app installation was granted."""
        raw = await self.paginate(
            "/installation/repositories", dict(opts), items_key="repositories"
        )
        return [transform_repository_response(item) for item in raw]

    async def list_commits(
        self,
        owner: str,
        repo: str,
        since: str,
        until: str,
        author: Optional[str] = None,
    ) -> List[Commit]:
        """Commits of one repository inside the window, in upstream order."""
        params: Dict[str, Any] = {"since": since, "until": until}
        if author:
            params["author"] = author
        full_name = f"{owner}/{repo}"
        raw = await self.paginate(f"/repos/{owner}/{repo}/commits", params)
        return [transform_commit_response(item, full_name) for item in raw]

    async def get_rate_limit(self) -> RateLimitInfo:
        """Core REST budget of the current credential."""
        response = await self.request("GET", "/rate_limit")
        core = response.data["resources"]["core"]
        return RateLimitInfo(
            limit=int(core["limit"]),
            remaining=int(core["remaining"]),
            reset_at=datetime.fromtimestamp(int(core["reset"]), tz=timezone.utc),
        )

    async def get_authenticated_user_scopes(self) -> FrozenSet[str]:
        """OAuth scopes granted to the token, read from ``X-OAuth-Scopes``."""
        response = await self.request("GET", "/user")
        header = response.headers.get("x-oauth-scopes", "")
        return frozenset(s.strip() for s in header.split(",") if s.strip())
