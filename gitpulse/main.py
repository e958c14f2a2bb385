import argparse
import asyncio
import hashlib
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .aggregation import CommitAggregator
from .cache import (
    CacheOptions,
    MemoryCacheStore,
    build_cache_entry,
    build_cache_control,
    cache_key,
    conditional_respond,
    matching_etag,
    not_modified,
    CachedResponse,
)
from .client import GitHubClient
from .config import CacheTTL, settings
from .discovery import RepositoryDiscoveryService
from .domain import Commit, Credential, GitHubError, summarize, user_message
from .guard import RateScopeGuard
from .log_sanitizer import get_logger
from .models import (
    ActivityQuery,
    ActivityReport,
    CommitPayload,
    DateRange,
    Pagination,
    StatsPayload,
)

CACHE_NAMESPACE = "my-activity"


def paginate_commits(
    commits: Sequence[Commit], cursor: Optional[str], limit: int
) -> Tuple[List[Commit], bool, Optional[str]]:
    """
    Slice one page out of ``commits``.

    The page starts right after the commit whose sha equals ``cursor`` (from
    the beginning when the cursor is unknown). Returns the page, whether more
    commits follow, and the cursor for the next page.
    """
    if not commits:
        return [], False, None

    start = 0
    if cursor:
        for index, commit in enumerate(commits):
            if commit.sha == cursor:
                start = index + 1
                break

    end = min(start + limit, len(commits))
    page = list(commits[start:end])
    has_more = end < len(commits)
    next_cursor = commits[end - 1].sha if has_more else None
    return page, has_more, next_cursor


def principal_fingerprint(credential: Credential) -> str:
    """Stable, non-reversible identifier of the caller for cache keys."""
    digest = hashlib.sha256(credential.access_token.encode("utf-8")).hexdigest()
    return digest[:16]


class ActivityService:
    """
    Runs the activity pipeline: pre-flight checks, repository discovery,
    commit aggregation and the cached response around them.
    """

    def __init__(
        self,
        guard: Optional[RateScopeGuard] = None,
        discovery: Optional[RepositoryDiscoveryService] = None,
        aggregator: Optional[CommitAggregator] = None,
        store: Optional[MemoryCacheStore] = None,
        max_age: int = CacheTTL.SHORT,
        log: Optional[logging.Logger] = None,
    ):
        self.log = get_logger(__name__, log)
        self.guard = guard or RateScopeGuard()
        self.discovery = discovery or RepositoryDiscoveryService()
        self.aggregator = aggregator or CommitAggregator()
        self.store = store
        self.max_age = max_age

    async def fetch_report(self, client, query: ActivityQuery) -> ActivityReport:
        await self.guard.preflight(client)

        repositories = list(query.repositories)
        if not repositories:
            discovered = await self.discovery.discover(client)
            repositories = [repo.full_name for repo in discovered]

        commits = await self.aggregator.aggregate(
            client, repositories, query.window, query.author
        )
        page, has_more, next_cursor = paginate_commits(
            commits, query.cursor, query.limit
        )
        report = ActivityReport(
            commits=[CommitPayload.from_commit(c) for c in page],
            stats=StatsPayload.from_stats(summarize(commits)),
            pagination=Pagination(has_more=has_more, next_cursor=next_cursor),
            user=query.author or "Unknown",
            date_range=DateRange(since=query.since, until=query.until),
        )
        self.log.info(
            "✅ Successfully fetched activity",
            data={
                "total_commits": len(commits),
                "returned_commits": len(page),
                "has_more": has_more,
                "repositories": len(report.stats.repositories),
            },
        )
        return report

    def request_params(self, client, query: ActivityQuery) -> Dict[str, Any]:
        return {
            "principal": principal_fingerprint(client.credential),
            "auth_method": client.auth_method,
            "since": query.since,
            "until": query.until,
            "author": query.author,
            "repositories": list(query.repositories),
            "cursor": query.cursor,
            "limit": query.limit,
        }

    async def respond(
        self,
        client,
        query: ActivityQuery,
        if_none_match: Optional[str] = None,
        accept_encoding: Optional[str] = None,
    ) -> CachedResponse:
        """
        Cached activity response.

        A stored entry whose ETag the client already holds is answered with
        304 before any GitHub call is made.
        """
        params = self.request_params(client, query)
        options = CacheOptions(
            max_age=self.max_age,
            compress=True,
            accept_encoding=accept_encoding,
        )

        if self.store is not None:
            key = cache_key(params, CACHE_NAMESPACE)
            entry = self.store.get(key)
            matched = matching_etag(if_none_match, entry.etag) if entry else None
            if matched is not None:
                self.log.info("Activity unchanged; skipping aggregation")
                return not_modified(
                    matched,
                    build_cache_control(
                        entry.max_age_seconds,
                        entry.stale_while_revalidate_seconds,
                        entry.is_private,
                    ),
                )

        report = await self.fetch_report(client, query)
        payload = report.model_dump(mode="json")
        entry = build_cache_entry(params, payload, CACHE_NAMESPACE, options)
        if self.store is not None:
            self.store.set(entry)

        return conditional_respond(
            payload,
            if_none_match,
            CacheOptions(
                max_age=entry.max_age_seconds,
                stale_while_revalidate=entry.stale_while_revalidate_seconds,
                is_private=entry.is_private,
                etag=entry.etag,
                compress=options.compress,
                accept_encoding=accept_encoding,
            ),
        )


def parse_args(argv: Optional[Sequence[str]] = None):
    p = argparse.ArgumentParser(description="Summarize GitHub commit activity")
    p.add_argument("--since", help="Window start (ISO-8601)")
    p.add_argument("--until", help="Window end (ISO-8601)")
    p.add_argument("--author", help="GitHub login to filter commits by")
    p.add_argument(
        "--repo",
        action="append",
        default=[],
        dest="repositories",
        help="owner/name to include (repeatable); defaults to every visible repository",
    )
    p.add_argument("--cursor", help="Sha of the last commit of the previous page")
    p.add_argument("--limit", type=int, default=50, help="Commits per page")
    return p.parse_args(argv)


def build_query(args) -> ActivityQuery:
    values = {
        "author": args.author,
        "repositories": args.repositories,
        "cursor": args.cursor,
        "limit": args.limit,
    }
    if args.since:
        values["since"] = args.since
    if args.until:
        values["until"] = args.until
    return ActivityQuery(**values)


async def run(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line entry point: print the activity report as JSON."""
    args = parse_args(argv)
    log = get_logger(__name__)

    try:
        query = build_query(args)
        credential = Credential.from_settings(settings)
        async with GitHubClient(credential) as client:
            response = await ActivityService().respond(client, query)
    except GitHubError as e:
        log.error(f"❌ {user_message(e)}", data={"error": e})
        return 1
    except ValueError as e:
        log.error(f"❌ Invalid arguments: {e}")
        return 2

    print(json.dumps(response.json(), indent=2))
    return 0


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
