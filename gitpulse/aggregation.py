"""
Commit aggregation across many repositories.

Repositories are fetched in fixed-size batches: the fetches inside a batch
run concurrently, batches run one after another. Upstream author filtering
is unreliable (display name vs. login vs. committer), so an empty result for
an explicit author is retried with the repository owner's login and finally
with no author filter at all. The first stage that yields commits wins.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from .config import settings
from .domain import Commit, DateWindow, split_full_name
from .log_sanitizer import get_logger


class FallbackStage(Enum):
    EXPLICIT_AUTHOR = "explicit_author"
    OWNER_AUTHOR = "owner_author"
    NO_AUTHOR = "no_author"
    DONE = "done"


NEXT_STAGE = {
    FallbackStage.EXPLICIT_AUTHOR: FallbackStage.OWNER_AUTHOR,
    FallbackStage.OWNER_AUTHOR: FallbackStage.NO_AUTHOR,
    FallbackStage.NO_AUTHOR: FallbackStage.DONE,
}


def batched(items: Sequence[str], size: int) -> List[List[str]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("Batch size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class CommitAggregator:
    """Fetches and merges commits for a list of ``owner/repo`` names."""

    def __init__(
        self,
        batch_size: int = settings.batch_size,
        log: Optional[logging.Logger] = None,
    ):
        if batch_size < 1:
            raise ValueError("Batch size must be positive")
        self.batch_size = batch_size
        self.log = get_logger(__name__, log)

    def stage_author(
        self, stage: FallbackStage, author: Optional[str], repositories: Sequence[str]
    ) -> Optional[str]:
        """Author filter used by ``stage``."""
        if stage is FallbackStage.EXPLICIT_AUTHOR:
            return author
        if stage is FallbackStage.OWNER_AUTHOR:
            owner, _ = split_full_name(repositories[0])
            return owner
        return None

    async def aggregate(
        self,
        client,
        repositories: Sequence[str],
        window: DateWindow,
        author: Optional[str] = None,
    ) -> List[Commit]:
        """
        Return the commits of the first fallback stage that finds any.

        Errors raised while fetching propagate immediately; the fallback only
        reacts to empty results.
        """
        if not repositories:
            self.log.debug("No repositories to aggregate")
            return []

        stage = FallbackStage.EXPLICIT_AUTHOR if author else FallbackStage.NO_AUTHOR
        commits: List[Commit] = []
        while stage is not FallbackStage.DONE:
            stage_author = self.stage_author(stage, author, repositories)
            self.log.info(
                f"🔍 Fetching commits ({stage.value})",
                data={
                    "repositories": len(repositories),
                    "author_filter": stage_author or "none",
                    "since": window.since,
                    "until": window.until,
                },
            )
            commits = await self.fetch_all(client, repositories, window, stage_author)
            if commits:
                break
            stage = NEXT_STAGE[stage]
            if stage is not FallbackStage.DONE:
                self.log.info(
                    "No commits found; retrying with a broader author filter",
                    data={"next_stage": stage.value},
                )

        self.log.info(
            f"🎉 All repository commits fetched: {len(commits)}",
            data={
                "repositories": len(repositories),
                "final_stage": stage.value,
                "auth_method": getattr(client, "auth_method", "unknown"),
            },
        )
        return commits

    async def fetch_all(
        self,
        client,
        repositories: Sequence[str],
        window: DateWindow,
        author: Optional[str],
    ) -> List[Commit]:
        """Run every batch in order and concatenate the results."""
        merged: List[Commit] = []
        seen: Dict[Tuple[str, str], None] = {}
        for index, batch in enumerate(batched(repositories, self.batch_size), start=1):
            self.log.debug(f"Processing batch {index}", data={"batch": batch})
            results = await self.fetch_batch(client, batch, window, author)
            for repo_commits in results:
                for commit in repo_commits:
                    if commit.identity in seen:
                        continue
                    seen[commit.identity] = None
                    merged.append(commit)
        return merged

    async def fetch_batch(
        self,
        client,
        batch: Sequence[str],
        window: DateWindow,
        author: Optional[str],
    ) -> List[List[Commit]]:
        """
        Fetch one batch concurrently.

        When any fetch fails (or the caller is cancelled) the remaining fetches
        are cancelled and awaited before the error propagates.
        """
        tasks = [
            asyncio.ensure_future(self.fetch_repository(client, name, window, author))
            for name in batch
        ]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if pending:
                self.log.warning(
                    "Cancelled remaining fetches after a failure",
                    data={"cancelled": len(pending)},
                )
            raise

    async def fetch_repository(
        self,
        client,
        full_name: str,
        window: DateWindow,
        author: Optional[str],
    ) -> List[Commit]:
        """All commits of one repository; errors are not caught here."""
        owner, repo = split_full_name(full_name)
        commits = await client.list_commits(
            owner, repo, window.since, window.until, author
        )
        self.log.debug(
            f"Fetched commits for {full_name}",
            data={
                "count": len(commits),
                "first_sha": commits[0].sha if commits else None,
                "last_sha": commits[-1].sha if commits else None,
            },
        )
        return commits
