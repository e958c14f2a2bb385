import logging
from typing import Dict, List, Optional

from .domain import (
    ConfigurationError,
    GitHubError,
    Repository,
    UpstreamApiError,
)
from .log_sanitizer import get_logger


class RepositoryDiscoveryService:
    """
    Lists every repository a credential can reach.

    OAuth tokens use a single combined-affiliation listing (owner,
    collaborator and organization member, all visibilities). App
    installations list the repositories granted to the installation.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = get_logger(__name__, log)

    async def discover(self, client) -> List[Repository]:
        if client is None:
            self.log.error("❌ No authentication method available for repository access")
            raise ConfigurationError(
                "No GitHub authentication available. Please sign in again."
            )

        try:
            if client.auth_method == "app":
                self.log.info("Using GitHub App installation for repository access")
                repositories = await client.list_repositories_for_installation()
            else:
                self.log.info("Using OAuth token for repository access")
                repositories = await client.list_repositories_for_user()
        except GitHubError as e:
            self.log.error(
                "❌ Error fetching repositories",
                data={"auth_method": client.auth_method, "error": e},
            )
            raise
        except Exception as e:
            self.log.error("❌ Unexpected error fetching repositories", data={"error": e})
            raise UpstreamApiError(f"Repository discovery failed: {e}") from e

        unique = deduplicate_repositories(repositories)
        self.log.info(
            f"📦 Discovered {len(unique)} repositories",
            data={
                "auth_method": client.auth_method,
                "private": sum(1 for r in unique if r.is_private),
                "duplicates_removed": len(repositories) - len(unique),
            },
        )
        return unique


def deduplicate_repositories(repositories: List[Repository]) -> List[Repository]:
    """Drop repeated ``full_name`` entries, keeping the first one seen."""
    unique: Dict[str, Repository] = {}
    for repo in repositories:
        unique.setdefault(repo.full_name, repo)
    return list(unique.values())
