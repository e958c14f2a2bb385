"""
Unit tests for repository discovery.

These tests verify that:
1. The listing matching the credential type is used
2. Results are deduplicated by full name, first seen wins
3. Failures are classified into the error taxonomy
"""

import pytest

from gitpulse.discovery import RepositoryDiscoveryService, deduplicate_repositories
from gitpulse.domain import (
    AuthError,
    ConfigurationError,
    RateLimitError,
    UpstreamApiError,
)


class TestDiscovery:
    """Test discover()."""

    @pytest.mark.asyncio
    async def test_oauth_uses_user_listing(self, fake_client_factory, make_repository):
        """Test OAuth credentials list repositories for the user once."""
        client = fake_client_factory(
            repositories=[make_repository(1, "acme/api"), make_repository(2, "alice/dotfiles")]
        )

        repos = await RepositoryDiscoveryService().discover(client)

        assert [r.full_name for r in repos] == ["acme/api", "alice/dotfiles"]
        assert [c[0] for c in client.calls] == ["list_repositories_for_user"]

    @pytest.mark.asyncio
    async def test_installation_uses_installation_listing(
        self, fake_client_factory, make_repository
    ):
        """Test app installations list the granted repositories."""
        client = fake_client_factory(
            auth_method="app", repositories=[make_repository(1, "acme/api", private=True)]
        )

        repos = await RepositoryDiscoveryService().discover(client)

        assert repos[0].is_private
        assert [c[0] for c in client.calls] == ["list_repositories_for_installation"]

    @pytest.mark.asyncio
    async def test_duplicates_removed(self, fake_client_factory, make_repository):
        """Test discover never returns the same full name twice."""
        client = fake_client_factory(
            repositories=[
                make_repository(1, "acme/api"),
                make_repository(2, "acme/web"),
                make_repository(3, "acme/api"),
            ]
        )

        repos = await RepositoryDiscoveryService().discover(client)

        names = [r.full_name for r in repos]
        assert len(names) == len(set(names)) == 2

    @pytest.mark.asyncio
    async def test_missing_client(self):
        """Test a missing client is a configuration error."""
        with pytest.raises(ConfigurationError):
            await RepositoryDiscoveryService().discover(None)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [AuthError("Bad credentials"), RateLimitError("slow down")],
    )
    async def test_domain_errors_propagate(self, fake_client_factory, error):
        """Test classified errors reach the caller unchanged."""
        client = fake_client_factory(errors={"list_repositories_for_user": error})

        with pytest.raises(type(error)):
            await RepositoryDiscoveryService().discover(client)

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, fake_client_factory):
        """Test anything else becomes UpstreamApiError."""
        client = fake_client_factory(
            errors={"list_repositories_for_user": ValueError("Invalid GitHub API response format")}
        )

        with pytest.raises(UpstreamApiError):
            await RepositoryDiscoveryService().discover(client)


class TestDeduplication:
    """Test deduplicate_repositories()."""

    def test_first_seen_wins(self, make_repository):
        """Test the earliest entry is kept."""
        first = make_repository(1, "acme/api")
        later = make_repository(99, "acme/api")

        assert deduplicate_repositories([first, later]) == [first]
