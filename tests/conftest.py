"""
pytest configuration for gitpulse tests.

This file configures:
1. Test markers for different test types
2. A recording fake of the authenticated GitHub client
3. Fixtures for common test data
"""

import asyncio
from datetime import datetime, timezone

import pytest

from gitpulse.domain import (
    Commit,
    Credential,
    RateLimitInfo,
    Repository,
    RepositoryRef,
)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def build_commit(full_name, sha, login=None, date="2024-01-15T10:00:00Z"):
    return Commit(
        sha=sha,
        message=f"commit {sha}",
        author_name=login or "Someone",
        author_date=date,
        html_url=f"https://github.com/{full_name}/commit/{sha}",
        source_repository=RepositoryRef(full_name=full_name),
        author_login=login,
        author_avatar_url=None,
    )


def build_repository(id, full_name, private=False):
    owner, name = full_name.split("/")
    return Repository(
        id=id,
        name=name,
        owner=owner,
        html_url=f"https://github.com/{full_name}",
        is_private=private,
        primary_language="Python",
    )


class FakeGitHubClient:
    """
    In-memory stand-in for GitHubClient.

    ``commits`` maps ``owner/repo`` to the commits GitHub would return when
    no author filter is applied; an author filter keeps the commits whose
    ``author_login`` matches, as the REST API does.
    """

    def __init__(
        self,
        commits=None,
        repositories=None,
        auth_method="oauth",
        scopes=frozenset({"repo", "read:org"}),
        remaining=5000,
        errors=None,
        delay=0.0,
    ):
        self.commits = commits or {}
        self.repositories = repositories or []
        self.credential = Credential(
            access_token="fake-token",
            installation_id=42 if auth_method == "app" else None,
        )
        self.scopes = scopes
        self.remaining = remaining
        self.errors = errors or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = []

    @property
    def auth_method(self):
        return self.credential.auth_method

    def _maybe_raise(self, name):
        error = self.errors.get(name)
        if error is not None:
            raise error

    async def list_repositories_for_user(self, **opts):
        self.calls.append(("list_repositories_for_user", opts))
        self._maybe_raise("list_repositories_for_user")
        return list(self.repositories)

    async def list_repositories_for_installation(self, **opts):
        self.calls.append(("list_repositories_for_installation", opts))
        self._maybe_raise("list_repositories_for_installation")
        return list(self.repositories)

    async def list_commits(self, owner, repo, since, until, author=None):
        full_name = f"{owner}/{repo}"
        self.calls.append(("list_commits", full_name, author))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self._maybe_raise(full_name)
            if self.delay:
                await asyncio.sleep(self.delay)
            commits = self.commits.get(full_name, [])
            if author:
                commits = [c for c in commits if c.author_login == author]
            self.completed.append(full_name)
            return list(commits)
        finally:
            self.in_flight -= 1

    async def get_rate_limit(self):
        self.calls.append(("get_rate_limit",))
        self._maybe_raise("get_rate_limit")
        return RateLimitInfo(
            limit=5000,
            remaining=self.remaining,
            reset_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    async def get_authenticated_user_scopes(self):
        self.calls.append(("get_authenticated_user_scopes",))
        self._maybe_raise("get_authenticated_user_scopes")
        return frozenset(self.scopes)

    def commit_calls(self):
        return [call for call in self.calls if call[0] == "list_commits"]


@pytest.fixture
def make_commit():
    """Factory fixture building Commit domain objects."""
    return build_commit


@pytest.fixture
def make_repository():
    """Factory fixture building Repository domain objects."""
    return build_repository


@pytest.fixture
def fake_client_factory():
    """Factory fixture building FakeGitHubClient instances."""
    return FakeGitHubClient


@pytest.fixture
def credential():
    """Fixture providing a test OAuth credential."""
    return Credential(access_token="test_token_12345")


@pytest.fixture
def mock_commit_api_response():
    """Fixture providing one commit object as returned by the REST API."""
    return {
        "sha": "abc123",
        "html_url": "https://github.com/acme/api/commit/abc123",
        "commit": {
            "message": "Fix flaky test",
            "author": {
                "name": "Alice Example",
                "email": "alice@example.com",
                "date": "2024-01-10T09:30:00Z",
            },
        },
        "author": {
            "login": "alice",
            "avatar_url": "https://avatars.githubusercontent.com/u/1",
        },
    }


@pytest.fixture
def mock_repository_api_response():
    """Fixture providing one repository object as returned by the REST API."""
    return {
        "id": 1296269,
        "name": "api",
        "full_name": "acme/api",
        "owner": {"login": "acme"},
        "private": True,
        "html_url": "https://github.com/acme/api",
        "language": "Python",
    }
