"""
Unit tests for the rate-limit and scope guard.

These tests verify that:
1. A low budget only warns
2. A missing mandatory scope aborts with AuthScopeError
3. Probe failures are swallowed unless they are authentication failures
"""

import logging

import pytest

from gitpulse.domain import AuthError, AuthScopeError, UpstreamApiError
from gitpulse.guard import RateScopeGuard


class TestBudgetCheck:
    """Test check_budget()."""

    @pytest.mark.asyncio
    async def test_healthy_budget(self, fake_client_factory):
        """Test a healthy budget returns the info without warnings."""
        client = fake_client_factory(remaining=4000)

        info = await RateScopeGuard().check_budget(client)

        assert info.remaining == 4000

    @pytest.mark.asyncio
    async def test_low_budget_warns(self, fake_client_factory, caplog):
        """Test remaining below the low-water mark logs a warning only."""
        client = fake_client_factory(remaining=99)

        with caplog.at_level(logging.WARNING, logger="gitpulse.guard"):
            info = await RateScopeGuard().check_budget(client)

        assert info.remaining == 99
        assert "running low" in caplog.text

    @pytest.mark.asyncio
    async def test_probe_failure_is_swallowed(self, fake_client_factory, caplog):
        """Test a failing probe is logged and ignored."""
        client = fake_client_factory(
            errors={"get_rate_limit": UpstreamApiError("boom", status=500)}
        )

        with caplog.at_level(logging.WARNING, logger="gitpulse.guard"):
            info = await RateScopeGuard().check_budget(client)

        assert info is None
        assert "Failed to check GitHub API rate limits" in caplog.text


class TestScopeCheck:
    """Test check_scopes()."""

    @pytest.mark.asyncio
    async def test_all_scopes_present(self, fake_client_factory):
        """Test a complete scope set yields a valid report."""
        client = fake_client_factory(scopes={"repo", "read:org"})

        report = await RateScopeGuard().check_scopes(client)

        assert report.is_valid
        assert report.missing_optional == frozenset()

    @pytest.mark.asyncio
    async def test_missing_repo_scope_is_fatal(self, fake_client_factory):
        """Test a missing mandatory scope raises AuthScopeError."""
        client = fake_client_factory(scopes={"read:org"})

        with pytest.raises(AuthScopeError, match="repo"):
            await RateScopeGuard().check_scopes(client)

    @pytest.mark.asyncio
    async def test_missing_read_org_only_warns(self, fake_client_factory, caplog):
        """Test the optional scope never aborts."""
        client = fake_client_factory(scopes={"repo"})

        with caplog.at_level(logging.WARNING, logger="gitpulse.guard"):
            report = await RateScopeGuard().check_scopes(client)

        assert report.is_valid
        assert report.missing_optional == frozenset({"read:org"})
        assert "optional scopes" in caplog.text

    @pytest.mark.asyncio
    async def test_explicit_required_scopes(self, fake_client_factory):
        """Test callers can demand a different mandatory set."""
        client = fake_client_factory(scopes={"repo"})

        with pytest.raises(AuthScopeError):
            await RateScopeGuard().check_scopes(client, required={"repo", "workflow"})

    @pytest.mark.asyncio
    async def test_auth_failure_during_probe_propagates(self, fake_client_factory):
        """Test a 401 from the scope probe is re-raised."""
        client = fake_client_factory(
            errors={"get_authenticated_user_scopes": AuthError("Bad credentials")}
        )

        with pytest.raises(AuthError):
            await RateScopeGuard().check_scopes(client)

    @pytest.mark.asyncio
    async def test_other_probe_failure_swallowed(self, fake_client_factory):
        """Test non-auth probe failures return None."""
        client = fake_client_factory(
            errors={"get_authenticated_user_scopes": UpstreamApiError("down")}
        )

        assert await RateScopeGuard().check_scopes(client) is None


class TestPreflight:
    """Test preflight() orchestration."""

    @pytest.mark.asyncio
    async def test_oauth_checks_budget_and_scopes(self, fake_client_factory):
        """Test OAuth credentials get both checks."""
        client = fake_client_factory(auth_method="oauth")

        await RateScopeGuard().preflight(client)

        assert [c[0] for c in client.calls] == [
            "get_rate_limit",
            "get_authenticated_user_scopes",
        ]

    @pytest.mark.asyncio
    async def test_installation_skips_scope_check(self, fake_client_factory):
        """Test installation tokens only get the budget check."""
        client = fake_client_factory(auth_method="app", scopes=set())

        assert await RateScopeGuard().preflight(client) is None
        assert [c[0] for c in client.calls] == ["get_rate_limit"]
