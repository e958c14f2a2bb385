"""
Pre-flight checks run before bulk GitHub work starts.

Both checks are best-effort. A low budget only produces a warning, and a
failing probe is logged and ignored. Two things abort: a missing mandatory
scope, and a scope probe that itself fails on authentication.
"""

import logging
from typing import AbstractSet, Optional

from .config import settings
from .domain import (
    AuthError,
    AuthScopeError,
    RateLimitInfo,
    ScopeReport,
)
from .log_sanitizer import get_logger

REQUIRED_SCOPES = frozenset({"repo"})
OPTIONAL_SCOPES = frozenset({"read:org"})


class RateScopeGuard:
    """Inspects the call budget and OAuth scopes of an authenticated client."""

    def __init__(
        self,
        low_water_mark: int = settings.rate_limit_low_water_mark,
        required_scopes: AbstractSet[str] = REQUIRED_SCOPES,
        optional_scopes: AbstractSet[str] = OPTIONAL_SCOPES,
        log: Optional[logging.Logger] = None,
    ):
        self.low_water_mark = low_water_mark
        self.required_scopes = frozenset(required_scopes)
        self.optional_scopes = frozenset(optional_scopes)
        self.log = get_logger(__name__, log)

    async def check_budget(self, client) -> Optional[RateLimitInfo]:
        """Log the remaining core budget and warn when it runs low."""
        label = f" ({client.auth_method})"
        try:
            info = await client.get_rate_limit()
        except Exception as e:
            self.log.warning(
                f"Failed to check GitHub API rate limits{label}", data={"error": e}
            )
            return None

        self.log.info(
            f"🚦 GitHub API rate limit status{label}",
            data={
                "limit": info.limit,
                "remaining": info.remaining,
                "reset": info.reset_at.isoformat(),
                "used_percent": info.used_percent,
            },
        )
        if info.remaining < self.low_water_mark:
            self.log.warning(
                f"⏱️ GitHub API rate limit is running low{label}",
                data={
                    "remaining": info.remaining,
                    "reset": info.reset_at.isoformat(),
                },
            )
        return info

    async def check_scopes(
        self, client, required: Optional[AbstractSet[str]] = None
    ) -> Optional[ScopeReport]:
        """
        Compare granted OAuth scopes against the mandatory and optional sets.

        Raises AuthScopeError when a mandatory scope is missing and re-raises
        AuthError when the probe itself was rejected. Other probe failures
        return None.
        """
        required_scopes = frozenset(required) if required is not None else self.required_scopes
        try:
            granted = await client.get_authenticated_user_scopes()
        except AuthError:
            self.log.error("❌ GitHub rejected the credential during scope check")
            raise
        except Exception as e:
            self.log.warning(
                "Could not retrieve authenticated user scopes", data={"error": e}
            )
            return None

        report = ScopeReport(
            granted=frozenset(granted),
            missing_required=required_scopes - granted,
            missing_optional=self.optional_scopes - granted,
        )
        self.log.info(
            "📋 Token scopes",
            data={
                "scopes": sorted(report.granted),
                "has_required": report.is_valid,
            },
        )

        if report.missing_optional:
            self.log.warning(
                "⚠️ GitHub token is missing optional scopes. "
                "This may limit access to organization data.",
                data={"missing": sorted(report.missing_optional)},
            )
        if not report.is_valid:
            missing = ", ".join(sorted(report.missing_required))
            self.log.error(
                "❌ GitHub token is missing required scopes",
                data={"missing": sorted(report.missing_required)},
            )
            raise AuthScopeError(
                f"GitHub token is missing '{missing}' scope. "
                "Please re-authenticate with the necessary permissions.",
                context={"missing_scopes": sorted(report.missing_required)},
            )
        return report

    async def preflight(self, client) -> Optional[ScopeReport]:
        """Budget check for every client, scope check for OAuth tokens only."""
        await self.check_budget(client)
        if client.auth_method == "oauth":
            return await self.check_scopes(client)
        return None
