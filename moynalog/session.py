"""
Session state for the Moy Nalog client.

The authentication status is never stored; it is derived from the session
snapshot on every check so that the token manager can branch on a single
enum instead of scattered null checks.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional


class AuthStatus(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    REFRESHABLE = "refreshable"
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of the in-memory authentication state."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expire_in: Optional[datetime] = None
    inn: Optional[str] = None

    def with_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str],
        token_expire_in: Optional[datetime],
    ) -> SessionState:
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expire_in=token_expire_in,
        )

    def with_inn(self, inn: Optional[str]) -> SessionState:
        return replace(self, inn=inn)


def classify(state: SessionState, now: datetime, threshold: timedelta) -> AuthStatus:
    """
    Derive the authentication status of ``state`` at instant ``now``.

    An access token with no known expiry is considered fresh; one whose
    expiry falls within ``threshold`` of ``now`` (or has already passed) is
    stale.
    """
    if not state.access_token:
        return AuthStatus.REFRESHABLE if state.refresh_token else AuthStatus.UNAUTHENTICATED
    if state.token_expire_in is None:
        return AuthStatus.FRESH
    if now >= state.token_expire_in - threshold:
        return AuthStatus.STALE
    return AuthStatus.FRESH


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the API into an aware datetime."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    value = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
