"""Pure token rules: merge, usability check, refresh timing. No I/O."""

from __future__ import annotations

import time

from action_gate.domain.state import TokenBundle

REFRESH_MARGIN_MS = 60_000


def now_ms() -> int:
    return int(time.time() * 1000)


def merge_tokens(existing: TokenBundle | None, fresh: TokenBundle) -> TokenBundle:
    """
    Take the fresh bundle, but keep the stored refresh token when the fresh one has none.
    Providers usually omit refresh_token on refresh grants.
    """
    if fresh.refresh_token or existing is None or not existing.refresh_token:
        return fresh
    return fresh.model_copy(update={"refresh_token": existing.refresh_token})


def has_usable_credential(tokens: TokenBundle | None, now: int | None = None) -> bool:
    """True if there is an access token that has not expired."""
    if tokens is None or not tokens.access_token:
        return False
    if tokens.expiry is None:
        return True
    return tokens.expiry > (now_ms() if now is None else now)


def compute_refresh_delay(
    expiry: int | None,
    now: int,
    margin_ms: int = REFRESH_MARGIN_MS,
    override_ms: int | None = None,
) -> int:
    """Milliseconds to wait before refreshing: max(0, expiry - now - margin), or the override."""
    if override_ms is not None:
        return max(0, override_ms)
    if expiry is None:
        return 0
    return max(0, expiry - now - margin_ms)
