"""OAuth completion: exchange the code, merge tokens, resume the pending action, keep tokens fresh."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from action_gate.domain.state import Idle, Pending, TokenBundle, UserState
from action_gate.domain.tokens import REFRESH_MARGIN_MS, compute_refresh_delay, merge_tokens, now_ms
from action_gate.infrastructure.providers import OAuthProvider, UpstreamAuthError
from action_gate.infrastructure.state_store import ConflictError
from action_gate.orchestration.dispatcher import ActionDispatcher
from action_gate.orchestration.retry import retry_on_conflict
from action_gate.orchestration.user_state import Put, Transaction, UserStateMachine

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[str], Awaitable[None]]


class NoAwaitingSession(Exception):
    """The user has no pending action, so a code exchange has nothing to resume."""


class RefreshScheduler:
    """One self-rescheduling refresh timer per user. Timers do not survive a restart."""

    def __init__(
        self,
        margin_ms: int = REFRESH_MARGIN_MS,
        override_ms: int | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._margin_ms = margin_ms
        self._override_ms = override_ms
        self._clock = clock
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_users(self) -> list[str]:
        return sorted(self._tasks)

    def delay_for(self, expiry: int | None) -> int:
        return compute_refresh_delay(expiry, self._clock(), self._margin_ms, self._override_ms)

    def schedule(self, user_id: str, expiry: int | None, callback: RefreshCallback) -> int:
        """Replace any timer for user_id with one firing before `expiry`. Returns the delay in ms."""
        self.cancel(user_id)
        delay = self.delay_for(expiry)
        task = asyncio.create_task(self._fire(user_id, delay, callback), name=f"refresh:{user_id}")
        task.add_done_callback(_log_task_failure)
        self._tasks[user_id] = task
        logger.info("Refresh for %s scheduled in %d ms", user_id, delay)
        return delay

    def cancel(self, user_id: str) -> None:
        task = self._tasks.pop(user_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def cancel_all(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _fire(self, user_id: str, delay_ms: int, callback: RefreshCallback) -> None:
        await self._sleep(delay_ms / 1000)
        # Leave the slot before the callback so it can reschedule without cancelling itself.
        if self._tasks.get(user_id) is asyncio.current_task():
            del self._tasks[user_id]
        await callback(user_id)


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Refresh task %s failed", task.get_name(), exc_info=exc)


class OAuthCompletion:
    """Handles the provider redirect and runs the refresh loop for each authenticated user."""

    def __init__(
        self,
        states: UserStateMachine,
        provider: OAuthProvider,
        dispatcher: ActionDispatcher,
        scheduler: RefreshScheduler,
        conflict_retries: int = 3,
    ) -> None:
        self._states = states
        self._provider = provider
        self._dispatcher = dispatcher
        self._scheduler = scheduler
        self._retries = conflict_retries

    async def complete(self, code: str, state: str) -> UserState | None:
        """
        Finish the authorization round-trip for user `state`.
        Returns the merged state, or None when the callback was stale, replayed or failed.
        """
        user_id = state
        if not user_id or not code:
            logger.info("OAuth callback without code or state; ignoring")
            return None

        current = await self._states.get(user_id)
        if current.pending_action is None:
            logger.info("No awaiting session for %s; callback is stale or replayed", user_id)
            return None

        try:
            fresh = await self._provider.exchange_code(code)
        except UpstreamAuthError as e:
            logger.error("Code exchange for %s failed: %s", user_id, e)
            return None

        claimed: list[Pending] = []
        try:
            merged = await retry_on_conflict(
                lambda: self._states.run(user_id, _claim_awaiting(fresh, claimed)),
                self._retries,
            )
        except ConflictError as e:
            logger.warning("Token merge for %s kept conflicting; dropping callback: %s", user_id, e)
            return None
        if merged is None:
            logger.info("Session for %s was resumed elsewhere; dropping callback", user_id)
            return None

        logger.info("Got tokens for %s", user_id)
        await self._resume(merged, claimed[-1])
        self._schedule(merged)
        return merged

    async def refresh(self, user_id: str) -> UserState | None:
        """One refresh iteration; reschedules itself on success, halts on any failure."""
        current = await self._states.get(user_id)
        if current.tokens is None or not current.tokens.refresh_token:
            logger.info("No refresh token stored for %s; refresh loop stops", user_id)
            return None

        logger.debug("Refreshing token for %s", user_id)
        try:
            fresh = await self._provider.refresh_token(current.tokens.refresh_token)
        except UpstreamAuthError as e:
            logger.error("Token refresh for %s failed; waiting for re-authentication: %s", user_id, e)
            return None

        try:
            merged = await retry_on_conflict(
                lambda: self._states.run(user_id, _merge_refreshed(fresh)),
                self._retries,
            )
        except ConflictError as e:
            logger.warning("Refreshed token for %s could not be stored: %s", user_id, e)
            return None
        if merged is None:
            logger.info("Tokens for %s were cleared meanwhile; refresh loop stops", user_id)
            return None

        self._schedule(merged)
        return merged

    async def _resume(self, merged: UserState, claimed: Pending) -> None:
        if merged.tokens is None:
            return
        logger.info("Resuming %r for %s", claimed.action_type, merged.user_id)
        await self._dispatcher.route(claimed.action_type, claimed.payload, merged.user_id, merged.tokens)

    def _schedule(self, merged: UserState) -> None:
        if merged.tokens is None:
            return
        self._scheduler.schedule(merged.user_id, merged.tokens.expiry, self.refresh)


def _claim_awaiting(fresh: TokenBundle, claimed: list[Pending]) -> Transaction:
    """Merge tokens and take the pending action in one write; only the winning writer resumes it."""

    async def fn(state: UserState, put: Put) -> None:
        pending = state.pending_action
        if pending is None:
            await put(NoAwaitingSession(state.user_id))
        claimed.append(pending)
        update = {"tokens": merge_tokens(state.tokens, fresh), "pending": Idle()}
        await put(None, state.model_copy(update=update))

    return fn


def _merge_refreshed(fresh: TokenBundle) -> Transaction:
    async def fn(state: UserState, put: Put) -> None:
        if state.tokens is None:
            await put(NoAwaitingSession(state.user_id))
        await put(None, state.model_copy(update={"tokens": merge_tokens(state.tokens, fresh)}))

    return fn
