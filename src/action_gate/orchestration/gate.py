"""Authentication gate: let authenticated actions through, suspend the rest behind a login prompt."""

from __future__ import annotations

import logging
from collections.abc import Callable

from action_gate.domain.events import ActionSelection
from action_gate.domain.state import Pending, UserState
from action_gate.domain.tokens import has_usable_credential, now_ms
from action_gate.infrastructure.messaging import AppTokenSource, Notifier, notify
from action_gate.infrastructure.providers import OAuthProvider
from action_gate.infrastructure.state_store import ConflictError
from action_gate.orchestration.retry import retry_on_conflict
from action_gate.orchestration.user_state import Put, UserStateMachine

logger = logging.getLogger(__name__)


class AuthenticationGate:
    """Decides per request whether the acting user's stored credential is usable."""

    def __init__(
        self,
        states: UserStateMachine,
        provider: OAuthProvider,
        notifier: Notifier,
        app_tokens: AppTokenSource,
        conflict_retries: int = 3,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._states = states
        self._provider = provider
        self._notifier = notifier
        self._app_tokens = app_tokens
        self._retries = conflict_retries
        self._clock = clock

    async def admit(self, selection: ActionSelection) -> UserState | None:
        """
        Return the user's state if the action may proceed now.
        Otherwise record it as the pending action, send the login prompt and return None.
        """
        state = await self._states.get(selection.user_id)
        if has_usable_credential(state.tokens, self._clock()):
            return state

        logger.info("User %s has no usable credential; suspending %r", selection.user_id, selection.route)
        await self._suspend_until_recorded(selection)
        await self._prompt_login(selection)
        return None

    async def _suspend_until_recorded(self, selection: ActionSelection) -> None:
        # Every round re-reads; it ends as soon as one write lands.
        attempt = 0
        while True:
            attempt += 1
            try:
                await retry_on_conflict(lambda: self._suspend(selection), self._retries)
                return
            except ConflictError as e:
                logger.warning(
                    "Pending action for %s still conflicting after %d rounds: %s",
                    selection.user_id,
                    attempt,
                    e,
                )

    async def _suspend(self, selection: ActionSelection) -> UserState | None:
        pending = Pending(action_type=selection.route, payload=selection.action)

        async def fn(state: UserState, put: Put) -> None:
            # Last pending action wins; tokens are unusable here, so drop them.
            await put(None, state.model_copy(update={"pending": pending, "tokens": None}))

        return await self._states.run(selection.user_id, fn)

    async def _prompt_login(self, selection: ActionSelection) -> None:
        url = self._provider.build_authorization_url(self._provider.scopes, selection.user_id)
        await notify(
            self._notifier,
            self._app_tokens,
            selection.action,
            selection.user_id,
            f"Please log in to {self._provider.display_name}",
            url,
        )
