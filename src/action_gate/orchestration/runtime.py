"""Service runtime: composition root wiring config, store, provider and handlers."""

from __future__ import annotations

import logging
from typing import Any

from action_gate.config.models import AppConfig
from action_gate.domain.events import ActionSelection
from action_gate.domain.state import UserState
from action_gate.infrastructure.data_clients import UserDataClient, data_client_for
from action_gate.infrastructure.messaging import (
    AppTokenSource,
    ClientCredentialsTokenSource,
    GraphQLNotifier,
    Notifier,
)
from action_gate.infrastructure.providers import HttpOAuthProvider, OAuthProvider
from action_gate.infrastructure.state_store import StateStore, open_store
from action_gate.orchestration.actions import MESSAGES_ROUTE, MessagesAction
from action_gate.orchestration.completion import OAuthCompletion, RefreshScheduler
from action_gate.orchestration.dispatcher import ActionDispatcher
from action_gate.orchestration.gate import AuthenticationGate
from action_gate.orchestration.user_state import UserStateMachine

logger = logging.getLogger(__name__)


class ServiceRuntime:
    """Holds every collaborator; routes webhook events and OAuth callbacks. Built once per process."""

    def __init__(
        self,
        config: AppConfig,
        store: StateStore,
        provider: OAuthProvider,
        notifier: Notifier,
        app_tokens: AppTokenSource,
        data_client: UserDataClient,
        scheduler: RefreshScheduler | None = None,
    ) -> None:
        self.config = config
        self.states = UserStateMachine(store)
        self.scheduler = scheduler or RefreshScheduler(
            margin_ms=config.refresh.margin_ms,
            override_ms=config.refresh.interval_override_ms,
        )
        self.dispatcher = ActionDispatcher(config.platform.app_id)
        self.dispatcher.register(MESSAGES_ROUTE, MessagesAction(data_client, notifier, app_tokens))
        self.gate = AuthenticationGate(
            self.states,
            provider,
            notifier,
            app_tokens,
            conflict_retries=config.refresh.conflict_retries,
        )
        self.completion = OAuthCompletion(
            self.states,
            provider,
            self.dispatcher,
            self.scheduler,
            conflict_retries=config.refresh.conflict_retries,
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> ServiceRuntime:
        """Real network collaborators for a deployed service."""
        return cls(
            config,
            store=open_store(config.store),
            provider=HttpOAuthProvider(config.provider),
            notifier=GraphQLNotifier(config.platform.api_url),
            app_tokens=ClientCredentialsTokenSource(config.platform),
            data_client=data_client_for(config.provider),
        )

    async def handle_event(self, body: Any) -> ActionSelection | None:
        """Gate and route one webhook event. Events that are not ours are dropped."""
        return await self.dispatcher.dispatch(body, self._gated)

    async def _gated(self, selection: ActionSelection) -> None:
        state = await self.gate.admit(selection)
        if state is None or state.tokens is None:
            return
        await self.dispatcher.route(selection.route, selection.action, selection.user_id, state.tokens)

    async def handle_oauth_callback(self, code: str, state: str) -> UserState | None:
        return await self.completion.complete(code, state)

    async def get_state(self, user_id: str) -> UserState:
        return await self.states.get(user_id)

    async def shutdown(self) -> None:
        await self.scheduler.cancel_all()
