"""Action dispatcher: filter inbound events, route accepted actions to business handlers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from action_gate.domain.events import ActionSelection, on_action_selected
from action_gate.domain.state import TokenBundle

logger = logging.getLogger(__name__)

ActionHandler = Callable[[dict[str, Any], str, TokenBundle], Awaitable[None]]
SelectionCallback = Callable[[ActionSelection], Awaitable[None]]


class ActionDispatcher:
    """Holds this app's identity and the route -> handler table."""

    def __init__(self, app_id: str, handlers: dict[str, ActionHandler] | None = None) -> None:
        self._app_id = app_id
        self._handlers: dict[str, ActionHandler] = dict(handlers or {})

    def register(self, route: str, handler: ActionHandler) -> None:
        self._handlers[route] = handler

    @property
    def routes(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, body: Any, callback: SelectionCallback) -> ActionSelection | None:
        """Invoke callback only for action-selected events issued by this app."""
        selection = on_action_selected(body, self._app_id)
        if selection is None:
            return None
        logger.info("Action %r selected by %s", selection.action_id, selection.user_id)
        await callback(selection)
        return selection

    async def route(self, route: str, action: dict[str, Any], user_id: str, tokens: TokenBundle) -> bool:
        """Run the business handler for `route`. False if nothing is registered for it."""
        handler = self._handlers.get(route)
        if handler is None:
            logger.info("No handler for route %r; ignoring", route)
            return False
        await handler(action, user_id, tokens)
        return True
