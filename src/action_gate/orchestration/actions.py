"""Business handlers, keyed by the action route they answer."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from action_gate.domain.state import TokenBundle
from action_gate.infrastructure.data_clients import UserDataClient
from action_gate.infrastructure.messaging import AppTokenSource, Notifier, notify

logger = logging.getLogger(__name__)

MESSAGES_ROUTE = "/messages"


def format_summaries(summaries: list[str]) -> str:
    """Numbered markdown list, one entry per line."""
    if not summaries:
        return "Nothing to show."
    return "\n".join(f"1. {s}" for s in summaries)


class MessagesAction:
    """/messages: reply with the user's latest items from the connected API."""

    title = "Your Messages"

    def __init__(
        self,
        data_client: UserDataClient,
        notifier: Notifier,
        app_tokens: AppTokenSource,
        limit: int = 5,
    ) -> None:
        self._data = data_client
        self._notifier = notifier
        self._app_tokens = app_tokens
        self._limit = limit

    async def __call__(self, action: dict[str, Any], user_id: str, tokens: TokenBundle) -> None:
        try:
            summaries = await self._data.fetch_summaries(tokens, self._limit)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Fetching data for %s failed: %s", user_id, e)
            return
        await notify(self._notifier, self._app_tokens, action, user_id, self.title, format_summaries(summaries))
