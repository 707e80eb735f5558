"""Outbound messaging: app token source, targeted-message notifier, recording mock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from action_gate.config.models import PlatformConfig
from action_gate.domain.tokens import now_ms

logger = logging.getLogger(__name__)

TARGETED_MESSAGE_MUTATION = """
mutation CreateTargetedMessage($input: CreateTargetedMessageInput!) {
  createTargetedMessage(input: $input) {
    successful
  }
}
""".strip()

# Renew the app token this long before it expires
APP_TOKEN_MARGIN_MS = 60_000


class NotificationError(Exception):
    """A targeted message or app token request failed."""


@runtime_checkable
class AppTokenSource(Protocol):
    async def get(self) -> str:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget targeted messages into a conversation dialog."""

    async def send_targeted(
        self,
        conversation_id: str,
        user_id: str,
        target_dialog_id: str,
        title: str,
        body: str,
        auth_token: str,
    ) -> None:
        ...


class ClientCredentialsTokenSource:
    """App-level platform token from the client-credentials grant, cached until near expiry."""

    def __init__(
        self,
        config: PlatformConfig,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._transport = transport
        self._token: str | None = None
        self._expiry = 0

    async def get(self) -> str:
        if self._token and now_ms() < self._expiry - APP_TOKEN_MARGIN_MS:
            return self._token
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(
                    f"{self._config.api_url.rstrip('/')}/oauth/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self._config.app_id, self._config.app_secret),
                )
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"could not obtain app token: {e}") from e
        if not data.get("access_token"):
            raise NotificationError("app token response without access_token")
        self._token = data["access_token"]
        self._expiry = now_ms() + int(data.get("expires_in", 3600)) * 1000
        logger.info("Obtained app token, valid for %ss", data.get("expires_in"))
        return self._token


class StaticTokenSource:
    def __init__(self, token: str = "app-token") -> None:
        self._token = token

    async def get(self) -> str:
        return self._token


class GraphQLNotifier:
    """Sends targeted messages through the platform GraphQL API."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{api_url.rstrip('/')}/graphql"
        self._timeout = timeout
        self._transport = transport

    async def send_targeted(
        self,
        conversation_id: str,
        user_id: str,
        target_dialog_id: str,
        title: str,
        body: str,
        auth_token: str,
    ) -> None:
        variables = {
            "input": {
                "conversationId": conversation_id,
                "targetUserId": user_id,
                "targetDialogId": target_dialog_id,
                "annotations": [{"genericAnnotation": {"title": title, "text": body}}],
            }
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(
                    self._url,
                    json={"query": TARGETED_MESSAGE_MUTATION, "variables": variables},
                    headers={
                        "Authorization": f"Bearer {auth_token}",
                        "x-graphql-view": "PUBLIC, BETA",
                    },
                )
                r.raise_for_status()
                result = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"targeted message to {user_id} failed: {e}") from e
        # GraphQL reports failures with a 200 status.
        if result.get("errors"):
            raise NotificationError(f"targeted message to {user_id} rejected: {result['errors']}")
        outcome = (result.get("data") or {}).get("createTargetedMessage") or {}
        if not outcome.get("successful"):
            raise NotificationError(f"targeted message to {user_id} was not successful: {result}")
        logger.debug("Sent targeted message %r to %s", title, user_id)


@dataclass
class SentMessage:
    conversation_id: str
    user_id: str
    target_dialog_id: str
    title: str
    body: str
    auth_token: str


class RecordingNotifier:
    """Implements Notifier by appending to `sent`. No network."""

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []

    async def send_targeted(
        self,
        conversation_id: str,
        user_id: str,
        target_dialog_id: str,
        title: str,
        body: str,
        auth_token: str,
    ) -> None:
        self.sent.append(SentMessage(conversation_id, user_id, target_dialog_id, title, body, auth_token))


async def notify(
    notifier: Notifier,
    tokens: AppTokenSource,
    action: dict,
    user_id: str,
    title: str,
    body: str,
) -> bool:
    """Send a targeted reply to the dialog an action came from. Failures are logged, not raised."""
    try:
        auth_token = await tokens.get()
        await notifier.send_targeted(
            action.get("conversationId", ""),
            user_id,
            action.get("targetDialogId", ""),
            title,
            body,
            auth_token,
        )
    except NotificationError as e:
        logger.warning("Notification %r to %s dropped: %s", title, user_id, e)
        return False
    return True
