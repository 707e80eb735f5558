"""Third-party data access given a user's token: Protocol + Gmail and Salesforce clients + stub."""

from __future__ import annotations

import html
from typing import Protocol, runtime_checkable

import httpx

from action_gate.config.models import ProviderConfig
from action_gate.domain.state import TokenBundle

GMAIL_THREADS_URL = "https://gmail.googleapis.com/gmail/v1/users/me/threads"
SALESFORCE_API_VERSION = "v59.0"
SALESFORCE_RECENT_QUERY = "SELECT Name FROM Account ORDER BY LastModifiedDate DESC LIMIT {limit}"


@runtime_checkable
class UserDataClient(Protocol):
    """Fetch short text summaries of the user's data. Errors propagate as httpx.HTTPError."""

    async def fetch_summaries(self, tokens: TokenBundle, limit: int = 5) -> list[str]:
        ...


class GmailThreadsClient:
    """Latest thread snippets from the user's mailbox."""

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = timeout
        self._transport = transport

    async def fetch_summaries(self, tokens: TokenBundle, limit: int = 5) -> list[str]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            r = await client.get(
                GMAIL_THREADS_URL,
                params={"maxResults": limit},
                headers={"Authorization": f"Bearer {tokens.access_token}"},
            )
            r.raise_for_status()
            data = r.json()
        # Gmail snippets arrive HTML-escaped
        return [html.unescape(t.get("snippet", "")) for t in data.get("threads", [])][:limit]


class SalesforceRecordsClient:
    """Recently modified account names, queried on the instance the token was issued for."""

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = timeout
        self._transport = transport

    async def fetch_summaries(self, tokens: TokenBundle, limit: int = 5) -> list[str]:
        if not tokens.instance_url:
            raise ValueError("Salesforce token has no instance_url")
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            r = await client.get(
                f"{tokens.instance_url.rstrip('/')}/services/data/{SALESFORCE_API_VERSION}/query",
                params={"q": SALESFORCE_RECENT_QUERY.format(limit=int(limit))},
                headers={"Authorization": f"Bearer {tokens.access_token}"},
            )
            r.raise_for_status()
            data = r.json()
        return [rec.get("Name", "") for rec in data.get("records", [])][:limit]


class StaticDataClient:
    """Implements UserDataClient with fixed summaries for tests. Records tokens it was given."""

    def __init__(self, summaries: list[str] | None = None) -> None:
        self.summaries = list(summaries or [])
        self.seen_tokens: list[TokenBundle] = []

    async def fetch_summaries(self, tokens: TokenBundle, limit: int = 5) -> list[str]:
        self.seen_tokens.append(tokens)
        return self.summaries[:limit]


def data_client_for(config: ProviderConfig) -> UserDataClient:
    if config.kind == "salesforce":
        return SalesforceRecordsClient()
    return GmailThreadsClient()
