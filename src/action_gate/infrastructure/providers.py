"""Identity provider: Protocol + httpx OAuth2 implementation + mock for tests."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlencode

import httpx

from action_gate.config.models import ProviderConfig
from action_gate.domain.state import TokenBundle
from action_gate.domain.tokens import now_ms

logger = logging.getLogger(__name__)


class UpstreamAuthError(Exception):
    """The provider rejected a code or refresh token, or could not be reached."""


@runtime_checkable
class OAuthProvider(Protocol):
    """Authorization-code flow with refresh, for one third-party API."""

    display_name: str
    scopes: list[str]

    def build_authorization_url(self, scopes: list[str], state: str) -> str:
        ...

    async def exchange_code(self, code: str) -> TokenBundle:
        """Raise UpstreamAuthError on rejection or network failure."""
        ...

    async def refresh_token(self, refresh_token: str) -> TokenBundle:
        """Raise UpstreamAuthError on rejection or network failure."""
        ...


def bundle_from_response(data: dict[str, Any], default_lifetime_s: int, issued_at: int | None = None) -> TokenBundle:
    """Normalize a token endpoint response. expires_in is seconds; expiry is epoch ms."""
    access_token = data.get("access_token")
    if not access_token:
        raise UpstreamAuthError(f"token response without access_token: {sorted(data)}")
    issued = now_ms() if issued_at is None else issued_at
    try:
        lifetime_s = int(data.get("expires_in") or default_lifetime_s)
    except (TypeError, ValueError):
        lifetime_s = default_lifetime_s
    return TokenBundle(
        access_token=access_token,
        refresh_token=data.get("refresh_token"),
        expiry=issued + lifetime_s * 1000,
        token_type=data.get("token_type"),
        scope=data.get("scope"),
        instance_url=data.get("instance_url"),
    )


class HttpOAuthProvider:
    """OAuth2 over plain form posts. Works for Google and Salesforce token endpoints."""

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._transport = transport
        self.display_name = config.display_name
        self.scopes = list(config.scopes)

    def build_authorization_url(self, scopes: list[str], state: str) -> str:
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
            **self._config.authorize_params,
        }
        return f"{self._config.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenBundle:
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._config.redirect_uri,
            }
        )

    async def refresh_token(self, refresh_token: str) -> TokenBundle:
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    async def _token_request(self, form: dict[str, str]) -> TokenBundle:
        data = {
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
            **form,
        }
        logger.debug("POST %s (%s)", self._config.token_url, form["grant_type"])
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(
                    self._config.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
                r.raise_for_status()
                body = r.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamAuthError(
                f"{self._config.kind} {form['grant_type']} rejected: {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamAuthError(f"{self._config.kind} {form['grant_type']} failed: {e}") from e
        return bundle_from_response(body, self._config.default_token_lifetime_s)


class MockOAuthProvider:
    """Implements OAuthProvider with scripted bundles for tests. No network."""

    def __init__(
        self,
        exchanges: dict[str, TokenBundle] | None = None,
        refreshes: list[TokenBundle | Exception] | None = None,
        display_name: str = "Gmail",
        scopes: list[str] | None = None,
    ) -> None:
        self.exchanges = dict(exchanges or {})
        self.refreshes = list(refreshes or [])
        self.display_name = display_name
        self.scopes = scopes or ["mail.read"]
        self.exchanged_codes: list[str] = []
        self.refreshed_tokens: list[str] = []

    def build_authorization_url(self, scopes: list[str], state: str) -> str:
        return "https://idp.example/authorize?" + urlencode({"scope": " ".join(scopes), "state": state})

    async def exchange_code(self, code: str) -> TokenBundle:
        self.exchanged_codes.append(code)
        if code not in self.exchanges:
            raise UpstreamAuthError(f"invalid code: {code}")
        return self.exchanges[code]

    async def refresh_token(self, refresh_token: str) -> TokenBundle:
        self.refreshed_tokens.append(refresh_token)
        if not self.refreshes:
            raise UpstreamAuthError("refresh token revoked")
        out = self.refreshes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out
