"""Pytest fixtures: config, mock collaborators, event factories."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from action_gate.config.models import AppConfig, PlatformConfig, ProviderConfig
from action_gate.domain.state import TokenBundle
from action_gate.domain.tokens import now_ms
from action_gate.infrastructure.data_clients import StaticDataClient
from action_gate.infrastructure.messaging import RecordingNotifier, StaticTokenSource
from action_gate.infrastructure.providers import MockOAuthProvider
from action_gate.infrastructure.state_store import InMemoryStateStore
from action_gate.orchestration.runtime import ServiceRuntime

APP_ID = "app-123"
WEBHOOK_SECRET = "whsecret"


@pytest.fixture
def app_config() -> AppConfig:
    """Minimal valid config for tests."""
    return AppConfig(
        name="TestApp",
        platform=PlatformConfig(app_id=APP_ID, app_secret="s", webhook_secret=WEBHOOK_SECRET),
        provider=ProviderConfig(
            kind="google",
            display_name="Gmail",
            client_id="cid",
            client_secret="csecret",
            redirect_uri="https://app.example/oauth2callback",
            authorize_url="https://accounts.example/auth",
            token_url="https://accounts.example/token",
            scopes=["mail.read"],
        ),
    )


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def fresh_tokens() -> TokenBundle:
    return TokenBundle(access_token="T1", refresh_token="R1", expiry=now_ms() + 3_600_000)


@pytest.fixture
def provider(fresh_tokens: TokenBundle) -> MockOAuthProvider:
    """Accepts code "abc"; no refreshes scripted."""
    return MockOAuthProvider(exchanges={"abc": fresh_tokens})


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def data_client() -> StaticDataClient:
    return StaticDataClient(summaries=["Lunch on Friday?", "Invoice #42"])


@pytest.fixture
def runtime(
    app_config: AppConfig,
    state_store: InMemoryStateStore,
    provider: MockOAuthProvider,
    notifier: RecordingNotifier,
    data_client: StaticDataClient,
) -> ServiceRuntime:
    return ServiceRuntime(
        app_config,
        store=state_store,
        provider=provider,
        notifier=notifier,
        app_tokens=StaticTokenSource("ww-token"),
        data_client=data_client,
    )


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """Factory for action-selected webhook bodies."""

    def _make(
        user_id: str = "u1",
        action_id: str = "/messages",
        app_id: str = APP_ID,
        conversation_id: str = "c1",
        target_dialog_id: str = "d1",
    ) -> dict[str, Any]:
        return {
            "type": "message-annotation-added",
            "annotationType": "actionSelected",
            "userId": user_id,
            "annotationPayload": json.dumps(
                {
                    "actionId": action_id,
                    "targetAppId": app_id,
                    "conversationId": conversation_id,
                    "targetDialogId": target_dialog_id,
                }
            ),
        }

    return _make


@pytest.fixture
def configs_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "configs"
