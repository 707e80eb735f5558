"""Runtime: gated routing of webhook events, user isolation."""

from __future__ import annotations

import asyncio

from action_gate.domain.state import TokenBundle, UserState
from action_gate.domain.tokens import now_ms
from action_gate.orchestration.runtime import ServiceRuntime


def test_authenticated_event_runs_handler_immediately(runtime: ServiceRuntime, state_store, notifier, make_event) -> None:
    tokens = TokenBundle(access_token="T1", refresh_token="R1", expiry=now_ms() + 3_600_000)

    async def run() -> None:
        await state_store.write("u1", None, UserState(user_id="u1", tokens=tokens).to_document())
        selection = await runtime.handle_event(make_event())
        assert selection is not None

    asyncio.run(run())
    assert [m.title for m in notifier.sent] == ["Your Messages"]
    assert notifier.sent[0].body == "1. Lunch on Friday?\n1. Invoice #42"


def test_unauthenticated_event_is_suspended(runtime: ServiceRuntime, notifier, make_event) -> None:
    async def run() -> UserState:
        await runtime.handle_event(make_event())
        return await runtime.get_state("u1")

    state = asyncio.run(run())
    assert state.pending_action.action_type == "/messages"
    assert [m.title for m in notifier.sent] == ["Please log in to Gmail"]


def test_foreign_event_touches_nothing(runtime: ServiceRuntime, state_store, notifier, make_event) -> None:
    async def run() -> None:
        assert await runtime.handle_event(make_event(app_id="other-app")) is None
        _, found = await state_store.read("u1")
        assert found is False

    asyncio.run(run())
    assert notifier.sent == []


def test_users_do_not_share_state(runtime: ServiceRuntime, state_store, make_event) -> None:
    tokens = TokenBundle(access_token="T1", expiry=now_ms() + 3_600_000)

    async def run() -> tuple[UserState, UserState]:
        await state_store.write("alice", None, UserState(user_id="alice", tokens=tokens).to_document())
        await runtime.handle_event(make_event(user_id="alice"))
        await runtime.handle_event(make_event(user_id="bob"))
        return await runtime.get_state("alice"), await runtime.get_state("bob")

    alice, bob = asyncio.run(run())
    assert alice.tokens == tokens and alice.pending_action is None
    assert bob.tokens is None and bob.pending_action is not None
