"""Authentication gate: suspend-and-prompt for unauthenticated users, pass-through otherwise."""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlparse

from action_gate.domain.events import ActionSelection
from action_gate.domain.state import Pending, TokenBundle, UserState
from action_gate.infrastructure.messaging import RecordingNotifier, StaticTokenSource
from action_gate.infrastructure.providers import MockOAuthProvider
from action_gate.infrastructure.state_store import InMemoryStateStore
from action_gate.orchestration.gate import AuthenticationGate
from action_gate.orchestration.user_state import UserStateMachine

NOW = 1_700_000_000_000


def _selection(user_id: str = "u1", action_id: str = "/messages", dialog: str = "d1") -> ActionSelection:
    return ActionSelection(
        action_id=action_id,
        action={"conversationId": "c1", "targetDialogId": dialog},
        user_id=user_id,
    )


def _gate(store, notifier: RecordingNotifier, retries: int = 3) -> AuthenticationGate:
    return AuthenticationGate(
        UserStateMachine(store),
        MockOAuthProvider(),
        notifier,
        StaticTokenSource("ww-token"),
        conflict_retries=retries,
        clock=lambda: NOW,
    )


class RacingStore(InMemoryStateStore):
    """Lets another writer sneak in before each of the first `races` writes."""

    def __init__(self, races: int, intruder_doc: dict) -> None:
        super().__init__()
        self.races = races
        self.intruder_doc = intruder_doc

    async def write(self, user_id, revision, document):
        if self.races > 0:
            self.races -= 1
            await super().write(user_id, revision, self.intruder_doc)
        return await super().write(user_id, revision, document)


def test_empty_store_suspends_action_and_prompts_login(state_store: InMemoryStateStore) -> None:
    notifier = RecordingNotifier()
    gate = _gate(state_store, notifier)

    async def run() -> UserState:
        assert await gate.admit(_selection()) is None
        return await UserStateMachine(state_store).get("u1")

    state = asyncio.run(run())
    assert state.tokens is None
    assert state.pending_action == Pending(
        action_type="/messages",
        payload={"conversationId": "c1", "targetDialogId": "d1"},
    )

    assert len(notifier.sent) == 1
    sent = notifier.sent[0]
    assert sent.title == "Please log in to Gmail"
    assert (sent.conversation_id, sent.user_id, sent.target_dialog_id) == ("c1", "u1", "d1")
    assert sent.auth_token == "ww-token"
    assert parse_qs(urlparse(sent.body).query)["state"] == ["u1"]


def test_null_tokens_behave_like_missing_document() -> None:
    async def run() -> tuple[UserState, UserState]:
        empty, seeded = InMemoryStateStore(), InMemoryStateStore()
        await seeded.write("u1", None, UserState(user_id="u1", tokens=None).to_document())
        await _gate(empty, RecordingNotifier()).admit(_selection())
        await _gate(seeded, RecordingNotifier()).admit(_selection())
        return (
            await UserStateMachine(empty).get("u1"),
            await UserStateMachine(seeded).get("u1"),
        )

    a, b = asyncio.run(run())
    assert a.pending_action == b.pending_action
    assert a.tokens is None and b.tokens is None


def test_authenticated_user_passes_without_mutation(state_store: InMemoryStateStore) -> None:
    notifier = RecordingNotifier()
    tokens = TokenBundle(access_token="T1", refresh_token="R1", expiry=NOW + 3_600_000)

    async def run() -> None:
        rev = await state_store.write("u1", None, UserState(user_id="u1", tokens=tokens).to_document())
        state = await _gate(state_store, notifier).admit(_selection())
        assert state is not None
        assert state.tokens == tokens
        doc, _ = await state_store.read("u1")
        assert doc["_rev"] == rev

    asyncio.run(run())
    assert notifier.sent == []


def test_expired_token_routes_to_login(state_store: InMemoryStateStore) -> None:
    notifier = RecordingNotifier()
    expired = TokenBundle(access_token="T0", refresh_token="R0", expiry=NOW - 1)

    async def run() -> UserState:
        await state_store.write("u1", None, UserState(user_id="u1", tokens=expired).to_document())
        assert await _gate(state_store, notifier).admit(_selection()) is None
        return await UserStateMachine(state_store).get("u1")

    state = asyncio.run(run())
    assert state.pending_action is not None
    assert state.tokens is None
    assert len(notifier.sent) == 1


def test_racing_suspension_keeps_latest_action() -> None:
    """A concurrent writer forces a conflict; the gate re-reads and still records its action."""
    other = UserState(user_id="u1", pending=Pending(action_type="/other")).to_document()
    store = RacingStore(races=1, intruder_doc=other)
    notifier = RecordingNotifier()

    async def run() -> UserState:
        await _gate(store, notifier).admit(_selection(action_id="/messages", dialog="d2"))
        return await UserStateMachine(store).get("u1")

    state = asyncio.run(run())
    assert state.pending_action.action_type == "/messages"
    assert state.pending_action.payload["targetDialogId"] == "d2"
    assert len(notifier.sent) == 1


def test_long_conflict_streak_still_records_action() -> None:
    """More races than one round of retries: the gate keeps going until its action is stored."""
    store = RacingStore(races=5, intruder_doc={"tokens": None})
    notifier = RecordingNotifier()

    async def run() -> UserState:
        assert await _gate(store, notifier, retries=2).admit(_selection(dialog="d7")) is None
        return await UserStateMachine(store).get("u1")

    state = asyncio.run(run())
    assert store.races == 0
    assert state.pending_action.payload["targetDialogId"] == "d7"
    assert [m.title for m in notifier.sent] == ["Please log in to Gmail"]


def test_concurrent_deliveries_for_same_user() -> None:
    store = InMemoryStateStore()
    notifier = RecordingNotifier()
    gate = _gate(store, notifier)

    async def run() -> UserState:
        await asyncio.gather(
            gate.admit(_selection(dialog="d1")),
            gate.admit(_selection(dialog="d2")),
        )
        return await UserStateMachine(store).get("u1")

    state = asyncio.run(run())
    assert state.pending_action.payload["targetDialogId"] in {"d1", "d2"}
    assert len(notifier.sent) == 2
