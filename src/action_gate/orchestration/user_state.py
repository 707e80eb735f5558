"""User state machine: plain read and read-with-guarded-write over the state store."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from action_gate.domain.state import UserState
from action_gate.infrastructure.state_store import StateStore

logger = logging.getLogger(__name__)


class TransactionAborted(Exception):
    """The transaction function chose not to write."""


Put = Callable[[Exception | None, UserState | None], Awaitable[UserState | None]]
Transaction = Callable[[UserState, Put], Awaitable[None]]


class UserStateMachine:
    """Wraps a StateStore. Conflicts are reported to the caller, never retried here."""

    def __init__(self, store: StateStore) -> None:
        self._store = store

    async def get(self, user_id: str) -> UserState:
        """Current state, or an empty default (revision None) for unknown users."""
        document, found = await self._store.read(user_id)
        if not found:
            return UserState(user_id=user_id)
        return UserState.from_document(user_id, document)

    async def run(self, user_id: str, fn: Transaction) -> UserState | None:
        """
        Read state, then await fn(state, put).
        put(error, updated): with error set, aborts (no write); otherwise writes `updated`
        guarded by the revision read here and returns it carrying the new revision.
        Returns the last persisted state, or None if fn aborted or never wrote.
        Raises ConflictError if the guarded write lost a race.
        """
        state = await self.get(user_id)
        expected = state.revision
        result: UserState | None = None

        async def put(error: Exception | None, updated: UserState | None = None) -> UserState | None:
            nonlocal expected, result
            if error is not None:
                logger.debug("Transaction for %s aborted: %s", user_id, error)
                raise TransactionAborted(str(error)) from error
            if updated is None:
                raise ValueError("put() needs either an error or an updated state")
            revision = await self._store.write(user_id, expected, updated.to_document())
            expected = revision
            result = updated.model_copy(update={"user_id": user_id, "revision": revision})
            return result

        try:
            await fn(state, put)
        except TransactionAborted:
            return None
        return result
