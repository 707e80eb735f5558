"""Per-user state document: credential bundle and the single pending-action slot."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TokenBundle(BaseModel):
    """Delegated OAuth credential for one user."""

    model_config = ConfigDict(frozen=True)

    access_token: str | None = None
    refresh_token: str | None = None
    expiry: int | None = Field(default=None, description="Epoch milliseconds")
    token_type: str | None = None
    scope: str | None = None
    instance_url: str | None = Field(default=None, description="API host returned by CRM providers")


class Idle(BaseModel):
    """No suspended action."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["idle"] = "idle"


class Pending(BaseModel):
    """An action suspended while the user completes an OAuth round-trip."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"
    action_type: str = Field(..., description="Route key, e.g. /messages")
    payload: dict[str, Any] = Field(default_factory=dict, description="Opaque action payload")


PendingSlot = Annotated[Union[Idle, Pending], Field(discriminator="kind")]


class UserState(BaseModel):
    """One document per user. `revision` is None until the first successful write."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    revision: str | None = None
    tokens: TokenBundle | None = None
    pending: PendingSlot = Field(default_factory=Idle)

    @property
    def pending_action(self) -> Pending | None:
        return self.pending if isinstance(self.pending, Pending) else None

    def to_document(self) -> dict[str, Any]:
        """Storage layout: everything except the key and the store-owned revision."""
        return self.model_dump(mode="json", exclude={"user_id", "revision"})

    @classmethod
    def from_document(cls, user_id: str, document: dict[str, Any]) -> UserState:
        data = {k: v for k, v in document.items() if k != "_rev"}
        return cls.model_validate({**data, "user_id": user_id, "revision": document.get("_rev")})
