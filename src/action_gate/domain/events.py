"""Inbound webhook events: recognize "action selected" annotations issued by this app."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

ANNOTATION_ADDED = "message-annotation-added"
ACTION_SELECTED = "actionSelected"


class MalformedEventError(ValueError):
    """Payload is not an action-selected event for this app."""


class ActionPayload(BaseModel):
    """Decoded annotationPayload. Unknown keys are kept for the business handler."""

    model_config = {"extra": "allow"}

    action_id: str = Field(..., alias="actionId", min_length=1)
    target_app_id: str | None = Field(default=None, alias="targetAppId")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    target_dialog_id: str | None = Field(default=None, alias="targetDialogId")


class ActionSelection(BaseModel):
    """Normalized action-selected event handed to the gate and handlers."""

    action_id: str
    action: dict[str, Any]
    user_id: str

    @property
    def route(self) -> str:
        """First space-delimited token of the action id (e.g. /messages)."""
        return self.action_id.split(" ")[0]

    @property
    def args(self) -> list[str]:
        return self.action_id.split(" ")[1:]


def parse_action_selected(body: Any, app_id: str) -> ActionSelection:
    """Validate event shape and issuer. Raises MalformedEventError."""
    if not isinstance(body, dict):
        raise MalformedEventError("event body is not an object")
    if body.get("type") != ANNOTATION_ADDED or body.get("annotationType") != ACTION_SELECTED:
        raise MalformedEventError(f"not an action-selected event: {body.get('type')}/{body.get('annotationType')}")

    user_id = body.get("userId")
    if not user_id or not isinstance(user_id, str):
        raise MalformedEventError("missing userId")

    raw = body.get("annotationPayload")
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        payload = ActionPayload.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise MalformedEventError(f"bad annotationPayload: {e}") from e

    if payload.target_app_id != app_id:
        raise MalformedEventError(f"action issued by another app: {payload.target_app_id}")

    return ActionSelection(
        action_id=payload.action_id,
        action=data,
        user_id=user_id,
    )


def on_action_selected(body: Any, app_id: str) -> ActionSelection | None:
    """Return the selection, or None for events that are not ours (dropped silently)."""
    try:
        return parse_action_selected(body, app_id)
    except MalformedEventError as e:
        logger.debug("Ignoring event: %s", e)
        return None
