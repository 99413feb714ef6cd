from __future__ import annotations

import enum
import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

from .errors import InvalidInput


class ActionType(str, enum.Enum):
    SUBMISSION = "submission"
    UPDATE = "update"
    DELETION_REQUEST = "deletion_request"
    UPDATE_DELETION_REQUEST = "update_deletion_request"
    STATUS_CHANGE_REQUEST = "status_change_request"
    PREFERENCE_CHANGE = "preference_change"


# Shown in the verification email: "You requested to <description>."
ACTION_DESCRIPTIONS: dict[ActionType, str] = {
    ActionType.SUBMISSION: "submit a prayer request",
    ActionType.UPDATE: "add a prayer update",
    ActionType.DELETION_REQUEST: "request a prayer deletion",
    ActionType.UPDATE_DELETION_REQUEST: "request an update deletion",
    ActionType.STATUS_CHANGE_REQUEST: "request a status change",
    ActionType.PREFERENCE_CHANGE: "update your email preferences",
}

NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _Action(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SubmissionAction(_Action):
    action_type: Literal["submission"] = "submission"
    title: NonEmpty
    description: NonEmpty
    requester: NonEmpty
    prayer_for: str | None = None
    is_anonymous: bool = False


class UpdateAction(_Action):
    action_type: Literal["update"] = "update"
    item_id: uuid.UUID
    content: NonEmpty
    author: NonEmpty
    is_anonymous: bool = False
    mark_as_answered: bool = False


class DeletionRequestAction(_Action):
    action_type: Literal["deletion_request"] = "deletion_request"
    item_id: uuid.UUID
    requested_by: NonEmpty
    reason: str | None = None


class UpdateDeletionRequestAction(_Action):
    action_type: Literal["update_deletion_request"] = "update_deletion_request"
    update_id: uuid.UUID
    requested_by: NonEmpty
    reason: str | None = None


class StatusChangeRequestAction(_Action):
    action_type: Literal["status_change_request"] = "status_change_request"
    item_id: uuid.UUID
    requested_status: Literal["current", "ongoing", "answered", "closed"]
    requested_by: NonEmpty
    reason: str | None = None


class PreferenceChangeAction(_Action):
    action_type: Literal["preference_change"] = "preference_change"
    name: NonEmpty
    receive_notifications: bool


ActionPayload = Annotated[
    Union[
        SubmissionAction,
        UpdateAction,
        DeletionRequestAction,
        UpdateDeletionRequestAction,
        StatusChangeRequestAction,
        PreferenceChangeAction,
    ],
    Field(discriminator="action_type"),
]

_payload_adapter: TypeAdapter[ActionPayload] = TypeAdapter(ActionPayload)


def parse_action(action_type: str, data: object) -> ActionPayload:
    """Build the typed payload for `action_type` from untyped request/storage data."""
    try:
        kind = ActionType(action_type)
    except ValueError:
        raise InvalidInput(f"unknown action type: {action_type!r}")
    if not isinstance(data, dict) or not data:
        raise InvalidInput("action payload must be a non-empty object")
    try:
        return _payload_adapter.validate_python({**data, "action_type": kind.value})
    except ValidationError as e:
        raise InvalidInput(f"invalid {kind.value} payload: {e.errors(include_url=False)}")


def dump_action(action: ActionPayload) -> dict:
    """JSON-safe dict of the payload body (discriminator is stored in its own column)."""
    return action.model_dump(mode="json", exclude={"action_type"})
