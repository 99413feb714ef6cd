import enum
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from ..actions import ActionPayload, ActionType


class EmailStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"


class IssuedCode(BaseModel):
    """Result of issuing a code. The code is valid even when the email failed."""
    code_id: uuid.UUID
    expires_at: datetime
    email_status: EmailStatus


class VerifiedAction(BaseModel):
    action_type: ActionType
    action: ActionPayload
    email: str


# ---------- wire models (camelCase on the wire) ----------
class IssueCodeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=320)]
    action_type: str = Field(alias="actionType")
    action_data: Dict[str, Any] = Field(alias="actionData")


class IssueCodeOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code_id: uuid.UUID = Field(serialization_alias="codeId")
    expires_at: datetime = Field(serialization_alias="expiresAt")
    email_status: EmailStatus = Field(serialization_alias="emailStatus")

    @classmethod
    def from_issued(cls, issued: IssuedCode) -> "IssueCodeOut":
        return cls(code_id=issued.code_id, expires_at=issued.expires_at, email_status=issued.email_status)


class ValidateCodeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code_id: uuid.UUID = Field(alias="codeId")
    code: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=10)]


class ValidateCodeOut(BaseModel):
    action_type: ActionType = Field(serialization_alias="actionType")
    action_data: Dict[str, Any] = Field(serialization_alias="actionData")
    email: str
