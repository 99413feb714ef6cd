from __future__ import annotations

import enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DistributionPolicy(str, enum.Enum):
    ADMIN_ONLY = "admin_only"
    ALL_SUBSCRIBERS = "all_subscribers"


class NotificationTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None


class EmailMessage(BaseModel):
    """Already-rendered message; rendering happens before dispatch."""
    model_config = ConfigDict(frozen=True)

    subject: str = Field(min_length=1)
    html_body: str = ""
    text_body: str = ""


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_per_window: int = Field(default=30, ge=1)
    window_seconds: float = Field(default=60.0, ge=0)


class FailedSend(BaseModel):
    email: str
    reason: str


class DispatchReport(BaseModel):
    sent: List[str] = Field(default_factory=list)
    failed: List[FailedSend] = Field(default_factory=list)
    total_attempted: int = 0
    batches: int = 0
    cancelled: bool = False

    def record_sent(self, email: str) -> None:
        self.sent.append(email)
        self.total_attempted += 1

    def record_failed(self, email: str, reason: str) -> None:
        self.failed.append(FailedSend(email=email, reason=reason))
        self.total_attempted += 1

    def merge(self, other: "DispatchReport") -> None:
        self.sent.extend(other.sent)
        self.failed.extend(other.failed)
        self.total_attempted += other.total_attempted
        self.batches += other.batches
        self.cancelled = self.cancelled or other.cancelled


class AdminSettings(BaseModel):
    """Read-only snapshot of the admin_settings row, taken once per invocation."""
    model_config = ConfigDict(frozen=True)

    distribution_policy: DistributionPolicy = DistributionPolicy.ADMIN_ONLY
    notification_emails: tuple[str, ...] = ()
    reminder_interval_days: int = 0
    verification_code_length: int = Field(default=6, ge=4, le=10)


# ---------- wire models ----------
class NotifyIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subject: str = Field(min_length=1, max_length=998)
    html_body: str = Field(default="", alias="htmlBody")
    text_body: str = Field(default="", alias="textBody")
    policy: Optional[DistributionPolicy] = None

    def to_message(self) -> EmailMessage:
        return EmailMessage(subject=self.subject, html_body=self.html_body, text_body=self.text_body)


class ApprovedSubmissionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    requester: Optional[str] = None
    prayer_for: Optional[str] = Field(default=None, alias="prayerFor")
    is_anonymous: bool = Field(default=False, alias="isAnonymous")


class ApprovedUpdateIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    author: Optional[str] = None


class PendingReviewIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: str = Field(default="prayer request", min_length=1)
    title: str = Field(min_length=1, max_length=200)
    submitted_by: Optional[str] = Field(default=None, alias="submittedBy")
