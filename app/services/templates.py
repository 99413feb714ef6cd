from __future__ import annotations

import html
from datetime import datetime
from typing import Optional

from ..config import get_settings
from ..domain.actions import ACTION_DESCRIPTIONS, ActionType
from ..domain.schemas.dispatch import EmailMessage

# Each entry: (subject, text body, html body). Values are escaped before
# substitution into the html body only.
MESSAGE_TEMPLATES = {
    "verification_code": (
        "Your Verification Code: {code}",
        "You requested to {action} on the Prayer App.\n\n"
        "Your verification code is: {code}\n\n"
        "This code will expire in {ttl_minutes} minutes.\n\n"
        "If you didn't request this code, you can safely ignore this email.",
        "<h2>Verification Code</h2>"
        "<p>You requested to <strong>{action}</strong> on the Prayer App.</p>"
        "<p style=\"font-size:32px;letter-spacing:8px;font-family:monospace\"><strong>{code}</strong></p>"
        "<p><strong>This code expires in {ttl_minutes} minutes</strong></p>"
        "<p>If you didn't request this code, you can safely ignore this email.</p>",
    ),
    "item_reminder": (
        "Reminder: Please update your prayer request",
        "Hello {requester_name},\n\n"
        "This is a friendly reminder to update your prayer request if there have been "
        "any changes or answered prayers.\n\n"
        "Your request: {title}\nPrayer for: {prayer_for}\n"
        "Submitted: {submitted}\n{last_reminder}\n\n"
        "Add an update here: {app_link}",
        "<h2>Hello {requester_name},</h2>"
        "<p>This is a friendly reminder to update your prayer request if there have been "
        "any changes or answered prayers.</p>"
        "<p><strong>{title}</strong><br>Prayer for: {prayer_for}</p>"
        "<p>Submitted: {submitted}<br>{last_reminder}</p>"
        "<p><a href=\"{app_link}\">Visit Prayer App</a></p>",
    ),
    "approved_submission": (
        "New Prayer Request: {title}",
        "A new prayer request has been approved and is now live.\n\n"
        "Title: {title}\nFor: {prayer_for}\nRequested by: {requester_name}\n\n"
        "Description: {description}",
        "<h2>{title}</h2><p><strong>For:</strong> {prayer_for}</p>"
        "<p><strong>Requested by:</strong> {requester_name}</p><p>{description}</p>"
        "<p><a href=\"{app_link}\">View in Prayer App</a></p>",
    ),
    "approved_update": (
        "Prayer Update: {title}",
        "A new update has been posted for a prayer.\n\n"
        "Prayer: {title}\nUpdate by: {author}\n\nContent: {content}",
        "<h2>Update for: {title}</h2><p><strong>Update by:</strong> {author}</p>"
        "<p>{content}</p><p><a href=\"{app_link}\">View in Prayer App</a></p>",
    ),
    "pending_review": (
        "New {kind} pending approval: {title}",
        "A new {kind} has been submitted and is pending approval.\n\n"
        "Title: {title}\nSubmitted by: {submitted_by}\n\n"
        "Please review and approve/deny it in the admin portal.",
        "<h2>{title}</h2><p>A new {kind} has been submitted and is pending approval.</p>"
        "<p><strong>Submitted by:</strong> {submitted_by}</p>"
        "<p><a href=\"{admin_link}\">Go to Admin Portal</a></p>",
    ),
}


def render(key: str, **values: object) -> EmailMessage:
    subject_t, text_t, html_t = MESSAGE_TEMPLATES[key]
    plain = {k: "" if v is None else str(v) for k, v in values.items()}
    escaped = {k: html.escape(v) for k, v in plain.items()}
    return EmailMessage(
        subject=subject_t.format(**plain),
        text_body=text_t.format(**plain),
        html_body=html_t.format(**escaped),
    )


def verification_code_email(code: str, action_type: ActionType, ttl_minutes: int) -> EmailMessage:
    return render(
        "verification_code",
        code=code,
        action=ACTION_DESCRIPTIONS.get(action_type, "perform an action"),
        ttl_minutes=ttl_minutes,
    )


def reminder_email(item) -> EmailMessage:
    last: Optional[datetime] = item.last_reminder_sent_at
    return render(
        "item_reminder",
        requester_name="Friend" if item.is_anonymous or not item.requester else item.requester,
        title=item.title,
        prayer_for=item.prayer_for or "",
        submitted=item.created_at.date().isoformat(),
        last_reminder=f"Last reminder: {last.date().isoformat()}" if last else "First reminder",
        app_link=f"{get_settings().APP_URL.rstrip('/')}/",
    )


def approved_submission_email(*, title: str, description: str, requester: Optional[str],
                              prayer_for: Optional[str] = None, is_anonymous: bool = False) -> EmailMessage:
    return render(
        "approved_submission",
        title=title,
        description=description,
        prayer_for=prayer_for or "",
        requester_name="Anonymous" if is_anonymous or not requester else requester,
        app_link=f"{get_settings().APP_URL.rstrip('/')}/",
    )


def approved_update_email(*, title: str, author: Optional[str], content: str) -> EmailMessage:
    return render(
        "approved_update",
        title=title,
        author=author or "Anonymous",
        content=content,
        app_link=f"{get_settings().APP_URL.rstrip('/')}/",
    )


def pending_review_email(*, kind: str, title: str, submitted_by: Optional[str]) -> EmailMessage:
    return render(
        "pending_review",
        kind=kind,
        title=title,
        submitted_by=submitted_by or "Anonymous",
        admin_link=f"{get_settings().APP_URL.rstrip('/')}/#admin",
    )
