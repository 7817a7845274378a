"""
Notification Dispatch

Builds the notification request for a workflow outcome and delivers it out
of band. Delivery runs after the workflow change has committed; a failed
delivery is logged and never reaches the caller.
"""
import logging
import re
import smtplib
from email.message import EmailMessage
from typing import List, Optional, Protocol

from ...config import (
    SENIOR_APPROVER_LABEL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_SENDER,
    SMTP_STARTTLS,
    SMTP_USERNAME,
)
from ...models.db_models import ReportStatus, UserRole
from ...models.workflow import Identity, NotificationEvent, NotificationRequest, ReportSnapshot
from .identity import IdentityProvider
from .metrics import NOTIFICATION_FAILED

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s\r\n]+@[^@\s\r\n]+\.[^@\s\r\n]+$")


# =============================================================================
# RECIPIENTS
# =============================================================================

def _unique(identities: List[Identity], exclude: Optional[str] = None) -> tuple:
    seen = set()
    result = []
    for identity in identities:
        if identity.user_id in seen or identity.user_id == exclude:
            continue
        seen.add(identity.user_id)
        result.append(identity)
    return tuple(result)


def build_notification(
    report: ReportSnapshot,
    new_status: ReportStatus,
    actor: Identity,
    identities: IdentityProvider,
    reason: Optional[str] = None,
) -> Optional[NotificationRequest]:
    """
    Work out who hears about a transition.

    Staff submission goes to the department's line managers, manager
    submission to senior approvers. A manager approval informs the author
    and the senior approvers. Completion and rejection go to the author.
    """
    title = report.title
    creator = identities.resolve(report.created_by)
    creators = [creator] if creator else []

    if new_status == ReportStatus.SUBMITTED:
        event = NotificationEvent.REPORT_SUBMITTED
        if actor.role == UserRole.LINE_MANAGER:
            recipients = identities.find_by_role(UserRole.SENIOR_APPROVER)
            message = f"Report '{title}' was submitted by {actor.display_name} for {SENIOR_APPROVER_LABEL} approval."
        else:
            recipients = identities.find_by_role(UserRole.LINE_MANAGER, report.department)
            message = f"Report '{title}' was submitted by {actor.display_name} and awaits your review."
    elif new_status == ReportStatus.MANAGER_APPROVED:
        event = NotificationEvent.REPORT_APPROVED
        recipients = creators + identities.find_by_role(UserRole.SENIOR_APPROVER)
        message = f"Report '{title}' was approved by {actor.display_name} and awaits {SENIOR_APPROVER_LABEL} approval."
    elif new_status == ReportStatus.COMPLETED:
        event = NotificationEvent.REPORT_COMPLETED
        recipients = creators
        message = f"Report '{title}' received final approval from {actor.display_name}."
    elif new_status in (ReportStatus.MANAGER_REJECTED, ReportStatus.SENIOR_REJECTED):
        event = NotificationEvent.REPORT_REJECTED
        recipients = creators
        message = f"Report '{title}' was rejected by {actor.display_name}. Reason: {reason or 'not given'}"
    else:
        return None

    return NotificationRequest(
        event=event,
        report_id=report.report_id,
        report_number=report.report_number,
        report_title=title,
        actor_id=actor.user_id,
        actor_name=actor.display_name,
        recipients=_unique(recipients, exclude=actor.user_id),
        message=message,
    )


# =============================================================================
# DISPATCHERS
# =============================================================================

class NotificationDispatcher(Protocol):
    def dispatch(self, request: NotificationRequest) -> None: ...


class LoggingNotificationDispatcher:
    """Writes notifications to the log. Used when SMTP is not configured."""

    def dispatch(self, request: NotificationRequest) -> None:
        names = ", ".join(r.display_name for r in request.recipients) or "nobody"
        logger.info(f"[{request.event.value}] {request.message} -> {names}")


class SmtpNotificationDispatcher:
    """Sends one plain-text email per recipient over SMTP."""

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        sender: str = SMTP_SENDER,
        username: str = SMTP_USERNAME,
        password: str = SMTP_PASSWORD,
        starttls: bool = SMTP_STARTTLS,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def _message(self, request: NotificationRequest, recipient: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        reference = request.report_number or request.report_id
        message["Subject"] = f"[Report Workflow] {request.event.value}: {reference}"
        message.set_content(request.message)
        return message

    def dispatch(self, request: NotificationRequest) -> None:
        if not self.enabled:
            return
        addresses = []
        for recipient in request.recipients:
            if recipient.email and _EMAIL_RE.match(recipient.email):
                addresses.append(recipient.email)
            else:
                logger.warning(f"Invalid email recipient skipped: {recipient.user_id}")
        if not addresses:
            return

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            for address in addresses:
                smtp.send_message(self._message(request, address))


def default_dispatcher() -> NotificationDispatcher:
    dispatcher = SmtpNotificationDispatcher()
    if dispatcher.enabled:
        return dispatcher
    return LoggingNotificationDispatcher()


def deliver(dispatcher: NotificationDispatcher, request: NotificationRequest, metrics=None) -> None:
    """
    Background-task entry point. The workflow change is already committed,
    so failures are logged and counted, not raised.
    """
    try:
        dispatcher.dispatch(request)
    except Exception as e:  # last stop before the background task runner
        logger.error(f"Notification {request.event.value} for report {request.report_id} failed: {e}")
        if metrics is not None:
            metrics.increment(NOTIFICATION_FAILED, event=request.event.value)
