"""
Leave notifications

Delivery goes through a pluggable sender callable (to, subject, body).
The default sender only logs, so a host wires in SMTP or a queue by passing
its own sender. Delivery failures are logged and never reach the caller.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Callable, Optional
from lms.core.config import settings
from lms.utils.date_utils import format_readable_date

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, str], None]

SUBJECT_SUBMITTED = "New Leave Request Submitted"
SUBJECT_APPROVED = "Leave Request Approved"
SUBJECT_REJECTED = "Leave Request Rejected"
SUBJECT_CANCELLED = "Leave Request Cancelled"


def log_sender(to: str, subject: str, body: str) -> None:
    logger.info("Notification to %s: %s", to, subject)
    logger.debug("Notification body: %s", body)


class NotificationService:
    def __init__(self, sender: Optional[Sender] = None, enabled: Optional[bool] = None):
        self.sender = sender or log_sender
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled

    def send(self, to: Optional[str], subject: str, body: str) -> bool:
        """Deliver one message. Returns True if the sender accepted it."""
        if not to:
            logger.debug("Skipping notification %r: no recipient address", subject)
            return False
        if not self.enabled:
            logger.info("Notifications disabled; not sending %r to %s", subject, to)
            return False
        try:
            self.sender(to, subject, body)
            return True
        except Exception:
            logger.error("Failed to send notification %r to %s", subject, to, exc_info=True)
            return False

    def leave_submitted(
        self,
        manager_email: Optional[str],
        employee_name: str,
        leave_type_name: str,
        start_date: date,
        end_date: date,
        total_days: Decimal,
    ) -> bool:
        body = (
            f"{employee_name} has requested {leave_type_name} from "
            f"{format_readable_date(start_date)} to {format_readable_date(end_date)} "
            f"({total_days} days). Please review the request."
        )
        return self.send(manager_email, SUBJECT_SUBMITTED, body)

    def leave_approved(
        self,
        employee_email: Optional[str],
        employee_name: str,
        leave_type_name: str,
        approver_name: str,
    ) -> bool:
        body = f"Hi {employee_name}, your {leave_type_name} request has been approved by {approver_name}."
        return self.send(employee_email, SUBJECT_APPROVED, body)

    def leave_rejected(
        self,
        employee_email: Optional[str],
        employee_name: str,
        leave_type_name: str,
        approver_name: str,
        reason: str,
    ) -> bool:
        body = (
            f"Hi {employee_name}, your {leave_type_name} request has been rejected by "
            f"{approver_name}. Reason: {reason}"
        )
        return self.send(employee_email, SUBJECT_REJECTED, body)

    def leave_cancelled(
        self,
        manager_email: Optional[str],
        employee_name: str,
        leave_type_name: str,
    ) -> bool:
        body = f"{employee_name} has cancelled their {leave_type_name} request."
        return self.send(manager_email, SUBJECT_CANCELLED, body)


notification_service = NotificationService()
