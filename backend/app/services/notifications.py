"""
Notification Service

Plain-text email notices for gateway events:
- pending approval (to every admin with an email address)
- approval decision (to the command owner)
- execution (to the command owner)

Disabled when SMTP_HOST is not configured. Delivery failures are logged
and swallowed.
"""
import logging
import smtplib
from email.message import EmailMessage
from typing import List, Optional

from sqlalchemy.orm import Session

from .. import config
from ..models.db_models import CommandDB, UserDB, UserRole

logger = logging.getLogger(__name__)


class NotificationService:
    """Best-effort email sink."""

    def __init__(self, db: Session):
        self.db = db

    @property
    def enabled(self) -> bool:
        return bool(config.SMTP_HOST)

    # =========================================================================
    # EVENTS
    # =========================================================================

    def notify_pending_approval(self, command: CommandDB, owner: UserDB, required_approvals: int) -> int:
        """Tell admins a command is waiting for votes. Returns emails sent."""
        if not self.enabled:
            return 0

        recipients = self._admin_emails()
        body = (
            f"{owner.name} ({owner.tier}) submitted a command that needs approval.\n\n"
            f"Command: {command.command_text}\n"
            f"Required approvals: {required_approvals}\n\n"
            f"Review it at {config.FRONTEND_URL}/approvals\n"
        )
        sent = 0
        for address in recipients:
            if self._send(address, "Action Required: Command Pending Approval", body):
                sent += 1
        return sent

    def notify_decision(self, command: CommandDB, owner: UserDB, approver: UserDB, approved: bool) -> bool:
        if not self.enabled or not owner.email:
            return False

        verdict = "approved" if approved else "rejected"
        body = (
            f"Your command was {verdict} by {approver.name}.\n\n"
            f"Command: {command.command_text}\n"
        )
        if approved:
            body += "\nIt will run once enough approvals are recorded.\n"
        return self._send(owner.email, f"Command {verdict.capitalize()}", body)

    def notify_executed(self, command: CommandDB, owner: UserDB, new_balance: Optional[int]) -> bool:
        if not self.enabled or not owner.email:
            return False

        body = (
            f"Your command was executed.\n\n"
            f"Command: {command.command_text}\n"
            f"Remaining credits: {new_balance}\n"
        )
        return self._send(owner.email, "Command Executed Successfully", body)

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _admin_emails(self) -> List[str]:
        try:
            rows = (
                self.db.query(UserDB.email)
                .filter(UserDB.role == UserRole.ADMIN.value, UserDB.email.isnot(None))
                .all()
            )
        except Exception as e:
            logger.error(f"Could not load admin recipients: {e}")
            return []
        return [row[0] for row in rows]

    def _send(self, to: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["From"] = config.SMTP_FROM
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=10) as smtp:
                if config.SMTP_PORT != 25:
                    smtp.starttls()
                if config.SMTP_USER and config.SMTP_PASS:
                    smtp.login(config.SMTP_USER, config.SMTP_PASS)
                smtp.send_message(message)
            logger.info(f"Email sent to {to}: {subject}")
            return True
        except Exception as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return False
