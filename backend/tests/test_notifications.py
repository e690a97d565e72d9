"""
Tests for email notifications (SMTP is mocked).
"""
from unittest.mock import MagicMock, patch

from app.models.db_models import CommandStatus, UserRole, UserTier
from app.services.notifications import NotificationService


class TestNotificationService:

    def test_disabled_without_smtp_host(self, db, make_user, make_command):
        """Without SMTP_HOST nothing is sent."""
        owner = make_user(email="owner@example.com")
        command = make_command(owner, "sudo reboot")

        with patch("app.config.SMTP_HOST", None), patch("smtplib.SMTP") as smtp:
            service = NotificationService(db)
            assert service.enabled is False
            assert service.notify_pending_approval(command, owner, 2) == 0
            assert service.notify_executed(command, owner, 9) is False
            smtp.assert_not_called()

    def test_pending_approval_goes_to_admins_with_email(self, db, make_user, make_command):
        """Pending-approval mail goes to every admin with an address."""
        make_user(name="a1", role=UserRole.ADMIN, tier=UserTier.LEAD, email="a1@example.com")
        make_user(name="a2", role=UserRole.ADMIN, tier=UserTier.LEAD, email="a2@example.com")
        make_user(name="a3", role=UserRole.ADMIN, tier=UserTier.LEAD)
        owner = make_user(name="owner", email="owner@example.com")
        command = make_command(owner, "sudo reboot", status=CommandStatus.AWAITING_APPROVAL)

        with patch("app.config.SMTP_HOST", "smtp.example.com"), patch("smtplib.SMTP") as smtp:
            sent = NotificationService(db).notify_pending_approval(command, owner, 2)

        assert sent == 2
        connection = smtp.return_value.__enter__.return_value
        recipients = sorted(call.args[0]["To"] for call in connection.send_message.call_args_list)
        assert recipients == ["a1@example.com", "a2@example.com"]

    def test_owner_without_email_is_skipped(self, db, make_user, make_command):
        """An owner without an address gets no decision mail."""
        owner = make_user()
        approver = make_user(name="admin", role=UserRole.ADMIN)
        command = make_command(owner, "sudo reboot")

        with patch("app.config.SMTP_HOST", "smtp.example.com"), patch("smtplib.SMTP") as smtp:
            assert NotificationService(db).notify_decision(command, owner, approver, approved=False) is False
            smtp.assert_not_called()

    def test_delivery_failure_is_swallowed(self, db, make_user, make_command):
        """SMTP errors are logged, never raised."""
        owner = make_user(email="owner@example.com")
        command = make_command(owner, "ls", status=CommandStatus.EXECUTED)

        with patch("app.config.SMTP_HOST", "smtp.example.com"), \
                patch("smtplib.SMTP", MagicMock(side_effect=OSError("connection refused"))):
            assert NotificationService(db).notify_executed(command, owner, 9) is False
