"""
In-app notifications and best-effort notification email.

Email is sent on a background thread; failures are logged and never reach
the caller.
"""

import logging
import smtplib
import threading
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

from flask import current_app

from ..database import db
from ..models import Notification, User, UserRole

logger = logging.getLogger(__name__)

def _send_email(mail_config: Dict[str, Any], recipients: List[str], subject: str, body: str):
    for recipient in recipients:
        try:
            msg = EmailMessage()
            msg['From'] = mail_config['sender']
            msg['To'] = recipient
            msg['Subject'] = subject
            msg.set_content(body)

            with smtplib.SMTP(mail_config['host'], mail_config['port'], timeout=10) as server:
                server.starttls()
                if mail_config.get('user'):
                    server.login(mail_config['user'], mail_config['password'])
                server.send_message(msg)
        except Exception as e:
            logger.error(f"Failed to send email to {recipient}: {e}")

def send_email_async(recipients: List[str], subject: str, body: str) -> Optional[threading.Thread]:
    """
    Send an email in the background.

    Returns:
        The worker thread, or None when email is not configured or there is nobody to send to
    """
    mail_config = current_app.config.get('MAIL')
    recipients = [r for r in recipients if r]
    if not mail_config or not recipients:
        logger.debug(f"Email skipped ({subject}): mail not configured or no recipients")
        return None

    worker = threading.Thread(
        target=_send_email,
        args=(dict(mail_config), recipients, subject, body),
        daemon=True
    )
    worker.start()
    return worker

def _base_url() -> str:
    mail_config = current_app.config.get('MAIL') or {}
    return mail_config.get('base_url', '')

def notify_admins_of_submission(master_switch, submitter: User):
    """Email every admin about a new master switch submission."""
    try:
        admin_emails = [
            admin.email for admin in User.query.filter_by(role=UserRole.ADMIN.value).all()
        ]
        body = (
            f"{submitter.username} submitted a new master switch for review.\n\n"
            f"Name: {master_switch.name}\n"
            f"Manufacturer: {master_switch.manufacturer}\n\n"
            f"Review it at {_base_url()}/admin/master-switches"
        )
        send_email_async(admin_emails, f"New master switch submission: {master_switch.name}", body)
    except Exception as e:
        logger.error(f"Failed to notify admins of submission {master_switch.id}: {e}")

def create_notification(user_id: str, notification_type: str, title: str, message: str,
                        link: Optional[str] = None) -> Notification:
    """Queue an in-app notification on the current session; the caller commits."""
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        link=link
    )
    db.session.add(notification)
    return notification

def email_user(user: Optional[User], subject: str, body: str):
    """Best-effort email to a single user."""
    if user is None:
        return
    try:
        send_email_async([user.email], subject, body)
    except Exception as e:
        logger.error(f"Failed to email user {user.id}: {e}")
