"""
Notification service for in-app and email reminders.
"""
import smtplib
from email.message import EmailMessage
from typing import Optional, Dict, Any, Iterable

import structlog
from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..models.models import Notification, User, utcnow
from ..config import settings

log = structlog.get_logger(__name__)


def email_enabled() -> bool:
    return bool(settings.enable_email and settings.smtp_host and settings.mail_from)


def send_email(to: str, subject: str, body: str, reply_to: Optional[str] = None) -> bool:
    """
    Send a plain-text email through the configured SMTP server.

    Returns:
        True when the message was handed to the server, False when email is
        disabled or delivery failed
    """
    if not email_enabled():
        log.info("email_skipped", to=to, subject=subject)
        return False

    msg = EmailMessage()
    msg["From"] = settings.mail_from
    msg["To"] = to
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        log.warning("email_failed", to=to, subject=subject, error=str(e))
        return False
    log.info("email_sent", to=to, subject=subject)
    return True


def notify(
    db: Session,
    user: User,
    template_key: str,
    payload: Dict[str, Any],
    channels: Iterable[str] = ("app",),
) -> list:
    """
    Record a notification for ``user`` on each channel.

    In-app notifications are stored as sent; email notifications are sent
    straight away and stored with the delivery outcome.

    Args:
        db: Database session
        user: Recipient
        template_key: Template identifier (e.g. qualification_expiring)
        payload: Template data; ``subject`` and ``body`` are used for email
        channels: Any of "app" and "email"

    Returns:
        Created Notification rows
    """
    created = []
    for channel in channels:
        notification = Notification(
            user_id=user.id,
            channel=channel,
            template_key=template_key,
            payload_json=payload,
        )
        if channel == "email":
            ok = send_email(user.email, payload.get("subject", template_key), payload.get("body", ""))
            notification.status = "sent" if ok else "failed"
            if ok:
                notification.sent_at = utcnow()
            else:
                notification.error_message = "email disabled or delivery failed"
        else:
            notification.status = "sent"
            notification.sent_at = utcnow()
        db.add(notification)
        created.append(notification)
    db.flush()
    return created


def list_notifications(db: Session, user: User, unread_only: bool = False, limit: int = 50) -> list:
    query = db.query(Notification).filter(Notification.user_id == user.id, Notification.channel == "app")
    if unread_only:
        query = query.filter(Notification.status != "read")
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, user: User, notification_id) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user.id:
        raise NotFoundError("Notification", notification_id)
    notification.status = "read"
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, user: User) -> int:
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.channel == "app", Notification.status != "read")
        .update({Notification.status: "read"}, synchronize_session=False)
    )
    db.commit()
    return count
