# Overview: Append-only security audit trail (OTP, login, permission, admin events).

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from steeltrack.time_utils import utcnow


def log_security_event(
    event_type: str,
    success: bool,
    user_id: int | None = None,
    phone_key: str | None = None,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = False,
) -> SecurityEvent:
    """
    Record a security event.

    event_type is one of models.security.SECURITY_EVENT_TYPES.

    By default the event joins the caller's transaction; pass commit=True
    when the caller is about to reject the request (and roll back).
    """
    event = SecurityEvent(
        user_id=user_id,
        phone_key=phone_key,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return event


def list_security_events(user_id: int | None = None, event_type: str | None = None, limit: int = 100) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent)
    if user_id is not None:
        query = query.filter(SecurityEvent.user_id == user_id)
    if event_type:
        query = query.filter(SecurityEvent.event_type == event_type)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()


def cleanup_security_events(retention_days: int = 90) -> int:
    """Delete security events older than the retention window."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
