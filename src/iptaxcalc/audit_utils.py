# audit_utils.py
import json
import logging

from sqlalchemy.orm import Session

from .models import AuditLog

logger = logging.getLogger(__name__)


def audit(
    session: Session,
    actor: str,
    action: str,
    target_type: str | None,
    target_id: int | None,
    details: dict | None = None,
) -> None:
    """Record who did what; committed together with the caller's unit of work."""
    session.add(
        AuditLog(
            actor=actor,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details_json=json.dumps(details or {}, ensure_ascii=False, default=str, sort_keys=True),
        )
    )
    logger.debug("audit %s %s %s/%s", actor, action, target_type, target_id)
