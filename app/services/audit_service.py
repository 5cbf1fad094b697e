import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import AuditAction, AuditLog

logger = logging.getLogger(__name__)


def _fit(column_name: str, value: Any) -> Optional[str]:
    """Cut a client-supplied value to the width of its audit_logs column."""
    if value is None:
        return None
    return str(value)[: AuditLog.__table__.c[column_name].type.length] or None


@dataclass
class RequestContext:
    """Client details copied onto every audit entry written for a request."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None


class AuditService:
    """Append-only audit trail."""

    @staticmethod
    def record(
        db: Session,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        performed_by: Optional[UUID] = None,
        details: Optional[dict] = None,
        context: Optional[RequestContext] = None,
        commit: bool = True,
    ) -> AuditLog:
        """
        Write one audit entry.

        With commit=False the entry joins the caller's transaction, so it is
        persisted together with the change it describes.
        """
        context = context or RequestContext()
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=_fit("entity_id", entity_id) or "",
            action=AuditAction(action).value,
            performed_by=performed_by,
            details=details or {},
            ip_address=_fit("ip_address", context.ip_address),
            user_agent=_fit("user_agent", context.user_agent),
            session_id=_fit("session_id", context.session_id),
        )
        db.add(entry)
        if commit:
            db.commit()
        logger.debug(f"Audit {action} {entity_type}:{entity_id} by {performed_by}")
        return entry
