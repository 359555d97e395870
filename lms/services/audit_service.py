"""
Audit logging service

Audit entries are written after the business transaction has committed.
A failed audit write is logged and dropped; it never undoes the operation
it describes.
"""
import enum
import logging
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
from lms.models.audit_log import AuditLog
from lms.utils.datetime_utils import now_utc
from lms.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)


class AuditAction(str, enum.Enum):
    LEAVE_APPLIED = "LEAVE_APPLIED"
    LEAVE_UPDATED = "LEAVE_UPDATED"
    LEAVE_SUBMITTED = "LEAVE_SUBMITTED"
    LEAVE_DELETED = "LEAVE_DELETED"
    LEAVE_APPROVAL_RECORDED = "LEAVE_APPROVAL_RECORDED"
    LEAVE_APPROVED = "LEAVE_APPROVED"
    LEAVE_REJECTED = "LEAVE_REJECTED"
    LEAVE_CANCELLED = "LEAVE_CANCELLED"
    LEAVE_BULK_APPROVED = "LEAVE_BULK_APPROVED"
    LEAVE_BULK_REJECTED = "LEAVE_BULK_REJECTED"
    LEAVE_BALANCE_ALLOCATED = "LEAVE_BALANCE_ALLOCATED"
    LEAVE_BALANCE_ADJUSTED = "LEAVE_BALANCE_ADJUSTED"
    LEAVE_BALANCE_BULK_PROCESSED = "LEAVE_BALANCE_BULK_PROCESSED"
    LEAVE_BALANCE_YEAR_CLOSED = "LEAVE_BALANCE_YEAR_CLOSED"


class AuditEntity(str, enum.Enum):
    LEAVE_REQUEST = "LEAVE_REQUEST"
    LEAVE_BALANCE = "LEAVE_BALANCE"


def balance_entity_id(employee_id: int, leave_type_code: str, year: int) -> str:
    """Audit entity id for a single balance row, e.g. 12_CL_2025"""
    return f"{employee_id}_{leave_type_code}_{year}"


def log_audit(
    db: Session,
    actor_id: Any,
    action: AuditAction,
    entity: AuditEntity,
    entity_id: Any,
    description: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    leave_request_id: Optional[int] = None,
) -> Optional[AuditLog]:
    """
    Create an audit log entry

    Args:
        db: Database session (its business transaction must already be committed)
        actor_id: Employee id, or an email/name for admin tooling
        action: What happened
        entity: Kind of record affected
        entity_id: Id of the affected record
        description: Human readable summary (optional)
        old_values: State before the change (optional)
        new_values: State after the change (optional)
        leave_request_id: Related leave request, if any

    Returns:
        Created AuditLog instance, or None if the write failed
    """
    try:
        audit_log = AuditLog(
            action=action.value if isinstance(action, enum.Enum) else action,
            entity=entity.value if isinstance(entity, enum.Enum) else entity,
            entity_id=str(entity_id),
            actor_id=str(actor_id) if actor_id is not None else None,
            description=description,
            old_values=sanitize_for_json(old_values) if old_values is not None else None,
            new_values=sanitize_for_json(new_values) if new_values is not None else None,
            leave_request_id=leave_request_id,
            created_at=now_utc(),
        )
        db.add(audit_log)
        db.commit()
        db.refresh(audit_log)
        return audit_log
    except Exception:
        db.rollback()
        logger.error("Failed to write audit log %s for %s %s", action, entity, entity_id, exc_info=True)
        return None
