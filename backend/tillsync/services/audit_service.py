# Overview: Service-layer operations for the audit trail; append-only event sink.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import AuditEvent
"""
Audit Trail Invariants (authoritative)

- Append-only: no updates/deletes of existing events.
- No domain/business logic in the audit trail itself.
- Events are flushed inside the same DB transaction as the change they
  record; the caller owns the commit.
- occurred_at is business time; created_at is system time (DB default).
"""


@dataclass
class AuditRecord:
    """One audit event as handed to an AuditSink."""
    business_id: int
    action: str
    resource_type: str
    user_id: int | None = None
    resource_id: Any = None
    outcome: str = "SUCCESS"
    reason: str | None = None
    metadata: dict = field(default_factory=dict)
    occurred_at: Optional[datetime] = None


def log_event(record: AuditRecord) -> AuditEvent:
    """
    Append an audit event.

    - No domain logic here.
    - resource_id is stored as text so string device ids and integer row ids share one column.
    """
    ev = AuditEvent(
        business_id=record.business_id,
        user_id=record.user_id,
        action=record.action,
        outcome=record.outcome,
        resource_type=record.resource_type,
        resource_id=str(record.resource_id) if record.resource_id is not None else None,
        reason=record.reason,
        metadata_json=record.metadata or None,
        occurred_at=record.occurred_at,  # if None, db default applies
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev

