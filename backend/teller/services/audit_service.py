# Overview: Service-layer operations for the audit trail; append-only writes and reads.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEntry
from ..time_utils import utcnow

"""
Audit trail invariants

- Append-only: entries are never updated or deleted (ORM listeners enforce it).
- Entries for successful changes are written in the same unit of work as the
  change they record and become visible only when that unit commits.
- Entries for failed operations are written with commit=True after the failed
  work was rolled back, so the failure itself is never lost.
"""

ACTION_CREATED = "CREATED"
ACTION_POSTED = "POSTED"
ACTION_COMPLETED = "COMPLETED"
ACTION_FAILED = "FAILED"
ACTION_CANCELLED = "CANCELLED"
ACTION_ROLLBACK = "ROLLBACK"
ACTION_ROLLBACK_FAILED = "ROLLBACK_FAILED"
ACTION_RETRY_ATTEMPT = "RETRY_ATTEMPT"
ACTION_RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
ACTION_SNAPSHOT_RESTORED = "SNAPSHOT_RESTORED"


def append_audit_entry(
    *,
    action: str,
    transaction_id: int | None = None,
    entity_type: str = "transaction",
    entity_id: int | None = None,
    before_status: str | None = None,
    after_status: str | None = None,
    reason_code: str | None = None,
    actor_id: str | None = None,
    details: dict | None = None,
    occurred_at: Optional[datetime] = None,
    commit: bool = False,
) -> AuditEntry:
    entry = AuditEntry(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id if entity_id is not None else transaction_id,
        transaction_id=transaction_id,
        before_status=before_status,
        after_status=after_status,
        reason_code=reason_code,
        actor_id=actor_id,
        details=details,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return entry


def list_audit_entries(
    *,
    transaction_id: int | None = None,
    actions: list[str] | None = None,
    limit: int = 200,
) -> list[AuditEntry]:
    query = db.session.query(AuditEntry)
    if transaction_id is not None:
        query = query.filter(AuditEntry.transaction_id == transaction_id)
    if actions:
        query = query.filter(AuditEntry.action.in_(actions))
    return query.order_by(AuditEntry.occurred_at.asc(), AuditEntry.id.asc()).limit(limit).all()
