from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .cash import DenominationEntry


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to update or delete an append-only row."""


class AuditEntry(db.Model):
    """
    Append-only audit trail of lifecycle events.

    WHY: Rollbacks, retries and status changes must remain reconstructible.
    Entries are written in the same unit of work as the change they record
    (except failed-operation entries, which are written in their own unit
    after the failing work was rolled back).

    IMMUTABLE: update/delete attempts through the ORM raise ImmutableRecordError.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.Index("ix_audit_entries_txn_action", "transaction_id", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # CREATED, POSTED, COMPLETED, FAILED, CANCELLED, ROLLBACK, ROLLBACK_FAILED,
    # RETRY_ATTEMPT, RETRY_EXHAUSTED, SNAPSHOT_RESTORED
    action = db.Column(db.String(32), nullable=False, index=True)

    entity_type = db.Column(db.String(32), nullable=False, default="transaction")
    entity_id = db.Column(db.Integer, nullable=True)
    transaction_id = db.Column(db.Integer, nullable=True, index=True)

    before_status = db.Column(db.String(16), nullable=True)
    after_status = db.Column(db.String(16), nullable=True)
    reason_code = db.Column(db.String(64), nullable=True)
    actor_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    details = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "transaction_id": self.transaction_id,
            "before_status": self.before_status,
            "after_status": self.after_status,
            "reason_code": self.reason_code,
            "actor_id": self.actor_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "details": self.details,
        }


# =============================================================================
# IMMUTABILITY LISTENERS
# =============================================================================

def _block_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} is append-only and cannot be updated"
    )


def _block_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} is append-only and cannot be deleted"
    )


for _model in (AuditEntry, DenominationEntry):
    event.listen(_model, "before_update", _block_update)
    event.listen(_model, "before_delete", _block_delete)
