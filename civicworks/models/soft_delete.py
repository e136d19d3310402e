"""
Soft-delete support for registry entities (inventory items).

A deleted row keeps its id and its ledger history, so past transactions
still resolve, but new allocations can no longer reach it:

    item.soft_delete()
    InventoryItem.query_active().filter_by(code="BULB-01").first()   # → None

Conditional UPDATE statements use ``InventoryItem.not_deleted()`` in their
WHERE clause so a delete that lands mid-command is seen by the write itself.
"""

from datetime import datetime, timezone

from civicworks.models import db


class SoftDeleteMixin:
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    @classmethod
    def not_deleted(cls):
        """SQL criterion matching live rows only."""
        return cls.deleted_at.is_(None)

    @classmethod
    def query_active(cls):
        return cls.query.filter(cls.not_deleted())

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        if self.deleted_at is None:
            self.deleted_at = datetime.now(timezone.utc)
