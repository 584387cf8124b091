from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from stockledger.time_utils import to_utc_z


# Movement change types
CHANGE_ADJUSTMENT = "ADJUSTMENT"
CHANGE_TRANSFER_IN = "TRANSFER_IN"
CHANGE_TRANSFER_OUT = "TRANSFER_OUT"
CHANGE_RECONCILIATION = "RECONCILIATION"
CHANGE_DAMAGE_OUT = "DAMAGE_OUT"
CHANGE_DAMAGE_RESTORE = "DAMAGE_RESTORE"
CHANGE_SALE_DECREMENT = "SALE_DECREMENT"
CHANGE_SALE_RESTORE = "SALE_RESTORE"

CHANGE_TYPES = frozenset({
    CHANGE_ADJUSTMENT,
    CHANGE_TRANSFER_IN,
    CHANGE_TRANSFER_OUT,
    CHANGE_RECONCILIATION,
    CHANGE_DAMAGE_OUT,
    CHANGE_DAMAGE_RESTORE,
    CHANGE_SALE_DECREMENT,
    CHANGE_SALE_RESTORE,
})

TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUS_REVERSED = "REVERSED"

RESERVATION_STATUS_ACTIVE = "ACTIVE"
RESERVATION_STATUS_RELEASED = "RELEASED"


class LedgerEntry(db.Model):
    """
    Quantity record for one (organization, outlet, product) triple.

    INVARIANTS:
    - Exactly one row per (org_id, outlet_id, product_id); lookups always go
      through this composite key, never a scan.
    - quantity (available) and damaged_quantity are never negative. The
      service layer rejects violations with InsufficientStockError; the
      check constraints are the last line.
    - Rows are only mutated through services.ledger_store, which appends a
      MovementLogEntry in the same transaction.

    version_id gives optimistic locking: a concurrent writer that read a
    stale row fails its UPDATE with StaleDataError and is retried.
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("org_id", "outlet_id", "product_id", name="uq_ledger_org_outlet_product"),
        db.CheckConstraint("quantity >= 0", name="ck_ledger_quantity_non_negative"),
        db.CheckConstraint("damaged_quantity >= 0", name="ck_ledger_damaged_non_negative"),
        db.Index("ix_ledger_org_product", "org_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    damaged_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    outlet = db.relationship("Outlet")
    product = db.relationship("Product")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} outlet_id={self.outlet_id} product_id={self.product_id} "
            f"quantity={self.quantity} damaged={self.damaged_quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "damaged_quantity": self.damaged_quantity,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MovementLogEntry(db.Model):
    """
    Append-only change log row: one per ledger write.

    quantity_* columns describe the available bucket and damaged_* columns
    the damaged bucket, both before and after the write, so every row is
    self-describing for audit and reconciliation.

    Source document references:
    - sale_id / transfer_id are foreign keys (those documents are never deleted
      once they have movements).
    - damage_report_id is a plain identifier: a report may be deleted while
      REPORTED/INSPECTED, and its DAMAGE_OUT/DAMAGE_RESTORE rows must outlive it.

    paired_movement_id links TRANSFER_OUT and TRANSFER_IN rows to each other.
    It is the only column that may be written after insert, and only once.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_entry_created", "ledger_entry_id", "created_at"),
        db.Index("ix_movements_org_outlet_product", "org_id", "outlet_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=False, index=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    change_type = db.Column(db.String(32), nullable=False, index=True)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    change_amount = db.Column(db.Integer, nullable=False)

    damaged_quantity_before = db.Column(db.Integer, nullable=False)
    damaged_quantity_after = db.Column(db.Integer, nullable=False)
    damaged_change_amount = db.Column(db.Integer, nullable=False, default=0)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=True, index=True)
    damage_report_id = db.Column(db.Integer, nullable=True, index=True)
    paired_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    ledger_entry = db.relationship("LedgerEntry", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ledger_entry_id": self.ledger_entry_id,
            "org_id": self.org_id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "change_type": self.change_type,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "change_amount": self.change_amount,
            "damaged_quantity_before": self.damaged_quantity_before,
            "damaged_quantity_after": self.damaged_quantity_after,
            "damaged_change_amount": self.damaged_change_amount,
            "actor_user_id": self.actor_user_id,
            "reason": self.reason,
            "sale_id": self.sale_id,
            "transfer_id": self.transfer_id,
            "damage_report_id": self.damage_report_id,
            "paired_movement_id": self.paired_movement_id,
            "created_at": to_utc_z(self.created_at),
        }


class MovementLogImmutableError(RuntimeError):
    """Raised when code tries to rewrite or delete a movement log row."""


@event.listens_for(MovementLogEntry, "before_update")
def _guard_movement_update(mapper, connection, target):
    state = inspect(target)
    for attr in state.attrs:
        history = attr.history
        if not history.has_changes():
            continue
        # Write-once pairing: only a null paired_movement_id may be filled in
        if attr.key == "paired_movement_id" and all(v is None for v in history.deleted):
            continue
        raise MovementLogImmutableError(f"stock_movements.{attr.key} is immutable")


@event.listens_for(MovementLogEntry, "before_delete")
def _guard_movement_delete(mapper, connection, target):
    raise MovementLogImmutableError("stock_movements rows cannot be deleted")


class StockTransfer(db.Model):
    """
    Inter-outlet transfer document.

    A transfer is applied atomically at creation (status COMPLETED). It is
    never deleted; reverse_transfer() writes the inverse movements and marks
    it REVERSED.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.Index("ix_transfers_org_created", "org_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    from_outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    to_outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_COMPLETED, index=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reversed_by_user_id = db.Column(db.Integer, nullable=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "from_outlet_id": self.from_outlet_id,
            "to_outlet_id": self.to_outlet_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "reversed_by_user_id": self.reversed_by_user_id,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversal_reason": self.reversal_reason,
        }


class StockReservation(db.Model):
    """
    Advisory, time-boxed hold against a ledger entry.

    A reservation never changes LedgerEntry.quantity and nothing blocks on
    it. Once expires_at has passed it counts as void for every stock
    decision, even if its status still reads ACTIVE (expired rows are not
    purged).
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "reservation_key", name="uq_reservations_org_key"),
        db.Index("ix_reservations_entry_status", "ledger_entry_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=False)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    # Caller-supplied (or generated) reservation identifier, unique per org
    reservation_key = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RESERVATION_STATUS_ACTIVE, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    released_by_user_id = db.Column(db.Integer, nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    ledger_entry = db.relationship("LedgerEntry", backref=db.backref("reservations", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reservation_id": self.reservation_key,
            "org_id": self.org_id,
            "ledger_entry_id": self.ledger_entry_id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at) if self.expires_at else None,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "released_by_user_id": self.released_by_user_id,
            "released_at": to_utc_z(self.released_at) if self.released_at else None,
        }
