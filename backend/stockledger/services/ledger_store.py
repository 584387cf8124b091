# Overview: Stock ledger store; the only code that writes LedgerEntry counters.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientStockError, ValidationError
from ..models import LedgerEntry, MovementLogEntry
from ..models.ledger import CHANGE_RECONCILIATION
from .concurrency import lock_for_update, RetryableConflict
from .movement_log import append_movement, count_movements_for_entry
"""
Stock Ledger Store Invariants (authoritative)

Keying:
- One LedgerEntry per (org_id, outlet_id, product_id), resolved through the
  unique composite key only.

Counters:
- quantity (available) >= 0 and damaged_quantity >= 0 after every write.
- A write that would push either counter below zero raises
  InsufficientStockError before anything is changed.

Atomicity:
- Every write applies the counter change and appends its MovementLogEntry
  in the same session flush. Nothing here commits: the calling operation
  owns the single commit point (see concurrency.run_with_retry).

Lifecycle:
- Entries are created lazily on the first increase (adjustment, transfer-in,
  reconciliation) and are only deleted when both counters are 0 and no
  movement references them.
"""

BUCKET_AVAILABLE = "AVAILABLE"
BUCKET_DAMAGED = "DAMAGED"


def get_entry(org_id: int, outlet_id: int, product_id: int, *, lock: bool = False) -> LedgerEntry | None:
    query = db.session.query(LedgerEntry).filter_by(
        org_id=org_id,
        outlet_id=outlet_id,
        product_id=product_id,
    )
    if lock:
        query = lock_for_update(query)
    return query.one_or_none()


def get_or_create_entry(org_id: int, outlet_id: int, product_id: int) -> LedgerEntry:
    """
    Return the locked entry for the key, inserting an empty one if absent.

    If a concurrent transaction inserts the same key first, the unique
    constraint fires and RetryableConflict restarts the caller's operation,
    which will then find (and lock) the committed row.
    """
    entry = get_entry(org_id, outlet_id, product_id, lock=True)
    if entry is not None:
        return entry

    entry = LedgerEntry(
        org_id=org_id,
        outlet_id=outlet_id,
        product_id=product_id,
        quantity=0,
        damaged_quantity=0,
    )
    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise RetryableConflict(
            f"ledger entry ({org_id}, {outlet_id}, {product_id}) created concurrently"
        ) from exc
    return entry


def apply_change(
    entry: LedgerEntry,
    *,
    change_type: str,
    quantity_delta: int = 0,
    damaged_delta: int = 0,
    actor_user_id: int | None = None,
    reason: str | None = None,
    sale_id: int | None = None,
    transfer_id: int | None = None,
    damage_report_id: int | None = None,
) -> MovementLogEntry:
    """
    Apply signed deltas to both buckets of an already-locked entry and log it.

    Both non-negativity checks run before either counter is touched.
    """
    if entry.quantity + quantity_delta < 0:
        raise InsufficientStockError(
            available=entry.quantity,
            requested=-quantity_delta,
            product_id=entry.product_id,
            outlet_id=entry.outlet_id,
            bucket=BUCKET_AVAILABLE,
        )
    if entry.damaged_quantity + damaged_delta < 0:
        raise InsufficientStockError(
            available=entry.damaged_quantity,
            requested=-damaged_delta,
            product_id=entry.product_id,
            outlet_id=entry.outlet_id,
            bucket=BUCKET_DAMAGED,
            message=(
                f"Insufficient damaged stock: available {entry.damaged_quantity}, "
                f"requested {-damaged_delta}"
            ),
        )

    quantity_before = entry.quantity
    damaged_before = entry.damaged_quantity

    entry.quantity = quantity_before + quantity_delta
    entry.damaged_quantity = damaged_before + damaged_delta
    db.session.flush()

    return append_movement(
        entry=entry,
        change_type=change_type,
        quantity_before=quantity_before,
        damaged_quantity_before=damaged_before,
        actor_user_id=actor_user_id,
        reason=reason,
        sale_id=sale_id,
        transfer_id=transfer_id,
        damage_report_id=damage_report_id,
    )


def _entry_for_delta(org_id: int, outlet_id: int, product_id: int, delta: int, bucket: str) -> LedgerEntry:
    if delta > 0:
        return get_or_create_entry(org_id, outlet_id, product_id)

    entry = get_entry(org_id, outlet_id, product_id, lock=True)
    if entry is None:
        raise InsufficientStockError(
            available=0,
            requested=-delta,
            product_id=product_id,
            outlet_id=outlet_id,
            bucket=bucket,
        )
    return entry


def upsert_quantity(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    delta: int,
    change_type: str,
    **log_fields,
) -> tuple[LedgerEntry, MovementLogEntry]:
    """
    Apply ``delta`` to the available bucket.

    Creates the entry only for a positive delta; a decrement against a
    missing entry is an InsufficientStockError with available=0.
    """
    if delta == 0:
        raise ValidationError("delta must be non-zero")

    entry = _entry_for_delta(org_id, outlet_id, product_id, delta, BUCKET_AVAILABLE)
    log = apply_change(entry, change_type=change_type, quantity_delta=delta, **log_fields)
    return entry, log


def upsert_damaged(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    delta: int,
    change_type: str,
    **log_fields,
) -> tuple[LedgerEntry, MovementLogEntry]:
    """Apply ``delta`` to the damaged bucket only (available is untouched)."""
    if delta == 0:
        raise ValidationError("delta must be non-zero")

    entry = _entry_for_delta(org_id, outlet_id, product_id, delta, BUCKET_DAMAGED)
    log = apply_change(entry, change_type=change_type, damaged_delta=delta, **log_fields)
    return entry, log


def move_between_buckets(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    quantity: int,
    to_damaged: bool,
    change_type: str,
    **log_fields,
) -> tuple[LedgerEntry, MovementLogEntry]:
    """
    Move ``quantity`` units available -> damaged (to_damaged=True) or back.

    quantity + damaged_quantity is unchanged by this write.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be positive")

    source_bucket = BUCKET_AVAILABLE if to_damaged else BUCKET_DAMAGED
    entry = _entry_for_delta(org_id, outlet_id, product_id, -quantity, source_bucket)
    sign = 1 if to_damaged else -1
    log = apply_change(
        entry,
        change_type=change_type,
        quantity_delta=-sign * quantity,
        damaged_delta=sign * quantity,
        **log_fields,
    )
    return entry, log


def set_quantity(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    actual_quantity: int,
    change_type: str = CHANGE_RECONCILIATION,
    **log_fields,
) -> tuple[LedgerEntry, MovementLogEntry, int]:
    """
    Overwrite the available bucket with ``actual_quantity``.

    Returns (entry, log, discrepancy) with discrepancy = actual - before.
    The entry is created if absent (quantity before is then 0).
    """
    if actual_quantity < 0:
        raise ValidationError("actual_quantity cannot be negative")

    entry = get_or_create_entry(org_id, outlet_id, product_id)
    discrepancy = actual_quantity - entry.quantity
    log = apply_change(entry, change_type=change_type, quantity_delta=discrepancy, **log_fields)
    return entry, log, discrepancy


def delete_entry_if_empty(org_id: int, outlet_id: int, product_id: int) -> bool:
    """
    Delete an entry whose counters are both 0 and which no movement references.

    Returns True if a row was deleted. Caller commits.
    """
    entry = get_entry(org_id, outlet_id, product_id, lock=True)
    if entry is None:
        return False
    if entry.quantity != 0 or entry.damaged_quantity != 0:
        return False
    if count_movements_for_entry(entry.id):
        return False
    if entry.reservations.count():
        return False

    db.session.delete(entry)
    db.session.flush()
    return True
