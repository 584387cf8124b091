# Overview: Append-only change log for ledger movements.

from __future__ import annotations

from ..extensions import db
from ..models import LedgerEntry, MovementLogEntry
from ..models.ledger import CHANGE_TYPES
"""
Change Log Invariants (authoritative)

- Every ledger write appends exactly one MovementLogEntry in the same DB
  transaction; the row and the ledger change commit or roll back together.
- Rows are never updated or deleted (enforced by mapper events), except the
  write-once paired_movement_id used to pair transfer legs.
- change_amount is the signed delta of the available bucket,
  damaged_change_amount the signed delta of the damaged bucket.
"""


def append_movement(
    *,
    entry: LedgerEntry,
    change_type: str,
    quantity_before: int,
    damaged_quantity_before: int,
    actor_user_id: int | None = None,
    reason: str | None = None,
    sale_id: int | None = None,
    transfer_id: int | None = None,
    damage_report_id: int | None = None,
    paired_movement_id: int | None = None,
) -> MovementLogEntry:
    """
    Append one movement row describing the entry's current (post-write) state.

    - No domain logic here.
    - Caller has already applied the change to ``entry``.
    """
    if change_type not in CHANGE_TYPES:
        raise ValueError(f"Unknown movement change type {change_type}")

    log = MovementLogEntry(
        ledger_entry_id=entry.id,
        org_id=entry.org_id,
        outlet_id=entry.outlet_id,
        product_id=entry.product_id,
        change_type=change_type,
        quantity_before=quantity_before,
        quantity_after=entry.quantity,
        change_amount=entry.quantity - quantity_before,
        damaged_quantity_before=damaged_quantity_before,
        damaged_quantity_after=entry.damaged_quantity,
        damaged_change_amount=entry.damaged_quantity - damaged_quantity_before,
        actor_user_id=actor_user_id,
        reason=reason,
        sale_id=sale_id,
        transfer_id=transfer_id,
        damage_report_id=damage_report_id,
        paired_movement_id=paired_movement_id,
    )
    db.session.add(log)
    db.session.flush()  # ensures log.id is assigned without committing
    return log


def pair_movements(out_log: MovementLogEntry, in_log: MovementLogEntry) -> None:
    """Link the two legs of a transfer to each other."""
    if in_log.paired_movement_id is None:
        in_log.paired_movement_id = out_log.id
    if out_log.paired_movement_id is None:
        out_log.paired_movement_id = in_log.id
    db.session.flush()


def list_movements(
    *,
    org_id: int,
    ledger_entry_id: int | None = None,
    outlet_id: int | None = None,
    product_id: int | None = None,
    change_type: str | None = None,
    sale_id: int | None = None,
    transfer_id: int | None = None,
    damage_report_id: int | None = None,
    limit: int = 200,
) -> list[MovementLogEntry]:
    """Newest first. Each filter is an explicit column predicate."""
    q = db.session.query(MovementLogEntry).filter(MovementLogEntry.org_id == org_id)
    if ledger_entry_id is not None:
        q = q.filter(MovementLogEntry.ledger_entry_id == ledger_entry_id)
    if outlet_id is not None:
        q = q.filter(MovementLogEntry.outlet_id == outlet_id)
    if product_id is not None:
        q = q.filter(MovementLogEntry.product_id == product_id)
    if change_type is not None:
        q = q.filter(MovementLogEntry.change_type == change_type)
    if sale_id is not None:
        q = q.filter(MovementLogEntry.sale_id == sale_id)
    if transfer_id is not None:
        q = q.filter(MovementLogEntry.transfer_id == transfer_id)
    if damage_report_id is not None:
        q = q.filter(MovementLogEntry.damage_report_id == damage_report_id)

    return q.order_by(MovementLogEntry.id.desc()).limit(limit).all()


def count_movements_for_entry(ledger_entry_id: int) -> int:
    return db.session.query(MovementLogEntry).filter_by(ledger_entry_id=ledger_entry_id).count()


def latest_movement_for_entry(ledger_entry_id: int) -> MovementLogEntry | None:
    return (
        db.session.query(MovementLogEntry)
        .filter_by(ledger_entry_id=ledger_entry_id)
        .order_by(MovementLogEntry.id.desc())
        .first()
    )
