# Overview: Movement operations over the stock ledger (adjust, transfer, batch, reconcile) and stock reads.

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func

from ..extensions import db
from ..errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    InvalidTransferError,
    NotFoundError,
    StockLedgerError,
    ValidationError,
)
from ..models import LedgerEntry, MovementLogEntry, Outlet, Product, StockTransfer
from ..models.ledger import (
    CHANGE_ADJUSTMENT,
    CHANGE_TRANSFER_IN,
    CHANGE_TRANSFER_OUT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_REVERSED,
)
from ..time_utils import utcnow
from ..validation import (
    clean_reason,
    coerce_int,
    require_non_negative_int,
    require_non_zero_int,
    require_positive_int,
)
from . import ledger_store
from .concurrency import lock_for_update, run_with_retry
from .movement_log import pair_movements
from .reservation_service import get_reserved_quantity
from .tenant_service import require_outlet_in_org, require_product_in_org
"""
Movement Operation Invariants (authoritative)

Transaction scope:
- Each public mutation is one _op() run by run_with_retry: pre-condition
  checks, ledger writes, log appends, then a single commit.
- Validation and NotFound errors are raised before the first ledger write.
- Any failure rolls back every ledger row and log row the operation touched.

Transfers:
- Both ledger entries are locked in ascending outlet_id order so two
  opposite-direction transfers cannot deadlock.
- TRANSFER_OUT and TRANSFER_IN rows reference the StockTransfer document and
  each other. quantity(from) + quantity(to) is unchanged by a transfer.

Batch adjust:
- Items share one transaction scope but are isolated: every check for an
  item runs before its write, so a rejected item leaves no trace and does
  not abort its siblings (partial success).
"""

logger = logging.getLogger(__name__)

DEFAULT_ADJUST_REASON = "Manual adjustment"
DEFAULT_BATCH_REASON = "Batch adjustment"
DEFAULT_RECONCILE_REASON = "Inventory reconciliation"
DEFAULT_LOW_STOCK_THRESHOLD = 10


@dataclass
class AdjustmentResult:
    entry: LedgerEntry
    movement: MovementLogEntry

    def to_dict(self) -> dict:
        return {"entry": self.entry.to_dict(), "movement": self.movement.to_dict()}


@dataclass
class TransferResult:
    transfer: StockTransfer
    source_entry: LedgerEntry
    destination_entry: LedgerEntry
    source_movement: MovementLogEntry
    destination_movement: MovementLogEntry

    def to_dict(self) -> dict:
        return {
            "transfer": self.transfer.to_dict(),
            "source_entry": self.source_entry.to_dict(),
            "destination_entry": self.destination_entry.to_dict(),
            "source_movement": self.source_movement.to_dict(),
            "destination_movement": self.destination_movement.to_dict(),
        }


@dataclass
class ReconcileResult:
    entry: LedgerEntry
    movement: MovementLogEntry
    discrepancy: int

    def to_dict(self) -> dict:
        return {
            "entry": self.entry.to_dict(),
            "movement": self.movement.to_dict(),
            "discrepancy": self.discrepancy,
        }


@dataclass
class BatchItemResult:
    index: int
    success: bool
    outlet_id: int | None = None
    product_id: int | None = None
    delta: int | None = None
    entry: LedgerEntry | None = None
    movement: MovementLogEntry | None = None
    error: dict | None = None

    def to_dict(self) -> dict:
        data = {
            "index": self.index,
            "success": self.success,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "delta": self.delta,
        }
        if self.success:
            data["entry"] = self.entry.to_dict()
            data["movement"] = self.movement.to_dict()
        else:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    results: list[BatchItemResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "success_count": self.success_count,
            "failure_count": self.failure_count,
        }


def adjust_stock(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    delta,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> AdjustmentResult:
    """
    Apply a signed manual adjustment to the available bucket.

    Args:
        delta: Non-zero integer. Positive creates the entry if absent.
        reason: Free text, defaults to "Manual adjustment".

    Returns:
        AdjustmentResult with the updated entry and its ADJUSTMENT movement.

    Raises:
        ValidationError: delta is zero or not an integer
        NotFoundError: outlet or product outside the organization
        InsufficientStockError: resulting quantity would be negative
    """
    delta = require_non_zero_int("delta", delta)
    reason = clean_reason(reason, default=DEFAULT_ADJUST_REASON)

    def _op():
        require_outlet_in_org(outlet_id, org_id)
        require_product_in_org(product_id, org_id)

        entry, movement = ledger_store.upsert_quantity(
            org_id=org_id,
            outlet_id=outlet_id,
            product_id=product_id,
            delta=delta,
            change_type=CHANGE_ADJUSTMENT,
            actor_user_id=actor_user_id,
            reason=reason,
        )
        db.session.commit()
        logger.info(
            "Adjusted stock org=%s outlet=%s product=%s delta=%s quantity=%s",
            org_id, outlet_id, product_id, delta, entry.quantity,
        )
        return AdjustmentResult(entry=entry, movement=movement)

    return run_with_retry(_op)


def _lock_entries_in_order(org_id: int, product_id: int, outlet_ids) -> dict[int, LedgerEntry | None]:
    locked = {}
    for outlet_id in sorted(set(outlet_ids)):
        locked[outlet_id] = ledger_store.get_entry(org_id, outlet_id, product_id, lock=True)
    return locked


def _move_between_outlets(
    *,
    org_id: int,
    product_id: int,
    source: Outlet,
    destination: Outlet,
    quantity: int,
    transfer: StockTransfer,
    source_reason: str,
    destination_reason: str,
    actor_user_id: int | None,
) -> tuple[LedgerEntry, LedgerEntry, MovementLogEntry, MovementLogEntry]:
    locked = _lock_entries_in_order(org_id, product_id, [source.id, destination.id])
    source_entry = locked[source.id]
    available = source_entry.quantity if source_entry is not None else 0
    if available < quantity:
        raise InsufficientStockError(
            available=available,
            requested=quantity,
            product_id=product_id,
            outlet_id=source.id,
        )

    source_entry, out_log = ledger_store.upsert_quantity(
        org_id=org_id,
        outlet_id=source.id,
        product_id=product_id,
        delta=-quantity,
        change_type=CHANGE_TRANSFER_OUT,
        actor_user_id=actor_user_id,
        reason=source_reason,
        transfer_id=transfer.id,
    )
    destination_entry, in_log = ledger_store.upsert_quantity(
        org_id=org_id,
        outlet_id=destination.id,
        product_id=product_id,
        delta=quantity,
        change_type=CHANGE_TRANSFER_IN,
        actor_user_id=actor_user_id,
        reason=destination_reason,
        transfer_id=transfer.id,
    )
    pair_movements(out_log, in_log)
    return source_entry, destination_entry, out_log, in_log


def transfer_stock(
    *,
    org_id: int,
    from_outlet_id: int,
    to_outlet_id: int,
    product_id: int,
    quantity,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> TransferResult:
    """
    Move stock between two outlets of the same organization, all-or-nothing.

    Writes a StockTransfer document (COMPLETED) and a paired
    TRANSFER_OUT / TRANSFER_IN movement.

    Raises:
        InvalidTransferError: source and destination are the same outlet
        ValidationError: quantity not a positive integer
        NotFoundError: outlet or product outside the organization
        InsufficientStockError: source has no entry or too little stock
    """
    if from_outlet_id == to_outlet_id:
        raise InvalidTransferError(
            "Cannot transfer to the same outlet",
            details={"from_outlet_id": from_outlet_id, "to_outlet_id": to_outlet_id},
        )
    quantity = require_positive_int("quantity", quantity)
    reason = clean_reason(reason)

    def _op():
        source = require_outlet_in_org(from_outlet_id, org_id)
        destination = require_outlet_in_org(to_outlet_id, org_id)
        require_product_in_org(product_id, org_id)

        transfer = StockTransfer(
            org_id=org_id,
            from_outlet_id=source.id,
            to_outlet_id=destination.id,
            product_id=product_id,
            quantity=quantity,
            reason=reason,
            status=TRANSFER_STATUS_COMPLETED,
            created_by_user_id=actor_user_id,
        )
        db.session.add(transfer)
        db.session.flush()

        source_entry, destination_entry, out_log, in_log = _move_between_outlets(
            org_id=org_id,
            product_id=product_id,
            source=source,
            destination=destination,
            quantity=quantity,
            transfer=transfer,
            source_reason=reason or f"Transfer to outlet {destination.name}",
            destination_reason=reason or f"Transfer from outlet {source.name}",
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        logger.info(
            "Transferred stock org=%s product=%s qty=%s from=%s to=%s transfer=%s",
            org_id, product_id, quantity, source.id, destination.id, transfer.id,
        )
        return TransferResult(
            transfer=transfer,
            source_entry=source_entry,
            destination_entry=destination_entry,
            source_movement=out_log,
            destination_movement=in_log,
        )

    return run_with_retry(_op)


def reverse_transfer(
    *,
    org_id: int,
    transfer_id: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> TransferResult:
    """
    Undo a completed transfer by moving the quantity back to its source.

    LIFECYCLE: COMPLETED -> REVERSED (terminal). The transfer document and its
    original movements are kept; the reversal adds a new paired movement.
    """
    reason = clean_reason(reason)

    def _op():
        transfer = lock_for_update(
            db.session.query(StockTransfer).filter_by(id=transfer_id, org_id=org_id)
        ).first()
        if transfer is None:
            raise NotFoundError("Transfer", transfer_id)
        if transfer.status != TRANSFER_STATUS_COMPLETED:
            raise InvalidStateTransitionError("Transfer", transfer.status, TRANSFER_STATUS_REVERSED)

        original_source = require_outlet_in_org(transfer.from_outlet_id, org_id)
        original_destination = require_outlet_in_org(transfer.to_outlet_id, org_id)
        note = reason or f"Reversal of transfer {transfer.id}"

        source_entry, destination_entry, out_log, in_log = _move_between_outlets(
            org_id=org_id,
            product_id=transfer.product_id,
            source=original_destination,
            destination=original_source,
            quantity=transfer.quantity,
            transfer=transfer,
            source_reason=note,
            destination_reason=note,
            actor_user_id=actor_user_id,
        )

        transfer.status = TRANSFER_STATUS_REVERSED
        transfer.reversed_by_user_id = actor_user_id
        transfer.reversed_at = utcnow()
        transfer.reversal_reason = reason
        db.session.commit()
        logger.info("Reversed transfer org=%s transfer=%s", org_id, transfer.id)
        return TransferResult(
            transfer=transfer,
            source_entry=source_entry,
            destination_entry=destination_entry,
            source_movement=out_log,
            destination_movement=in_log,
        )

    return run_with_retry(_op)


def _apply_batch_item(org_id: int, index: int, item, actor_user_id: int | None) -> BatchItemResult:
    if not isinstance(item, dict):
        raise ValidationError("Batch item must be an object")

    outlet_id = coerce_int("outlet_id", item.get("outlet_id"))
    product_id = coerce_int("product_id", item.get("product_id"))
    delta = require_non_zero_int("delta", item.get("delta"))
    reason = clean_reason(item.get("reason"), default=DEFAULT_BATCH_REASON)

    require_outlet_in_org(outlet_id, org_id)
    require_product_in_org(product_id, org_id)

    if delta < 0:
        existing = ledger_store.get_entry(org_id, outlet_id, product_id, lock=True)
        if existing is None:
            raise InsufficientStockError(
                available=0,
                requested=-delta,
                product_id=product_id,
                outlet_id=outlet_id,
                message="Cannot deduct from non-existent inventory",
            )

    entry, movement = ledger_store.upsert_quantity(
        org_id=org_id,
        outlet_id=outlet_id,
        product_id=product_id,
        delta=delta,
        change_type=CHANGE_ADJUSTMENT,
        actor_user_id=actor_user_id,
        reason=reason,
    )
    return BatchItemResult(
        index=index,
        success=True,
        outlet_id=outlet_id,
        product_id=product_id,
        delta=delta,
        entry=entry,
        movement=movement,
    )


def batch_adjust(*, org_id: int, items, actor_user_id: int | None = None) -> BatchResult:
    """
    Apply many adjustments in one transaction with per-item isolation.

    A domain failure on one item (bad input, unknown outlet/product,
    insufficient stock) is recorded on that item's result and the remaining
    items still apply. Concurrency conflicts restart the whole batch.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    def _op():
        result = BatchResult()
        for index, item in enumerate(items):
            try:
                result.results.append(_apply_batch_item(org_id, index, item, actor_user_id))
            except StockLedgerError as exc:
                raw = item if isinstance(item, dict) else {}
                result.results.append(
                    BatchItemResult(
                        index=index,
                        success=False,
                        outlet_id=raw.get("outlet_id"),
                        product_id=raw.get("product_id"),
                        delta=raw.get("delta"),
                        error=exc.to_dict(),
                    )
                )
        db.session.commit()
        logger.info(
            "Batch adjust org=%s succeeded=%s failed=%s",
            org_id, result.success_count, result.failure_count,
        )
        return result

    return run_with_retry(_op)


def reconcile_stock(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    actual_quantity,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> ReconcileResult:
    """Set available quantity to a counted value and log the discrepancy."""
    actual_quantity = require_non_negative_int("actual_quantity", actual_quantity)
    reason = clean_reason(reason, default=DEFAULT_RECONCILE_REASON)

    def _op():
        require_outlet_in_org(outlet_id, org_id)
        require_product_in_org(product_id, org_id)

        entry, movement, discrepancy = ledger_store.set_quantity(
            org_id=org_id,
            outlet_id=outlet_id,
            product_id=product_id,
            actual_quantity=actual_quantity,
            actor_user_id=actor_user_id,
            reason=reason,
        )
        db.session.commit()
        logger.info(
            "Reconciled stock org=%s outlet=%s product=%s actual=%s discrepancy=%s",
            org_id, outlet_id, product_id, actual_quantity, discrepancy,
        )
        return ReconcileResult(entry=entry, movement=movement, discrepancy=discrepancy)

    return run_with_retry(_op)


def get_stock_levels(*, org_id: int, product_id: int, outlet_id: int | None = None) -> dict:
    """Per-outlet quantities for one product plus organization totals."""
    product = require_product_in_org(product_id, org_id)
    q = (
        db.session.query(LedgerEntry, Outlet)
        .join(Outlet, Outlet.id == LedgerEntry.outlet_id)
        .filter(LedgerEntry.org_id == org_id, LedgerEntry.product_id == product.id)
    )
    if outlet_id is not None:
        require_outlet_in_org(outlet_id, org_id)
        q = q.filter(LedgerEntry.outlet_id == outlet_id)

    outlets = []
    for entry, outlet in q.order_by(Outlet.name).all():
        reserved = get_reserved_quantity(entry.id)
        outlets.append({
            "outlet_id": outlet.id,
            "outlet_name": outlet.name,
            "quantity": entry.quantity,
            "damaged_quantity": entry.damaged_quantity,
            "reserved_quantity": reserved,
            "available_to_promise": max(entry.quantity - reserved, 0),
        })

    return {
        "product_id": product.id,
        "sku": product.sku,
        "outlets": outlets,
        "total_quantity": sum(o["quantity"] for o in outlets),
        "total_damaged_quantity": sum(o["damaged_quantity"] for o in outlets),
    }


def list_low_stock(
    *,
    org_id: int,
    threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    outlet_id: int | None = None,
) -> list[dict]:
    """Entries whose available quantity is strictly below ``threshold``."""
    threshold = require_non_negative_int("threshold", threshold)
    q = (
        db.session.query(LedgerEntry, Product, Outlet)
        .join(Product, Product.id == LedgerEntry.product_id)
        .join(Outlet, Outlet.id == LedgerEntry.outlet_id)
        .filter(LedgerEntry.org_id == org_id, LedgerEntry.quantity < threshold)
    )
    if outlet_id is not None:
        q = q.filter(LedgerEntry.outlet_id == outlet_id)

    rows = q.order_by(LedgerEntry.quantity.asc(), LedgerEntry.id.asc()).all()
    return [
        {
            "ledger_entry_id": entry.id,
            "outlet_id": outlet.id,
            "outlet_name": outlet.name,
            "product_id": product.id,
            "sku": product.sku,
            "product_name": product.name,
            "quantity": entry.quantity,
            "threshold": threshold,
        }
        for entry, product, outlet in rows
    ]


def get_inventory_value(*, org_id: int, outlet_id: int | None = None) -> dict:
    """Available quantity valued at each product's current price (cents)."""
    q = (
        db.session.query(
            func.coalesce(func.sum(LedgerEntry.quantity * Product.price_cents), 0),
            func.coalesce(func.sum(LedgerEntry.quantity), 0),
            func.count(LedgerEntry.id),
        )
        .join(Product, Product.id == LedgerEntry.product_id)
        .filter(LedgerEntry.org_id == org_id)
    )
    if outlet_id is not None:
        require_outlet_in_org(outlet_id, org_id)
        q = q.filter(LedgerEntry.outlet_id == outlet_id)

    value_cents, units, entries = q.one()
    return {
        "org_id": org_id,
        "outlet_id": outlet_id,
        "total_value_cents": int(value_cents),
        "total_units": int(units),
        "entry_count": int(entries),
    }
