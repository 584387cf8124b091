"""
Sales Service - document-first sale lifecycle over the stock ledger

WHY: A sale is a document first. DRAFT carts have no ledger effect; stock
moves only on the COMPLETED transition, and comes back on VOIDED/REFUNDED.

LIFECYCLE:
    DRAFT -> COMPLETED -> VOIDED
                       -> REFUNDED

Every transition that touches the ledger writes one SALE_DECREMENT or
SALE_RESTORE movement per line, referencing the sale, inside the same
transaction as the status change. Completion is all-or-nothing: every
product's availability is checked before the first decrement.
"""
from __future__ import annotations

import logging

from ..extensions import db
from ..errors import InsufficientStockError, InvalidStateTransitionError, NotFoundError, ValidationError
from ..models import Outlet, Sale, SaleLine
from ..models.ledger import CHANGE_SALE_DECREMENT, CHANGE_SALE_RESTORE
from ..models.sales import (
    SALE_STATUS_COMPLETED,
    SALE_STATUS_DRAFT,
    SALE_STATUS_REFUNDED,
    SALE_STATUS_VOIDED,
)
from ..time_utils import utcnow
from ..validation import clean_reason, coerce_int, require_cents, require_positive_int
from . import ledger_store
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .tenant_service import require_outlet_in_org, require_product_in_org

logger = logging.getLogger(__name__)

SALE_TRANSITIONS = {
    SALE_STATUS_DRAFT: frozenset({SALE_STATUS_COMPLETED}),
    SALE_STATUS_COMPLETED: frozenset({SALE_STATUS_VOIDED, SALE_STATUS_REFUNDED}),
    SALE_STATUS_VOIDED: frozenset(),
    SALE_STATUS_REFUNDED: frozenset(),
}

CREATABLE_STATUSES = (SALE_STATUS_DRAFT, SALE_STATUS_COMPLETED)


def _require_transition(sale: Sale, target: str) -> None:
    if target not in SALE_TRANSITIONS.get(sale.status, frozenset()):
        raise InvalidStateTransitionError("Sale", sale.status, target)


def _require_draft(sale: Sale) -> None:
    if sale.status != SALE_STATUS_DRAFT:
        raise ValidationError(
            f"Lines can only be changed on DRAFT sales (sale is {sale.status})",
            details={"sale_id": sale.id, "status": sale.status},
        )


def _clean_line_input(raw, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"lines[{index}] must be an object")
    unknown = set(raw) - {"product_id", "quantity", "unit_price_cents", "discount_cents"}
    if unknown:
        raise ValidationError(f"Field not allowed in lines[{index}]: {sorted(unknown)[0]}")
    return {
        "product_id": coerce_int("product_id", raw.get("product_id")),
        "quantity": require_positive_int("quantity", raw.get("quantity")),
        "unit_price_cents": require_cents("unit_price_cents", raw.get("unit_price_cents"), default=None),
        "discount_cents": require_cents("discount_cents", raw.get("discount_cents")),
    }


def _build_line(sale: Sale, data: dict) -> SaleLine:
    product = require_product_in_org(data["product_id"], sale.org_id, require_active=True)
    unit_price = data["unit_price_cents"]
    if unit_price is None:
        unit_price = product.price_cents

    gross = unit_price * data["quantity"]
    discount = data["discount_cents"]
    if discount > gross:
        raise ValidationError(
            "Line discount cannot exceed the line amount",
            details={"product_id": product.id, "discount_cents": discount, "line_amount_cents": gross},
        )

    return SaleLine(
        product_id=product.id,
        quantity=data["quantity"],
        unit_price_cents=unit_price,
        discount_cents=discount,
        line_total_cents=gross - discount,
    )


def _recalculate_totals(sale: Sale, outlet: Outlet) -> None:
    """
    subtotal = sum(qty * unit_price); discount = line discounts + order discount;
    tax = (subtotal - discount) * tax_rate_bps / 10000, half-up.
    """
    subtotal = sum(line.quantity * line.unit_price_cents for line in sale.lines)
    line_discounts = sum(line.discount_cents for line in sale.lines)
    discount = line_discounts + (sale.order_discount_cents or 0)
    taxable = subtotal - discount
    if taxable < 0:
        raise ValidationError(
            "Discount cannot exceed the sale subtotal",
            details={"subtotal_cents": subtotal, "discount_cents": discount},
        )

    tax = (taxable * (outlet.tax_rate_bps or 0) + 5000) // 10000

    sale.subtotal_cents = subtotal
    sale.discount_cents = discount
    sale.tax_cents = tax
    sale.total_cents = taxable + tax


def _lock_sale(org_id: int, sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id, org_id=org_id)).first()
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale


def _complete_locked(sale: Sale, actor_user_id: int | None) -> None:
    _require_transition(sale, SALE_STATUS_COMPLETED)
    if not sale.lines:
        raise ValidationError("Cannot complete a sale with no lines", details={"sale_id": sale.id})

    product_totals: dict[int, int] = {}
    for line in sale.lines:
        product_totals[line.product_id] = product_totals.get(line.product_id, 0) + line.quantity

    # Lock every touched entry (in product order) before checking any of them
    insufficient = []
    for product_id in sorted(product_totals):
        entry = ledger_store.get_entry(sale.org_id, sale.outlet_id, product_id, lock=True)
        available = entry.quantity if entry is not None else 0
        if available < product_totals[product_id]:
            insufficient.append({
                "product_id": product_id,
                "available": available,
                "requested": product_totals[product_id],
            })

    if insufficient:
        first = insufficient[0]
        exc = InsufficientStockError(
            available=first["available"],
            requested=first["requested"],
            product_id=first["product_id"],
            outlet_id=sale.outlet_id,
        )
        exc.details["items"] = insufficient
        raise exc

    for line in sale.lines:
        ledger_store.upsert_quantity(
            org_id=sale.org_id,
            outlet_id=sale.outlet_id,
            product_id=line.product_id,
            delta=-line.quantity,
            change_type=CHANGE_SALE_DECREMENT,
            actor_user_id=actor_user_id,
            reason=f"Sale {sale.document_number}",
            sale_id=sale.id,
        )

    sale.status = SALE_STATUS_COMPLETED
    sale.completed_by_user_id = actor_user_id
    sale.completed_at = utcnow()


def _restore_locked(sale: Sale, target: str, actor_user_id: int | None, reason: str | None) -> None:
    _require_transition(sale, target)
    label = "Void" if target == SALE_STATUS_VOIDED else "Refund"

    for line in sale.lines:
        ledger_store.upsert_quantity(
            org_id=sale.org_id,
            outlet_id=sale.outlet_id,
            product_id=line.product_id,
            delta=line.quantity,
            change_type=CHANGE_SALE_RESTORE,
            actor_user_id=actor_user_id,
            reason=reason or f"{label} sale {sale.document_number}",
            sale_id=sale.id,
        )

    sale.status = target
    now = utcnow()
    if target == SALE_STATUS_VOIDED:
        sale.voided_by_user_id = actor_user_id
        sale.voided_at = now
        sale.void_reason = reason
    else:
        sale.refunded_by_user_id = actor_user_id
        sale.refunded_at = now
        sale.refund_reason = reason


def create_sale(
    *,
    org_id: int,
    outlet_id: int,
    lines=None,
    status: str = SALE_STATUS_DRAFT,
    customer_id: int | None = None,
    discount_cents=0,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Create a sale document, optionally completing it in the same transaction.

    Args:
        lines: list of {product_id, quantity, unit_price_cents?, discount_cents?};
            unit price defaults to the product price.
        status: DRAFT (no ledger effect) or COMPLETED (decrements stock).
        discount_cents: order-level discount on top of line discounts.

    Raises:
        ValidationError: bad status/lines/discount, or COMPLETED with no lines
        NotFoundError: outlet or a product outside the organization
        InsufficientStockError: COMPLETED and any product short; nothing is saved
    """
    status = str(status or SALE_STATUS_DRAFT).strip().upper()
    if status not in CREATABLE_STATUSES:
        raise ValidationError(
            f"Invalid initial sale status: {status}",
            details={"allowed": list(CREATABLE_STATUSES)},
        )
    if lines is None:
        lines = []
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")
    line_inputs = [_clean_line_input(raw, i) for i, raw in enumerate(lines)]
    order_discount = require_cents("discount_cents", discount_cents)
    if customer_id is not None:
        customer_id = coerce_int("customer_id", customer_id)

    def _op():
        outlet = require_outlet_in_org(outlet_id, org_id, require_active=True)

        sale = Sale(
            org_id=org_id,
            outlet_id=outlet.id,
            customer_id=customer_id,
            document_number=next_document_number(outlet_id=outlet.id, document_type="SALE", prefix="S"),
            status=SALE_STATUS_DRAFT,
            order_discount_cents=order_discount,
            created_by_user_id=actor_user_id,
        )
        for data in line_inputs:
            sale.lines.append(_build_line(sale, data))
        _recalculate_totals(sale, outlet)

        db.session.add(sale)
        db.session.flush()

        if status == SALE_STATUS_COMPLETED:
            _complete_locked(sale, actor_user_id)

        db.session.commit()
        logger.info(
            "Created sale org=%s outlet=%s sale=%s status=%s total_cents=%s",
            org_id, outlet.id, sale.id, sale.status, sale.total_cents,
        )
        return sale

    return run_with_retry(_op)


def add_line(
    *,
    org_id: int,
    sale_id: int,
    product_id,
    quantity,
    unit_price_cents=None,
    discount_cents=0,
) -> SaleLine:
    """Add line item to a DRAFT sale and refresh totals."""
    data = _clean_line_input(
        {
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "discount_cents": discount_cents,
        },
        0,
    )

    def _op():
        sale = _lock_sale(org_id, sale_id)
        _require_draft(sale)

        line = _build_line(sale, data)
        sale.lines.append(line)
        _recalculate_totals(sale, sale.outlet)
        db.session.commit()
        return line

    return run_with_retry(_op)


def remove_line(*, org_id: int, sale_id: int, line_id: int) -> Sale:
    """Remove a line from a DRAFT sale and refresh totals."""

    def _op():
        sale = _lock_sale(org_id, sale_id)
        _require_draft(sale)

        line = next((candidate for candidate in sale.lines if candidate.id == line_id), None)
        if line is None:
            raise NotFoundError("Sale line", line_id)

        sale.lines.remove(line)
        _recalculate_totals(sale, sale.outlet)
        db.session.commit()
        return sale

    return run_with_retry(_op)


def complete_sale(*, org_id: int, sale_id: int, actor_user_id: int | None = None) -> Sale:
    """DRAFT -> COMPLETED. Decrements every line or nothing."""

    def _op():
        sale = _lock_sale(org_id, sale_id)
        _complete_locked(sale, actor_user_id)
        db.session.commit()
        logger.info("Completed sale org=%s sale=%s", org_id, sale.id)
        return sale

    return run_with_retry(_op)


def void_sale(
    *,
    org_id: int,
    sale_id: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Sale:
    """COMPLETED -> VOIDED. Restores every line's quantity to the outlet."""
    reason = clean_reason(reason)

    def _op():
        sale = _lock_sale(org_id, sale_id)
        _restore_locked(sale, SALE_STATUS_VOIDED, actor_user_id, reason)
        db.session.commit()
        logger.info("Voided sale org=%s sale=%s", org_id, sale.id)
        return sale

    return run_with_retry(_op)


def refund_sale(
    *,
    org_id: int,
    sale_id: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Sale:
    """COMPLETED -> REFUNDED. Whole-sale return; restores every line."""
    reason = clean_reason(reason)

    def _op():
        sale = _lock_sale(org_id, sale_id)
        _restore_locked(sale, SALE_STATUS_REFUNDED, actor_user_id, reason)
        db.session.commit()
        logger.info("Refunded sale org=%s sale=%s", org_id, sale.id)
        return sale

    return run_with_retry(_op)


def delete_draft_sale(*, org_id: int, sale_id: int) -> None:
    """Hard-delete a DRAFT sale and its lines. Anything else is kept forever."""

    def _op():
        sale = _lock_sale(org_id, sale_id)
        if sale.status != SALE_STATUS_DRAFT:
            raise InvalidStateTransitionError("Sale", sale.status, "DELETED")
        db.session.delete(sale)
        db.session.commit()

    run_with_retry(_op)


def get_sale(*, org_id: int, sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id, org_id=org_id).first()
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale
