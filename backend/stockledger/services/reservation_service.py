# Overview: Advisory stock reservations (soft holds with expiry) against ledger entries.

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_

from ..extensions import db
from ..errors import InsufficientStockError, InvalidStateTransitionError, NotFoundError, ValidationError
from ..models import StockReservation
from ..models.ledger import RESERVATION_STATUS_ACTIVE, RESERVATION_STATUS_RELEASED
from ..time_utils import is_expired, normalize_datetime, utcnow
from ..validation import require_positive_int
from . import ledger_store
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import require_outlet_in_org, require_product_in_org

logger = logging.getLogger(__name__)

MAX_RESERVATION_KEY_LENGTH = 64
MAX_NOTES_LENGTH = 255


@dataclass
class ReservationResult:
    reservation: StockReservation
    remaining_available: int

    def to_dict(self) -> dict:
        return {
            "reservation": self.reservation.to_dict(),
            "remaining_available": self.remaining_available,
        }


def _active_reservations_query(ledger_entry_id: int, now: datetime | None = None):
    now = now or utcnow()
    return db.session.query(StockReservation).filter(
        StockReservation.ledger_entry_id == ledger_entry_id,
        StockReservation.status == RESERVATION_STATUS_ACTIVE,
        or_(StockReservation.expires_at.is_(None), StockReservation.expires_at > now),
    )


def get_reserved_quantity(ledger_entry_id: int, now: datetime | None = None) -> int:
    """Sum of ACTIVE, unexpired holds. Expired holds count as void."""
    total = (
        _active_reservations_query(ledger_entry_id, now)
        .with_entities(func.coalesce(func.sum(StockReservation.quantity), 0))
        .scalar()
    )
    return int(total or 0)


def get_available_to_promise(org_id: int, outlet_id: int, product_id: int) -> int:
    """
    Informational only: quantity minus live holds, floored at 0.

    Nothing in the engine blocks a decrement on this number.
    """
    entry = ledger_store.get_entry(org_id, outlet_id, product_id)
    if entry is None:
        return 0
    return max(entry.quantity - get_reserved_quantity(entry.id), 0)


def list_active_reservations(ledger_entry_id: int) -> list[StockReservation]:
    return _active_reservations_query(ledger_entry_id).order_by(StockReservation.id).all()


def reserve_stock(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    quantity,
    reservation_id: str | None = None,
    expires_at: datetime | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> ReservationResult:
    """
    Place an advisory hold on available stock.

    The check is against the ledger's available quantity only; existing holds
    are not subtracted and the ledger quantity is never changed.

    Args:
        reservation_id: Caller key, unique per organization. Generated if omitted.
        expires_at: Optional expiry; must be in the future.

    Returns:
        ReservationResult with remaining_available = quantity - requested.

    Raises:
        NotFoundError: outlet/product outside the org, or no ledger entry
        InsufficientStockError: available quantity below the request
        ValidationError: bad quantity, key, or an expiry in the past
    """
    quantity = require_positive_int("quantity", quantity)
    key = (reservation_id or "").strip() or uuid.uuid4().hex
    if len(key) > MAX_RESERVATION_KEY_LENGTH:
        raise ValidationError(f"reservation_id exceeds max length {MAX_RESERVATION_KEY_LENGTH}")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes exceeds max length {MAX_NOTES_LENGTH}")
    expires_at = normalize_datetime(expires_at)
    if is_expired(expires_at):
        raise ValidationError("expires_at must be in the future")

    def _op():
        require_outlet_in_org(outlet_id, org_id)
        require_product_in_org(product_id, org_id)

        entry = ledger_store.get_entry(org_id, outlet_id, product_id, lock=True)
        if entry is None:
            raise NotFoundError("Inventory", f"outlet={outlet_id} product={product_id}")
        if entry.quantity < quantity:
            raise InsufficientStockError(
                available=entry.quantity,
                requested=quantity,
                product_id=product_id,
                outlet_id=outlet_id,
            )

        duplicate = db.session.query(StockReservation.id).filter_by(org_id=org_id, reservation_key=key).first()
        if duplicate is not None:
            raise ValidationError(f"Reservation {key} already exists", details={"reservation_id": key})

        reservation = StockReservation(
            org_id=org_id,
            ledger_entry_id=entry.id,
            outlet_id=outlet_id,
            product_id=product_id,
            reservation_key=key,
            quantity=quantity,
            status=RESERVATION_STATUS_ACTIVE,
            expires_at=expires_at,
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        db.session.add(reservation)
        db.session.commit()
        logger.info(
            "Reserved stock org=%s outlet=%s product=%s qty=%s key=%s",
            org_id, outlet_id, product_id, quantity, key,
        )
        return ReservationResult(reservation=reservation, remaining_available=entry.quantity - quantity)

    return run_with_retry(_op)


def release_reservation(*, org_id: int, reservation_id: str, actor_user_id: int | None = None) -> StockReservation:
    """ACTIVE -> RELEASED. Releasing twice is an invalid transition."""

    def _op():
        reservation = lock_for_update(
            db.session.query(StockReservation).filter_by(org_id=org_id, reservation_key=reservation_id)
        ).first()
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        if reservation.status != RESERVATION_STATUS_ACTIVE:
            raise InvalidStateTransitionError("Reservation", reservation.status, RESERVATION_STATUS_RELEASED)

        reservation.status = RESERVATION_STATUS_RELEASED
        reservation.released_by_user_id = actor_user_id
        reservation.released_at = utcnow()
        db.session.commit()
        return reservation

    return run_with_retry(_op)
