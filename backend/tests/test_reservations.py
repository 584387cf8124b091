# Overview: Pytest coverage for advisory stock reservations.

from datetime import timedelta

import pytest

from stockledger.errors import InsufficientStockError, InvalidStateTransitionError, NotFoundError, ValidationError
from stockledger.extensions import db
from stockledger.models import StockReservation
from stockledger.services import ledger_store
from stockledger.services.reservation_service import (
    get_available_to_promise,
    get_reserved_quantity,
    list_active_reservations,
    release_reservation,
    reserve_stock,
)
from stockledger.time_utils import utcnow


class TestReserveStock:

    def test_reserve_does_not_touch_ledger(self, db_session, org_a, outlet_a, product_p, stock):
        entry = stock(outlet_a, product_p, 10)

        result = reserve_stock(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            quantity=4,
            reservation_id="cart-1",
        )

        assert result.remaining_available == 6
        assert result.reservation.status == "ACTIVE"
        db_session.refresh(entry)
        assert entry.quantity == 10
        assert get_reserved_quantity(entry.id) == 4
        assert get_available_to_promise(org_a.id, outlet_a.id, product_p.id) == 6

    def test_generated_key_when_omitted(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 2)
        result = reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=1)
        assert len(result.reservation.reservation_key) == 32

    def test_reserve_more_than_available(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 3)

        with pytest.raises(InsufficientStockError) as exc_info:
            reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=4)

        assert exc_info.value.available == 3
        assert StockReservation.query.count() == 0

    def test_holds_are_advisory(self, db_session, org_a, outlet_a, product_p, stock):
        """Existing holds do not reduce what a new hold is checked against."""
        stock(outlet_a, product_p, 5)
        reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=5)
        second = reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=5)

        assert second.remaining_available == 0
        assert get_available_to_promise(org_a.id, outlet_a.id, product_p.id) == 0

    def test_reserve_without_entry_is_not_found(self, db_session, org_a, outlet_a, product_p):
        with pytest.raises(NotFoundError):
            reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=1)

    def test_duplicate_key_rejected(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)
        reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=1, reservation_id="dup")

        with pytest.raises(ValidationError):
            reserve_stock(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                product_id=product_p.id,
                quantity=1,
                reservation_id="dup",
            )

    def test_expiry_in_past_rejected(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)

        with pytest.raises(ValidationError):
            reserve_stock(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                product_id=product_p.id,
                quantity=1,
                expires_at=utcnow() - timedelta(minutes=1),
            )

    def test_expired_holds_do_not_count(self, db_session, org_a, outlet_a, product_p, stock):
        entry = stock(outlet_a, product_p, 5)
        result = reserve_stock(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            quantity=3,
            expires_at=utcnow() + timedelta(hours=1),
        )
        assert get_reserved_quantity(entry.id) == 3

        later = utcnow() + timedelta(hours=2)
        assert get_reserved_quantity(entry.id, now=later) == 0

        # Age the hold directly; reservations are not ledger history
        result.reservation.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()
        assert list_active_reservations(entry.id) == []


class TestReleaseReservation:

    def test_release_frees_hold(self, db_session, org_a, outlet_a, product_p, stock):
        entry = stock(outlet_a, product_p, 5)
        reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=2, reservation_id="r1")

        released = release_reservation(org_id=org_a.id, reservation_id="r1", actor_user_id=4)

        assert released.status == "RELEASED"
        assert released.released_by_user_id == 4
        assert get_reserved_quantity(entry.id) == 0
        assert ledger_store.get_entry(org_a.id, outlet_a.id, product_p.id).quantity == 5

    def test_release_twice_is_invalid(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)
        reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=2, reservation_id="r2")
        release_reservation(org_id=org_a.id, reservation_id="r2")

        with pytest.raises(InvalidStateTransitionError):
            release_reservation(org_id=org_a.id, reservation_id="r2")

    def test_release_other_org_is_not_found(self, db_session, org_a, org_b, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)
        reserve_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, quantity=2, reservation_id="r3")

        with pytest.raises(NotFoundError):
            release_reservation(org_id=org_b.id, reservation_id="r3")
