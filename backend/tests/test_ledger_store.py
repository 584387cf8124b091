# Overview: Pytest coverage for the stock ledger store primitives.

import pytest

from stockledger.errors import InsufficientStockError, ValidationError
from stockledger.models import LedgerEntry, MovementLogEntry
from stockledger.models.ledger import CHANGE_ADJUSTMENT, CHANGE_DAMAGE_OUT, CHANGE_DAMAGE_RESTORE
from stockledger.services import ledger_store


def _movements(entry_id):
    return (
        MovementLogEntry.query.filter_by(ledger_entry_id=entry_id)
        .order_by(MovementLogEntry.id)
        .all()
    )


class TestEntryLookup:

    def test_get_entry_absent_returns_none(self, db_session, org_a, outlet_a, product_p):
        assert ledger_store.get_entry(org_a.id, outlet_a.id, product_p.id) is None

    def test_get_or_create_entry_is_idempotent(self, db_session, org_a, outlet_a, product_p):
        first = ledger_store.get_or_create_entry(org_a.id, outlet_a.id, product_p.id)
        second = ledger_store.get_or_create_entry(org_a.id, outlet_a.id, product_p.id)
        db_session.commit()

        assert first.id == second.id
        assert first.quantity == 0
        assert first.damaged_quantity == 0
        assert LedgerEntry.query.count() == 1


class TestUpsertQuantity:

    def test_positive_delta_creates_entry_and_logs(self, db_session, org_a, outlet_a, product_p):
        entry, log = ledger_store.upsert_quantity(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            delta=5,
            change_type=CHANGE_ADJUSTMENT,
            reason="seed",
        )
        db_session.commit()

        assert entry.quantity == 5
        assert log.ledger_entry_id == entry.id
        assert log.quantity_before == 0
        assert log.quantity_after == 5
        assert log.change_amount == 5
        assert log.damaged_change_amount == 0

    def test_negative_delta_on_missing_entry(self, db_session, org_a, outlet_a, product_p):
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_store.upsert_quantity(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                product_id=product_p.id,
                delta=-1,
                change_type=CHANGE_ADJUSTMENT,
            )

        assert exc_info.value.available == 0
        assert exc_info.value.requested == 1
        assert LedgerEntry.query.count() == 0

    def test_overdraw_leaves_entry_unchanged(self, db_session, org_a, outlet_a, product_p, stock):
        entry = stock(outlet_a, product_p, 3)

        with pytest.raises(InsufficientStockError):
            ledger_store.upsert_quantity(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                product_id=product_p.id,
                delta=-4,
                change_type=CHANGE_ADJUSTMENT,
            )
        db_session.rollback()

        db_session.refresh(entry)
        assert entry.quantity == 3
        assert len(_movements(entry.id)) == 1

    def test_zero_delta_rejected(self, db_session, org_a, outlet_a, product_p):
        with pytest.raises(ValidationError):
            ledger_store.upsert_quantity(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                product_id=product_p.id,
                delta=0,
                change_type=CHANGE_ADJUSTMENT,
            )


class TestBuckets:

    def test_move_to_damaged_and_back_conserves_total(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 10)

        entry, out_log = ledger_store.move_between_buckets(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            quantity=4,
            to_damaged=True,
            change_type=CHANGE_DAMAGE_OUT,
        )
        assert (entry.quantity, entry.damaged_quantity) == (6, 4)
        assert out_log.change_amount == -4
        assert out_log.damaged_change_amount == 4

        entry, back_log = ledger_store.move_between_buckets(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            quantity=1,
            to_damaged=False,
            change_type=CHANGE_DAMAGE_RESTORE,
        )
        db_session.commit()

        assert (entry.quantity, entry.damaged_quantity) == (7, 3)
        assert entry.quantity + entry.damaged_quantity == 10
        assert back_log.damaged_quantity_before == 4
        assert back_log.damaged_quantity_after == 3

    def test_damaged_bucket_cannot_go_negative(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_store.upsert_damaged(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                product_id=product_p.id,
                delta=-1,
                change_type=CHANGE_DAMAGE_OUT,
            )

        assert exc_info.value.bucket == ledger_store.BUCKET_DAMAGED
        assert exc_info.value.available == 0


class TestSetQuantity:

    def test_set_quantity_reports_discrepancy(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 10)

        entry, log, discrepancy = ledger_store.set_quantity(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            actual_quantity=7,
        )
        db_session.commit()

        assert discrepancy == -3
        assert entry.quantity == 7
        assert log.change_type == "RECONCILIATION"
        assert log.change_amount == -3


class TestDeleteEntry:

    def test_deletes_unreferenced_empty_entry(self, db_session, org_a, outlet_a, product_p):
        entry = LedgerEntry(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id)
        db_session.add(entry)
        db_session.commit()

        assert ledger_store.delete_entry_if_empty(org_a.id, outlet_a.id, product_p.id) is True
        db_session.commit()
        assert LedgerEntry.query.count() == 0

    def test_keeps_entry_with_history(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 2)
        ledger_store.upsert_quantity(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            delta=-2,
            change_type=CHANGE_ADJUSTMENT,
        )
        db_session.commit()

        assert ledger_store.delete_entry_if_empty(org_a.id, outlet_a.id, product_p.id) is False
        assert LedgerEntry.query.count() == 1

    def test_keeps_entry_with_stock(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 1)
        assert ledger_store.delete_entry_if_empty(org_a.id, outlet_a.id, product_p.id) is False
