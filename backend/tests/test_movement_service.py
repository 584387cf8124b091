# Overview: Pytest coverage for adjust, transfer, batch and reconcile movements.

import pytest

from stockledger.errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    InvalidTransferError,
    NotFoundError,
    ValidationError,
)
from stockledger.models import LedgerEntry, MovementLogEntry, StockTransfer
from stockledger.models.ledger import CHANGE_TRANSFER_IN, CHANGE_TRANSFER_OUT
from stockledger.services import ledger_store, movement_service
from stockledger.services.movement_service import (
    adjust_stock,
    batch_adjust,
    get_inventory_value,
    get_stock_levels,
    list_low_stock,
    reconcile_stock,
    reverse_transfer,
    transfer_stock,
)


def _quantity(org_id, outlet, product):
    entry = ledger_store.get_entry(org_id, outlet.id, product.id)
    return None if entry is None else entry.quantity


class TestAdjustStock:

    def test_positive_adjust_creates_entry(self, db_session, org_a, outlet_a, product_p):
        result = adjust_stock(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            product_id=product_p.id,
            delta=10,
            actor_user_id=3,
        )

        assert result.entry.quantity == 10
        assert result.movement.change_type == "ADJUSTMENT"
        assert result.movement.reason == "Manual adjustment"
        assert result.movement.actor_user_id == 3

    def test_overdraw_fails_and_leaves_quantity(self, db_session, org_a, outlet_a, product_p, stock):
        """Adjusting -15 against 10 fails with available 10 / requested 15."""
        stock(outlet_a, product_p, 10)

        with pytest.raises(InsufficientStockError) as exc_info:
            adjust_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, delta=-15)

        assert exc_info.value.details["available"] == 10
        assert exc_info.value.details["requested"] == 15
        assert _quantity(org_a.id, outlet_a, product_p) == 10
        assert MovementLogEntry.query.count() == 1

    def test_zero_delta_is_validation_error(self, db_session, org_a, outlet_a, product_p):
        with pytest.raises(ValidationError):
            adjust_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, delta=0)

    def test_non_integer_delta_is_validation_error(self, db_session, org_a, outlet_a, product_p):
        with pytest.raises(ValidationError):
            adjust_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, delta="abc")

    def test_outlet_of_other_org_is_not_found(self, db_session, org_a, foreign_outlet, product_p):
        with pytest.raises(NotFoundError):
            adjust_stock(org_id=org_a.id, outlet_id=foreign_outlet.id, product_id=product_p.id, delta=5)
        assert LedgerEntry.query.count() == 0

    def test_product_of_other_org_is_not_found(self, db_session, org_a, outlet_a, foreign_product):
        with pytest.raises(NotFoundError):
            adjust_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=foreign_product.id, delta=5)


class TestTransferStock:

    def test_transfer_moves_stock_and_pairs_movements(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        """10 at A, transfer 4 to B: A=6, B=4, one TRANSFER_OUT and one TRANSFER_IN."""
        stock(outlet_a, product_p, 10)

        result = transfer_stock(
            org_id=org_a.id,
            from_outlet_id=outlet_a.id,
            to_outlet_id=outlet_b.id,
            product_id=product_p.id,
            quantity=4,
        )

        assert _quantity(org_a.id, outlet_a, product_p) == 6
        assert _quantity(org_a.id, outlet_b, product_p) == 4
        assert result.transfer.status == "COMPLETED"

        outs = MovementLogEntry.query.filter_by(change_type=CHANGE_TRANSFER_OUT).all()
        ins = MovementLogEntry.query.filter_by(change_type=CHANGE_TRANSFER_IN).all()
        assert len(outs) == 1
        assert len(ins) == 1
        assert outs[0].transfer_id == ins[0].transfer_id == result.transfer.id
        assert outs[0].paired_movement_id == ins[0].id
        assert ins[0].paired_movement_id == outs[0].id
        assert outs[0].reason == "Transfer to outlet Uptown"
        assert ins[0].reason == "Transfer from outlet Downtown"

    def test_transfer_conserves_pair_total(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 9)
        stock(outlet_b, product_p, 3)

        for src, dst, qty in [(outlet_a, outlet_b, 5), (outlet_b, outlet_a, 7), (outlet_a, outlet_b, 2)]:
            transfer_stock(
                org_id=org_a.id,
                from_outlet_id=src.id,
                to_outlet_id=dst.id,
                product_id=product_p.id,
                quantity=qty,
            )
            total = _quantity(org_a.id, outlet_a, product_p) + _quantity(org_a.id, outlet_b, product_p)
            assert total == 12

    def test_same_outlet_is_invalid_transfer(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)

        with pytest.raises(InvalidTransferError):
            transfer_stock(
                org_id=org_a.id,
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_a.id,
                product_id=product_p.id,
                quantity=1,
            )

    def test_insufficient_source_creates_nothing(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            transfer_stock(
                org_id=org_a.id,
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_b.id,
                product_id=product_p.id,
                quantity=3,
            )

        assert exc_info.value.available == 2
        assert StockTransfer.query.count() == 0
        assert _quantity(org_a.id, outlet_b, product_p) is None

    def test_missing_source_entry_is_insufficient(self, db_session, org_a, outlet_a, outlet_b, product_p):
        with pytest.raises(InsufficientStockError) as exc_info:
            transfer_stock(
                org_id=org_a.id,
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_b.id,
                product_id=product_p.id,
                quantity=1,
            )
        assert exc_info.value.available == 0

    def test_destination_failure_rolls_back_source(
        self, db_session, org_a, outlet_a, outlet_b, product_p, stock, monkeypatch
    ):
        """A failing TRANSFER_IN write leaves the source untouched and no log rows."""
        stock(outlet_a, product_p, 10)
        movements_before = MovementLogEntry.query.count()
        real_upsert = ledger_store.upsert_quantity

        def failing_upsert(**kwargs):
            if kwargs["change_type"] == CHANGE_TRANSFER_IN:
                raise RuntimeError("simulated destination failure")
            return real_upsert(**kwargs)

        monkeypatch.setattr(ledger_store, "upsert_quantity", failing_upsert)

        with pytest.raises(RuntimeError):
            transfer_stock(
                org_id=org_a.id,
                from_outlet_id=outlet_a.id,
                to_outlet_id=outlet_b.id,
                product_id=product_p.id,
                quantity=4,
            )

        monkeypatch.undo()
        db_session.expire_all()
        assert _quantity(org_a.id, outlet_a, product_p) == 10
        assert _quantity(org_a.id, outlet_b, product_p) is None
        assert MovementLogEntry.query.count() == movements_before
        assert StockTransfer.query.count() == 0


class TestReverseTransfer:

    def test_reverse_restores_both_outlets(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 10)
        transfer = transfer_stock(
            org_id=org_a.id,
            from_outlet_id=outlet_a.id,
            to_outlet_id=outlet_b.id,
            product_id=product_p.id,
            quantity=4,
        ).transfer

        result = reverse_transfer(org_id=org_a.id, transfer_id=transfer.id, actor_user_id=9)

        assert result.transfer.status == "REVERSED"
        assert result.transfer.reversed_by_user_id == 9
        assert _quantity(org_a.id, outlet_a, product_p) == 10
        assert _quantity(org_a.id, outlet_b, product_p) == 0
        assert result.source_movement.reason == f"Reversal of transfer {transfer.id}"
        assert MovementLogEntry.query.filter_by(transfer_id=transfer.id).count() == 4

    def test_reverse_twice_is_invalid(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 5)
        transfer = transfer_stock(
            org_id=org_a.id,
            from_outlet_id=outlet_a.id,
            to_outlet_id=outlet_b.id,
            product_id=product_p.id,
            quantity=5,
        ).transfer
        reverse_transfer(org_id=org_a.id, transfer_id=transfer.id)

        with pytest.raises(InvalidStateTransitionError):
            reverse_transfer(org_id=org_a.id, transfer_id=transfer.id)

    def test_reverse_fails_when_destination_sold_out(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 5)
        transfer = transfer_stock(
            org_id=org_a.id,
            from_outlet_id=outlet_a.id,
            to_outlet_id=outlet_b.id,
            product_id=product_p.id,
            quantity=5,
        ).transfer
        adjust_stock(org_id=org_a.id, outlet_id=outlet_b.id, product_id=product_p.id, delta=-3)

        with pytest.raises(InsufficientStockError):
            reverse_transfer(org_id=org_a.id, transfer_id=transfer.id)

        db_session.expire_all()
        assert db_session.get(StockTransfer, transfer.id).status == "COMPLETED"

    def test_reverse_of_other_org_transfer_is_not_found(self, db_session, org_a, org_b, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 5)
        transfer = transfer_stock(
            org_id=org_a.id,
            from_outlet_id=outlet_a.id,
            to_outlet_id=outlet_b.id,
            product_id=product_p.id,
            quantity=1,
        ).transfer

        with pytest.raises(NotFoundError):
            reverse_transfer(org_id=org_b.id, transfer_id=transfer.id)


class TestBatchAdjust:

    def test_partial_success(self, db_session, org_a, outlet_a, outlet_b, product_p, product_q, stock):
        stock(outlet_a, product_p, 5)

        result = batch_adjust(
            org_id=org_a.id,
            items=[
                {"outlet_id": outlet_a.id, "product_id": product_p.id, "delta": -2},
                {"outlet_id": outlet_a.id, "product_id": product_p.id, "delta": -10},
                {"outlet_id": outlet_b.id, "product_id": product_q.id, "delta": -1},
                {"outlet_id": outlet_b.id, "product_id": product_q.id, "delta": 4, "reason": "Delivery"},
                {"outlet_id": outlet_a.id, "product_id": product_p.id, "delta": 0},
            ],
        )

        assert result.success_count == 2
        assert result.failure_count == 3
        assert [r.success for r in result.results] == [True, False, False, True, False]
        assert result.results[1].error["code"] == "INSUFFICIENT_STOCK"
        assert result.results[2].error["error"] == "Cannot deduct from non-existent inventory"
        assert result.results[4].error["code"] == "VALIDATION_ERROR"
        assert result.results[3].movement.reason == "Delivery"
        assert result.results[0].movement.reason == "Batch adjustment"

        assert _quantity(org_a.id, outlet_a, product_p) == 3
        assert _quantity(org_a.id, outlet_b, product_q) == 4

    def test_items_see_earlier_items(self, db_session, org_a, outlet_a, product_p):
        result = batch_adjust(
            org_id=org_a.id,
            items=[
                {"outlet_id": outlet_a.id, "product_id": product_p.id, "delta": 3},
                {"outlet_id": outlet_a.id, "product_id": product_p.id, "delta": -3},
            ],
        )
        assert result.success_count == 2
        assert _quantity(org_a.id, outlet_a, product_p) == 0

    def test_foreign_outlet_fails_only_that_item(self, db_session, org_a, outlet_a, foreign_outlet, product_p):
        result = batch_adjust(
            org_id=org_a.id,
            items=[
                {"outlet_id": foreign_outlet.id, "product_id": product_p.id, "delta": 1},
                {"outlet_id": outlet_a.id, "product_id": product_p.id, "delta": 1},
            ],
        )
        assert result.results[0].error["code"] == "NOT_FOUND"
        assert result.results[1].success is True

    def test_empty_batch_is_rejected(self, db_session, org_a):
        with pytest.raises(ValidationError):
            batch_adjust(org_id=org_a.id, items=[])


class TestReconcile:

    def test_reconcile_sets_quantity_and_reports_discrepancy(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 10)

        result = reconcile_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, actual_quantity=7)

        assert result.discrepancy == -3
        assert result.entry.quantity == 7
        assert result.movement.change_type == "RECONCILIATION"
        assert result.movement.reason == "Inventory reconciliation"

    def test_reconcile_without_discrepancy_still_logs(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 4)

        result = reconcile_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, actual_quantity=4)

        assert result.discrepancy == 0
        assert MovementLogEntry.query.count() == 2

    def test_reconcile_creates_missing_entry(self, db_session, org_a, outlet_a, product_p):
        result = reconcile_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, actual_quantity=6)
        assert result.discrepancy == 6
        assert result.entry.quantity == 6

    def test_negative_actual_quantity_rejected(self, db_session, org_a, outlet_a, product_p):
        with pytest.raises(ValidationError):
            reconcile_stock(org_id=org_a.id, outlet_id=outlet_a.id, product_id=product_p.id, actual_quantity=-1)


class TestStockReads:

    def test_stock_levels_across_outlets(self, db_session, org_a, outlet_a, outlet_b, product_p, stock):
        stock(outlet_a, product_p, 10)
        stock(outlet_b, product_p, 2)

        levels = get_stock_levels(org_id=org_a.id, product_id=product_p.id)

        assert levels["total_quantity"] == 12
        assert levels["total_damaged_quantity"] == 0
        assert {o["outlet_id"]: o["quantity"] for o in levels["outlets"]} == {outlet_a.id: 10, outlet_b.id: 2}

    def test_low_stock_is_strictly_below_threshold(self, db_session, org_a, outlet_a, product_p, product_q, stock):
        stock(outlet_a, product_p, 10)
        stock(outlet_a, product_q, 9)

        low = list_low_stock(org_id=org_a.id)

        assert movement_service.DEFAULT_LOW_STOCK_THRESHOLD == 10
        assert [row["product_id"] for row in low] == [product_q.id]

    def test_inventory_value(self, db_session, org_a, outlet_a, outlet_b, product_p, product_q, stock):
        stock(outlet_a, product_p, 3)   # 3 x 1000
        stock(outlet_b, product_q, 4)   # 4 x 250

        value = get_inventory_value(org_id=org_a.id)
        assert value["total_value_cents"] == 4000
        assert value["total_units"] == 7
        assert value["entry_count"] == 2

        value_a = get_inventory_value(org_id=org_a.id, outlet_id=outlet_a.id)
        assert value_a["total_value_cents"] == 3000
