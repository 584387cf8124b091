# Overview: Pytest coverage for the sale document lifecycle and its ledger effects.

import pytest

from stockledger.errors import InsufficientStockError, InvalidStateTransitionError, NotFoundError, ValidationError
from stockledger.models import MovementLogEntry, Sale, SaleLine
from stockledger.services import ledger_store
from stockledger.services.sales_service import (
    add_line,
    complete_sale,
    create_sale,
    delete_draft_sale,
    get_sale,
    refund_sale,
    remove_line,
    void_sale,
)


def _quantity(org_id, outlet, product):
    entry = ledger_store.get_entry(org_id, outlet.id, product.id)
    return None if entry is None else entry.quantity


class TestCreateSale:

    def test_draft_has_no_ledger_effect(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)

        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[{"product_id": product_p.id, "quantity": 2}],
        )

        assert sale.status == "DRAFT"
        assert sale.document_number == "S-000001"
        assert _quantity(org_a.id, outlet_a, product_p) == 5
        assert MovementLogEntry.query.filter_by(sale_id=sale.id).count() == 0

    def test_totals_with_tax_and_discounts(self, db_session, org_a, outlet_a, product_p, product_q):
        """Outlet A taxes 8.25%, rounded half-up on the discounted subtotal."""
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[
                {"product_id": product_p.id, "quantity": 2},                          # 2000
                {"product_id": product_q.id, "quantity": 3, "discount_cents": 50},    # 750 - 50
            ],
            discount_cents=100,
        )

        assert sale.subtotal_cents == 2750
        assert sale.discount_cents == 150
        # 2600 * 825 / 10000 = 214.5 -> 215
        assert sale.tax_cents == 215
        assert sale.total_cents == 2815

    def test_document_numbers_are_sequential(self, db_session, org_a, outlet_a, product_p):
        first = create_sale(org_id=org_a.id, outlet_id=outlet_a.id)
        second = create_sale(org_id=org_a.id, outlet_id=outlet_a.id)
        assert (first.document_number, second.document_number) == ("S-000001", "S-000002")

    def test_completed_on_create_decrements(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)

        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[{"product_id": product_p.id, "quantity": 2}],
            status="COMPLETED",
            actor_user_id=11,
        )

        assert sale.status == "COMPLETED"
        assert sale.completed_by_user_id == 11
        assert _quantity(org_a.id, outlet_a, product_p) == 3
        movement = MovementLogEntry.query.filter_by(sale_id=sale.id).one()
        assert movement.change_type == "SALE_DECREMENT"
        assert movement.reason == "Sale S-000001"

    def test_completed_on_create_is_all_or_nothing(self, db_session, org_a, outlet_a, product_p, product_q, stock):
        """P:3, Q:2 against P=5, Q=1 fails on Q and P stays 5."""
        stock(outlet_a, product_p, 5)
        stock(outlet_a, product_q, 1)

        with pytest.raises(InsufficientStockError) as exc_info:
            create_sale(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                lines=[
                    {"product_id": product_p.id, "quantity": 3},
                    {"product_id": product_q.id, "quantity": 2},
                ],
                status="COMPLETED",
            )

        assert exc_info.value.product_id == product_q.id
        assert exc_info.value.available == 1
        assert _quantity(org_a.id, outlet_a, product_p) == 5
        assert _quantity(org_a.id, outlet_a, product_q) == 1
        assert Sale.query.count() == 0

    def test_foreign_product_is_not_found(self, db_session, org_a, outlet_a, foreign_product):
        with pytest.raises(NotFoundError):
            create_sale(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                lines=[{"product_id": foreign_product.id, "quantity": 1}],
            )

    def test_invalid_initial_status(self, db_session, org_a, outlet_a):
        with pytest.raises(ValidationError):
            create_sale(org_id=org_a.id, outlet_id=outlet_a.id, status="VOIDED")

    def test_discount_above_subtotal(self, db_session, org_a, outlet_a, product_q):
        with pytest.raises(ValidationError):
            create_sale(
                org_id=org_a.id,
                outlet_id=outlet_a.id,
                lines=[{"product_id": product_q.id, "quantity": 1}],
                discount_cents=500,
            )


class TestDraftLines:

    def test_add_and_remove_lines_refresh_totals(self, db_session, org_a, outlet_b, product_p, product_q):
        sale = create_sale(org_id=org_a.id, outlet_id=outlet_b.id)

        line = add_line(org_id=org_a.id, sale_id=sale.id, product_id=product_p.id, quantity=2)
        add_line(org_id=org_a.id, sale_id=sale.id, product_id=product_q.id, quantity=1, unit_price_cents=300)

        sale = get_sale(org_id=org_a.id, sale_id=sale.id)
        assert sale.subtotal_cents == 2300
        assert sale.total_cents == 2300

        remove_line(org_id=org_a.id, sale_id=sale.id, line_id=line.id)
        sale = get_sale(org_id=org_a.id, sale_id=sale.id)
        assert sale.subtotal_cents == 300
        assert SaleLine.query.count() == 1

    def test_lines_frozen_after_completion(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[{"product_id": product_p.id, "quantity": 1}],
            status="COMPLETED",
        )

        with pytest.raises(ValidationError):
            add_line(org_id=org_a.id, sale_id=sale.id, product_id=product_p.id, quantity=1)

    def test_remove_unknown_line(self, db_session, org_a, outlet_a):
        sale = create_sale(org_id=org_a.id, outlet_id=outlet_a.id)
        with pytest.raises(NotFoundError):
            remove_line(org_id=org_a.id, sale_id=sale.id, line_id=999)


class TestSaleTransitions:

    def _completed_sale(self, org_a, outlet_a, product_p, product_q, stock):
        stock(outlet_a, product_p, 5)
        stock(outlet_a, product_q, 5)
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[
                {"product_id": product_p.id, "quantity": 2},
                {"product_id": product_q.id, "quantity": 1},
                {"product_id": product_p.id, "quantity": 1},
            ],
        )
        return complete_sale(org_id=org_a.id, sale_id=sale.id)

    def test_complete_aggregates_lines_per_product(self, db_session, org_a, outlet_a, product_p, product_q, stock):
        sale = self._completed_sale(org_a, outlet_a, product_p, product_q, stock)

        assert sale.status == "COMPLETED"
        assert _quantity(org_a.id, outlet_a, product_p) == 2
        assert _quantity(org_a.id, outlet_a, product_q) == 4
        assert MovementLogEntry.query.filter_by(sale_id=sale.id, change_type="SALE_DECREMENT").count() == 3

    def test_complete_checks_total_per_product(self, db_session, org_a, outlet_a, product_p, stock):
        """Two lines of 3 against 5 units fail even though each line fits alone."""
        stock(outlet_a, product_p, 5)
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[
                {"product_id": product_p.id, "quantity": 3},
                {"product_id": product_p.id, "quantity": 3},
            ],
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            complete_sale(org_id=org_a.id, sale_id=sale.id)

        assert exc_info.value.requested == 6
        assert get_sale(org_id=org_a.id, sale_id=sale.id).status == "DRAFT"
        assert _quantity(org_a.id, outlet_a, product_p) == 5

    def test_complete_empty_sale_rejected(self, db_session, org_a, outlet_a):
        sale = create_sale(org_id=org_a.id, outlet_id=outlet_a.id)
        with pytest.raises(ValidationError):
            complete_sale(org_id=org_a.id, sale_id=sale.id)

    def test_void_restores_stock(self, db_session, org_a, outlet_a, product_p, product_q, stock):
        sale = self._completed_sale(org_a, outlet_a, product_p, product_q, stock)

        voided = void_sale(org_id=org_a.id, sale_id=sale.id, reason="Customer walked out", actor_user_id=2)

        assert voided.status == "VOIDED"
        assert voided.void_reason == "Customer walked out"
        assert _quantity(org_a.id, outlet_a, product_p) == 5
        assert _quantity(org_a.id, outlet_a, product_q) == 5
        assert MovementLogEntry.query.filter_by(sale_id=sale.id, change_type="SALE_RESTORE").count() == 3

    def test_refund_restores_stock(self, db_session, org_a, outlet_a, product_p, product_q, stock):
        sale = self._completed_sale(org_a, outlet_a, product_p, product_q, stock)

        refunded = refund_sale(org_id=org_a.id, sale_id=sale.id)

        assert refunded.status == "REFUNDED"
        restore = MovementLogEntry.query.filter_by(sale_id=sale.id, change_type="SALE_RESTORE").first()
        assert restore.reason == f"Refund sale {sale.document_number}"
        assert _quantity(org_a.id, outlet_a, product_p) == 5

    def test_void_draft_is_invalid_and_leaves_ledger(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 5)
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[{"product_id": product_p.id, "quantity": 1}],
        )
        movements_before = MovementLogEntry.query.count()

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            void_sale(org_id=org_a.id, sale_id=sale.id)

        assert exc_info.value.current_status == "DRAFT"
        assert exc_info.value.requested_status == "VOIDED"
        assert MovementLogEntry.query.count() == movements_before
        assert _quantity(org_a.id, outlet_a, product_p) == 5

    def test_voided_sale_is_terminal(self, db_session, org_a, outlet_a, product_p, product_q, stock):
        sale = self._completed_sale(org_a, outlet_a, product_p, product_q, stock)
        void_sale(org_id=org_a.id, sale_id=sale.id)

        with pytest.raises(InvalidStateTransitionError):
            refund_sale(org_id=org_a.id, sale_id=sale.id)
        with pytest.raises(InvalidStateTransitionError):
            complete_sale(org_id=org_a.id, sale_id=sale.id)


class TestDeleteSale:

    def test_delete_draft(self, db_session, org_a, outlet_a, product_p):
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[{"product_id": product_p.id, "quantity": 1}],
        )

        delete_draft_sale(org_id=org_a.id, sale_id=sale.id)

        assert Sale.query.count() == 0
        assert SaleLine.query.count() == 0

    def test_completed_sale_cannot_be_deleted(self, db_session, org_a, outlet_a, product_p, stock):
        stock(outlet_a, product_p, 1)
        sale = create_sale(
            org_id=org_a.id,
            outlet_id=outlet_a.id,
            lines=[{"product_id": product_p.id, "quantity": 1}],
            status="COMPLETED",
        )

        with pytest.raises(InvalidStateTransitionError):
            delete_draft_sale(org_id=org_a.id, sale_id=sale.id)

    def test_other_org_cannot_see_sale(self, db_session, org_a, org_b, outlet_a):
        sale = create_sale(org_id=org_a.id, outlet_id=outlet_a.id)
        with pytest.raises(NotFoundError):
            get_sale(org_id=org_b.id, sale_id=sale.id)
