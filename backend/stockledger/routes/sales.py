# backend/stockledger/routes/sales.py
"""
Sale document routes.

Status changes go through dedicated endpoints (complete, void, refund);
there is no generic status PATCH.
"""
from flask import Blueprint, request, g

from ..validation import (
    FIELD_INT,
    FIELD_LIST,
    FIELD_STR,
    MAX_REASON_LENGTH,
    PayloadPolicy,
    validate_payload,
)
from ..decorators import require_tenant
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

CREATE_SALE_POLICY = PayloadPolicy(
    fields={
        "outlet_id": FIELD_INT,
        "customer_id": FIELD_INT,
        "status": FIELD_STR,
        "lines": FIELD_LIST,
        "discount_cents": FIELD_INT,
    },
    required={"outlet_id"},
)

ADD_LINE_POLICY = PayloadPolicy(
    fields={
        "product_id": FIELD_INT,
        "quantity": FIELD_INT,
        "unit_price_cents": FIELD_INT,
        "discount_cents": FIELD_INT,
    },
    required={"product_id", "quantity"},
)

REASON_POLICY = PayloadPolicy(
    fields={"reason": FIELD_STR},
    max_lengths={"reason": MAX_REASON_LENGTH},
)


@sales_bp.post("")
@require_tenant
def create_sale_route():
    """
    Create a sale.

    Request body:
    {
        "outlet_id": int,
        "status": "DRAFT" | "COMPLETED" (default DRAFT),
        "lines": [{"product_id": int, "quantity": int, "unit_price_cents": int?, "discount_cents": int?}],
        "customer_id": int?,
        "discount_cents": int?
    }

    Returns:
        201: Sale created (with lines)
        409: COMPLETED requested and stock is insufficient (nothing saved)
    """
    data = validate_payload(request.get_json(silent=True), CREATE_SALE_POLICY)
    sale = sales_service.create_sale(
        org_id=g.org_id,
        outlet_id=data["outlet_id"],
        lines=data.get("lines") or [],
        status=data.get("status") or "DRAFT",
        customer_id=data.get("customer_id"),
        discount_cents=data.get("discount_cents") or 0,
        actor_user_id=g.actor_id,
    )
    return sale.to_dict(include_lines=True), 201


@sales_bp.get("/<int:sale_id>")
@require_tenant
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(org_id=g.org_id, sale_id=sale_id)
    return sale.to_dict(include_lines=True), 200


@sales_bp.post("/<int:sale_id>/lines")
@require_tenant
def add_line_route(sale_id: int):
    data = validate_payload(request.get_json(silent=True), ADD_LINE_POLICY)
    line = sales_service.add_line(
        org_id=g.org_id,
        sale_id=sale_id,
        product_id=data["product_id"],
        quantity=data["quantity"],
        unit_price_cents=data.get("unit_price_cents"),
        discount_cents=data.get("discount_cents") or 0,
    )
    return line.to_dict(), 201


@sales_bp.delete("/<int:sale_id>/lines/<int:line_id>")
@require_tenant
def remove_line_route(sale_id: int, line_id: int):
    sale = sales_service.remove_line(org_id=g.org_id, sale_id=sale_id, line_id=line_id)
    return sale.to_dict(include_lines=True), 200


@sales_bp.post("/<int:sale_id>/complete")
@require_tenant
def complete_sale_route(sale_id: int):
    sale = sales_service.complete_sale(org_id=g.org_id, sale_id=sale_id, actor_user_id=g.actor_id)
    return sale.to_dict(include_lines=True), 200


@sales_bp.post("/<int:sale_id>/void")
@require_tenant
def void_sale_route(sale_id: int):
    data = validate_payload(request.get_json(silent=True), REASON_POLICY)
    sale = sales_service.void_sale(
        org_id=g.org_id,
        sale_id=sale_id,
        reason=data.get("reason"),
        actor_user_id=g.actor_id,
    )
    return sale.to_dict(include_lines=True), 200


@sales_bp.post("/<int:sale_id>/refund")
@require_tenant
def refund_sale_route(sale_id: int):
    data = validate_payload(request.get_json(silent=True), REASON_POLICY)
    sale = sales_service.refund_sale(
        org_id=g.org_id,
        sale_id=sale_id,
        reason=data.get("reason"),
        actor_user_id=g.actor_id,
    )
    return sale.to_dict(include_lines=True), 200


@sales_bp.delete("/<int:sale_id>")
@require_tenant
def delete_sale_route(sale_id: int):
    """Only DRAFT sales can be deleted; others return 409."""
    sales_service.delete_draft_sale(org_id=g.org_id, sale_id=sale_id)
    return "", 204
