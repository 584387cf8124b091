# backend/stockledger/routes/inventory.py
"""
Stock ledger routes: movement operations, reservations and stock reads.

Tenant context comes from require_tenant (g.org_id, g.actor_id). Domain
errors propagate to the app-level handler, which maps them to 400/404/409.
"""
from flask import Blueprint, request, g

from ..validation import (
    FIELD_DATETIME,
    FIELD_INT,
    FIELD_LIST,
    FIELD_STR,
    MAX_REASON_LENGTH,
    PayloadPolicy,
    coerce_int,
    validate_payload,
)
from ..decorators import require_tenant
from ..services import movement_service, reservation_service
from ..services.movement_log import list_movements


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

ADJUST_POLICY = PayloadPolicy(
    fields={"outlet_id": FIELD_INT, "product_id": FIELD_INT, "delta": FIELD_INT, "reason": FIELD_STR},
    required={"outlet_id", "product_id", "delta"},
    max_lengths={"reason": MAX_REASON_LENGTH},
)

TRANSFER_POLICY = PayloadPolicy(
    fields={
        "from_outlet_id": FIELD_INT,
        "to_outlet_id": FIELD_INT,
        "product_id": FIELD_INT,
        "quantity": FIELD_INT,
        "reason": FIELD_STR,
    },
    required={"from_outlet_id", "to_outlet_id", "product_id", "quantity"},
    max_lengths={"reason": MAX_REASON_LENGTH},
)

REASON_ONLY_POLICY = PayloadPolicy(
    fields={"reason": FIELD_STR},
    max_lengths={"reason": MAX_REASON_LENGTH},
)

BATCH_POLICY = PayloadPolicy(fields={"items": FIELD_LIST}, required={"items"})

RECONCILE_POLICY = PayloadPolicy(
    fields={"outlet_id": FIELD_INT, "product_id": FIELD_INT, "actual_quantity": FIELD_INT, "reason": FIELD_STR},
    required={"outlet_id", "product_id", "actual_quantity"},
    max_lengths={"reason": MAX_REASON_LENGTH},
)

RESERVE_POLICY = PayloadPolicy(
    fields={
        "outlet_id": FIELD_INT,
        "product_id": FIELD_INT,
        "quantity": FIELD_INT,
        "reservation_id": FIELD_STR,
        "expires_at": FIELD_DATETIME,
        "notes": FIELD_STR,
    },
    required={"outlet_id", "product_id", "quantity"},
    max_lengths={"reservation_id": 64, "notes": 255},
)


def _query_int(name: str, default=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    return coerce_int(name, raw)


@inventory_bp.post("/adjust")
@require_tenant
def adjust_route():
    """
    Apply a signed adjustment.

    Request body: {"outlet_id": int, "product_id": int, "delta": int, "reason": str?}
    """
    data = validate_payload(request.get_json(silent=True), ADJUST_POLICY)
    result = movement_service.adjust_stock(
        org_id=g.org_id,
        outlet_id=data["outlet_id"],
        product_id=data["product_id"],
        delta=data["delta"],
        reason=data.get("reason"),
        actor_user_id=g.actor_id,
    )
    return result.to_dict(), 200


@inventory_bp.post("/transfer")
@require_tenant
def transfer_route():
    """Move stock between outlets. 201 with the transfer document and both legs."""
    data = validate_payload(request.get_json(silent=True), TRANSFER_POLICY)
    result = movement_service.transfer_stock(
        org_id=g.org_id,
        from_outlet_id=data["from_outlet_id"],
        to_outlet_id=data["to_outlet_id"],
        product_id=data["product_id"],
        quantity=data["quantity"],
        reason=data.get("reason"),
        actor_user_id=g.actor_id,
    )
    return result.to_dict(), 201


@inventory_bp.post("/transfers/<int:transfer_id>/reverse")
@require_tenant
def reverse_transfer_route(transfer_id: int):
    data = validate_payload(request.get_json(silent=True), REASON_ONLY_POLICY)
    result = movement_service.reverse_transfer(
        org_id=g.org_id,
        transfer_id=transfer_id,
        reason=data.get("reason"),
        actor_user_id=g.actor_id,
    )
    return result.to_dict(), 200


@inventory_bp.post("/batch-adjust")
@require_tenant
def batch_adjust_route():
    """
    Apply many adjustments; per-item failures do not abort the batch.

    Returns 200 when every item succeeded, 207 on partial success.
    """
    data = validate_payload(request.get_json(silent=True), BATCH_POLICY)
    result = movement_service.batch_adjust(
        org_id=g.org_id,
        items=data["items"],
        actor_user_id=g.actor_id,
    )
    status = 200 if result.failure_count == 0 else 207
    return result.to_dict(), status


@inventory_bp.post("/reconcile")
@require_tenant
def reconcile_route():
    data = validate_payload(request.get_json(silent=True), RECONCILE_POLICY)
    result = movement_service.reconcile_stock(
        org_id=g.org_id,
        outlet_id=data["outlet_id"],
        product_id=data["product_id"],
        actual_quantity=data["actual_quantity"],
        reason=data.get("reason"),
        actor_user_id=g.actor_id,
    )
    return result.to_dict(), 200


@inventory_bp.post("/reserve")
@require_tenant
def reserve_route():
    """Place an advisory hold. 201 with the reservation and remaining_available."""
    data = validate_payload(request.get_json(silent=True), RESERVE_POLICY)
    result = reservation_service.reserve_stock(
        org_id=g.org_id,
        outlet_id=data["outlet_id"],
        product_id=data["product_id"],
        quantity=data["quantity"],
        reservation_id=data.get("reservation_id"),
        expires_at=data.get("expires_at"),
        notes=data.get("notes"),
        actor_user_id=g.actor_id,
    )
    return result.to_dict(), 201


@inventory_bp.post("/reservations/<reservation_id>/release")
@require_tenant
def release_reservation_route(reservation_id: str):
    reservation = reservation_service.release_reservation(
        org_id=g.org_id,
        reservation_id=reservation_id,
        actor_user_id=g.actor_id,
    )
    return reservation.to_dict(), 200


@inventory_bp.get("/stock")
@require_tenant
def stock_levels_route():
    """Query: product_id (required), outlet_id (optional)."""
    product_id = _query_int("product_id")
    if product_id is None:
        return {"error": "product_id is required"}, 400
    return movement_service.get_stock_levels(
        org_id=g.org_id,
        product_id=product_id,
        outlet_id=_query_int("outlet_id"),
    ), 200


@inventory_bp.get("/low-stock")
@require_tenant
def low_stock_route():
    """Query: threshold (default 10), outlet_id (optional)."""
    items = movement_service.list_low_stock(
        org_id=g.org_id,
        threshold=_query_int("threshold", movement_service.DEFAULT_LOW_STOCK_THRESHOLD),
        outlet_id=_query_int("outlet_id"),
    )
    return {"items": items, "count": len(items)}, 200


@inventory_bp.get("/movements")
@require_tenant
def movements_route():
    """Newest first. Filters: ledger_entry_id, outlet_id, product_id, change_type, sale_id, transfer_id, damage_report_id, limit."""
    limit = _query_int("limit", 200)
    if limit <= 0 or limit > 1000:
        return {"error": "limit must be between 1 and 1000"}, 400

    change_type = request.args.get("change_type")
    rows = list_movements(
        org_id=g.org_id,
        ledger_entry_id=_query_int("ledger_entry_id"),
        outlet_id=_query_int("outlet_id"),
        product_id=_query_int("product_id"),
        change_type=change_type.upper() if change_type else None,
        sale_id=_query_int("sale_id"),
        transfer_id=_query_int("transfer_id"),
        damage_report_id=_query_int("damage_report_id"),
        limit=limit,
    )
    return {"items": [m.to_dict() for m in rows], "count": len(rows)}, 200


@inventory_bp.get("/value")
@require_tenant
def inventory_value_route():
    return movement_service.get_inventory_value(
        org_id=g.org_id,
        outlet_id=_query_int("outlet_id"),
    ), 200
