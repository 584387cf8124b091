# backend/stockledger/routes/damages.py
"""
Damage report routes.

Each lifecycle step has its own endpoint; illegal steps return 409 with
current and requested status.
"""
from flask import Blueprint, request, g

from ..validation import (
    FIELD_INT,
    FIELD_STR,
    MAX_REASON_LENGTH,
    PayloadPolicy,
    coerce_int,
    validate_payload,
)
from ..decorators import require_tenant
from ..services import damage_service


damages_bp = Blueprint("damages", __name__, url_prefix="/api/damages")

REPORT_POLICY = PayloadPolicy(
    fields={
        "outlet_id": FIELD_INT,
        "product_id": FIELD_INT,
        "quantity": FIELD_INT,
        "reason": FIELD_STR,
        "severity": FIELD_STR,
        "damage_type": FIELD_STR,
        "notes": FIELD_STR,
        "estimated_loss_cents": FIELD_INT,
    },
    required={"outlet_id", "product_id", "quantity", "reason"},
    max_lengths={"reason": MAX_REASON_LENGTH},
)

INSPECT_POLICY = PayloadPolicy(
    fields={"severity": FIELD_STR, "estimated_loss_cents": FIELD_INT, "notes": FIELD_STR},
)

NOTES_POLICY = PayloadPolicy(fields={"notes": FIELD_STR})

REPAIR_POLICY = PayloadPolicy(
    fields={"quantity_repaired": FIELD_INT, "repair_cost_cents": FIELD_INT, "notes": FIELD_STR},
)

SCRAP_POLICY = PayloadPolicy(
    fields={"quantity_scrapped": FIELD_INT, "recovery_value_cents": FIELD_INT, "notes": FIELD_STR},
)

UPDATE_POLICY = PayloadPolicy(
    fields={
        "quantity": FIELD_INT,
        "reason": FIELD_STR,
        "notes": FIELD_STR,
        "severity": FIELD_STR,
        "damage_type": FIELD_STR,
        "estimated_loss_cents": FIELD_INT,
    },
    max_lengths={"reason": MAX_REASON_LENGTH},
)


def _query_int(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_int(name, raw)


@damages_bp.post("")
@require_tenant
def report_damage_route():
    """
    Report damaged stock; moves quantity from available to damaged.

    Returns:
        201: Report created
        409: Not enough available stock
    """
    data = validate_payload(request.get_json(silent=True), REPORT_POLICY)
    report = damage_service.report_damage(
        org_id=g.org_id,
        outlet_id=data["outlet_id"],
        product_id=data["product_id"],
        quantity=data["quantity"],
        reason=data["reason"],
        severity=data.get("severity"),
        damage_type=data.get("damage_type"),
        notes=data.get("notes"),
        estimated_loss_cents=data.get("estimated_loss_cents"),
        actor_user_id=g.actor_id,
    )
    return report.to_dict(include_actions=True), 201


@damages_bp.get("")
@require_tenant
def list_damages_route():
    limit = _query_int("limit") or 100
    if limit <= 0 or limit > 1000:
        return {"error": "limit must be between 1 and 1000"}, 400
    reports = damage_service.list_damage_reports(
        org_id=g.org_id,
        status=request.args.get("status") or None,
        outlet_id=_query_int("outlet_id"),
        product_id=_query_int("product_id"),
        severity=request.args.get("severity") or None,
        damage_type=request.args.get("damage_type") or None,
        limit=limit,
    )
    return {"items": [r.to_dict() for r in reports], "count": len(reports)}, 200


@damages_bp.get("/stats")
@require_tenant
def damage_stats_route():
    return damage_service.get_damage_stats(org_id=g.org_id, outlet_id=_query_int("outlet_id")), 200


@damages_bp.get("/<int:report_id>")
@require_tenant
def get_damage_route(report_id: int):
    report = damage_service.get_damage_report(org_id=g.org_id, report_id=report_id)
    return report.to_dict(include_actions=True), 200


@damages_bp.post("/<int:report_id>/inspect")
@require_tenant
def inspect_damage_route(report_id: int):
    data = validate_payload(request.get_json(silent=True), INSPECT_POLICY)
    report = damage_service.inspect_damage(
        org_id=g.org_id,
        report_id=report_id,
        severity=data.get("severity"),
        estimated_loss_cents=data.get("estimated_loss_cents"),
        notes=data.get("notes"),
        actor_user_id=g.actor_id,
    )
    return report.to_dict(), 200


@damages_bp.post("/<int:report_id>/repairable")
@require_tenant
def mark_repairable_route(report_id: int):
    data = validate_payload(request.get_json(silent=True), NOTES_POLICY)
    report = damage_service.mark_repairable(org_id=g.org_id, report_id=report_id, notes=data.get("notes"))
    return report.to_dict(), 200


@damages_bp.post("/<int:report_id>/repair")
@require_tenant
def repair_damage_route(report_id: int):
    """Body: quantity_repaired (default: all outstanding), repair_cost_cents, notes."""
    data = validate_payload(request.get_json(silent=True), REPAIR_POLICY)
    report = damage_service.repair_damage(
        org_id=g.org_id,
        report_id=report_id,
        quantity=data.get("quantity_repaired"),
        repair_cost_cents=data.get("repair_cost_cents") or 0,
        notes=data.get("notes"),
        actor_user_id=g.actor_id,
    )
    return report.to_dict(include_actions=True), 200


@damages_bp.post("/<int:report_id>/scrap")
@require_tenant
def scrap_damage_route(report_id: int):
    """Body: quantity_scrapped (default: all outstanding), recovery_value_cents, notes."""
    data = validate_payload(request.get_json(silent=True), SCRAP_POLICY)
    report = damage_service.scrap_damage(
        org_id=g.org_id,
        report_id=report_id,
        quantity=data.get("quantity_scrapped"),
        recovery_value_cents=data.get("recovery_value_cents") or 0,
        notes=data.get("notes"),
        actor_user_id=g.actor_id,
    )
    return report.to_dict(include_actions=True), 200


@damages_bp.post("/<int:report_id>/resolve")
@require_tenant
def resolve_damage_route(report_id: int):
    data = validate_payload(request.get_json(silent=True), NOTES_POLICY)
    report = damage_service.resolve_damage(
        org_id=g.org_id,
        report_id=report_id,
        notes=data.get("notes"),
        actor_user_id=g.actor_id,
    )
    return report.to_dict(), 200


@damages_bp.put("/<int:report_id>")
@require_tenant
def update_damage_route(report_id: int):
    """Quantity may only decrease; increases return 400 with original and requested quantity."""
    data = validate_payload(request.get_json(silent=True), UPDATE_POLICY)
    report = damage_service.update_damage_report(
        org_id=g.org_id,
        report_id=report_id,
        quantity=data.get("quantity"),
        reason=data.get("reason"),
        notes=data.get("notes"),
        severity=data.get("severity"),
        damage_type=data.get("damage_type"),
        estimated_loss_cents=data.get("estimated_loss_cents"),
        actor_user_id=g.actor_id,
    )
    return report.to_dict(), 200


@damages_bp.delete("/<int:report_id>")
@require_tenant
def delete_damage_route(report_id: int):
    damage_service.delete_damage_report(org_id=g.org_id, report_id=report_id, actor_user_id=g.actor_id)
    return "", 204
