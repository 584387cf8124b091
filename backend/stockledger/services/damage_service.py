"""
Damage Service - damaged-stock lifecycle over the two ledger buckets

WHY: Damaged units stay on the books (damaged_quantity) until someone
decides what happens to them. Reporting moves units out of available stock
and repairing moves them back; scrapping removes them for good. Resolving closes
the report with no ledger effect.

LIFECYCLE:
    REPORTED -> INSPECTED -> REPAIRABLE
    INSPECTED / REPAIRABLE / REPAIRED --repair--> REPAIRED | PARTIALLY_REPAIRED
    INSPECTED / REPAIRABLE / SCRAPPED --scrap--> SCRAPPED
    REPORTED / INSPECTED / REPAIRABLE / PARTIALLY_REPAIRED --resolve--> RESOLVED
    REPORTED / INSPECTED (no actions) --delete--> (row removed, units restored)

QUANTITIES:
- report.quantity is the outstanding damaged units for the report and only
  ever decreases; report.reported_quantity never changes.
- quantity + damaged_quantity on the ledger entry is unchanged by report and
  repair; scrap lowers damaged_quantity only.
"""
from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..errors import InvalidStateTransitionError, NotFoundError, ValidationError
from ..models import DamageReport, Product, RepairAction, ScrapAction
from ..models.damage import (
    DAMAGE_SEVERITIES,
    DAMAGE_STATUS_INSPECTED,
    DAMAGE_STATUS_PARTIALLY_REPAIRED,
    DAMAGE_STATUS_REPAIRABLE,
    DAMAGE_STATUS_REPAIRED,
    DAMAGE_STATUS_REPORTED,
    DAMAGE_STATUS_RESOLVED,
    DAMAGE_STATUS_SCRAPPED,
    DAMAGE_TYPES,
)
from ..models.ledger import CHANGE_DAMAGE_OUT, CHANGE_DAMAGE_RESTORE
from ..time_utils import utcnow
from ..validation import clean_reason, require_cents, require_choice, require_positive_int
from . import ledger_store
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import require_outlet_in_org, require_product_in_org

logger = logging.getLogger(__name__)

REPAIRABLE_FROM = frozenset({
    DAMAGE_STATUS_INSPECTED,
    DAMAGE_STATUS_REPAIRABLE,
    DAMAGE_STATUS_REPAIRED,
})
SCRAPPABLE_FROM = frozenset({
    DAMAGE_STATUS_INSPECTED,
    DAMAGE_STATUS_REPAIRABLE,
    DAMAGE_STATUS_SCRAPPED,
})
RESOLVABLE_FROM = frozenset({
    DAMAGE_STATUS_REPORTED,
    DAMAGE_STATUS_INSPECTED,
    DAMAGE_STATUS_REPAIRABLE,
    DAMAGE_STATUS_PARTIALLY_REPAIRED,
})
EDITABLE_STATUSES = frozenset({DAMAGE_STATUS_REPORTED, DAMAGE_STATUS_INSPECTED})

TOP_PRODUCTS_LIMIT = 5


def _lock_report(org_id: int, report_id: int) -> DamageReport:
    report = lock_for_update(
        db.session.query(DamageReport).filter_by(id=report_id, org_id=org_id)
    ).first()
    if report is None:
        raise NotFoundError("Damage report", report_id)
    return report


def _require_status(report: DamageReport, allowed, target: str) -> None:
    if report.status not in allowed:
        raise InvalidStateTransitionError("Damage report", report.status, target)


def _action_quantity(report: DamageReport, requested, label: str) -> int:
    """Defaults to everything outstanding; never more than that."""
    if report.quantity <= 0:
        raise ValidationError(
            f"Damage report {report.id} has no outstanding quantity",
            details={"damaged_quantity": report.quantity},
        )
    if requested is None:
        return report.quantity
    quantity = require_positive_int(label, requested)
    if quantity > report.quantity:
        raise ValidationError(
            f"{label} exceeds damaged quantity",
            details={"damaged_quantity": report.quantity, "requested_quantity": quantity},
        )
    return quantity


def _restore_to_available(report: DamageReport, quantity: int, actor_user_id: int | None, reason: str) -> None:
    ledger_store.move_between_buckets(
        org_id=report.org_id,
        outlet_id=report.outlet_id,
        product_id=report.product_id,
        quantity=quantity,
        to_damaged=False,
        change_type=CHANGE_DAMAGE_RESTORE,
        actor_user_id=actor_user_id,
        reason=reason,
        damage_report_id=report.id,
    )


def report_damage(
    *,
    org_id: int,
    outlet_id: int,
    product_id: int,
    quantity,
    reason: str | None,
    severity: str | None = None,
    damage_type: str | None = None,
    notes: str | None = None,
    estimated_loss_cents=None,
    actor_user_id: int | None = None,
) -> DamageReport:
    """
    Open a damage report and move ``quantity`` from available to damaged.

    Raises:
        ValidationError: bad quantity/severity/type or missing reason
        NotFoundError: outlet or product outside the organization
        InsufficientStockError: available stock below ``quantity``
    """
    quantity = require_positive_int("quantity", quantity)
    reason = clean_reason(reason)
    if not reason:
        raise ValidationError("reason is required")
    severity = require_choice("severity", severity or "MEDIUM", DAMAGE_SEVERITIES)
    damage_type = require_choice("damage_type", damage_type or "PHYSICAL", DAMAGE_TYPES)
    estimated_loss_cents = require_cents("estimated_loss_cents", estimated_loss_cents, default=None)

    def _op():
        require_outlet_in_org(outlet_id, org_id)
        require_product_in_org(product_id, org_id)

        report = DamageReport(
            org_id=org_id,
            outlet_id=outlet_id,
            product_id=product_id,
            reported_quantity=quantity,
            quantity=quantity,
            status=DAMAGE_STATUS_REPORTED,
            severity=severity,
            damage_type=damage_type,
            reason=reason,
            notes=notes,
            estimated_loss_cents=estimated_loss_cents,
            reported_by_user_id=actor_user_id,
        )
        db.session.add(report)
        db.session.flush()

        ledger_store.move_between_buckets(
            org_id=org_id,
            outlet_id=outlet_id,
            product_id=product_id,
            quantity=quantity,
            to_damaged=True,
            change_type=CHANGE_DAMAGE_OUT,
            actor_user_id=actor_user_id,
            reason=reason,
            damage_report_id=report.id,
        )
        db.session.commit()
        logger.info(
            "Reported damage org=%s outlet=%s product=%s qty=%s report=%s",
            org_id, outlet_id, product_id, quantity, report.id,
        )
        return report

    return run_with_retry(_op)


def inspect_damage(
    *,
    org_id: int,
    report_id: int,
    severity: str | None = None,
    estimated_loss_cents=None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> DamageReport:
    """REPORTED -> INSPECTED, optionally refining severity and estimated loss."""
    if severity is not None:
        severity = require_choice("severity", severity, DAMAGE_SEVERITIES)
    estimated_loss_cents = require_cents("estimated_loss_cents", estimated_loss_cents, default=None)

    def _op():
        report = _lock_report(org_id, report_id)
        _require_status(report, {DAMAGE_STATUS_REPORTED}, DAMAGE_STATUS_INSPECTED)

        report.status = DAMAGE_STATUS_INSPECTED
        report.inspected_by_user_id = actor_user_id
        report.inspected_at = utcnow()
        if severity is not None:
            report.severity = severity
        if estimated_loss_cents is not None:
            report.estimated_loss_cents = estimated_loss_cents
        if notes is not None:
            report.notes = notes
        db.session.commit()
        return report

    return run_with_retry(_op)


def mark_repairable(*, org_id: int, report_id: int, notes: str | None = None) -> DamageReport:
    """INSPECTED -> REPAIRABLE."""

    def _op():
        report = _lock_report(org_id, report_id)
        _require_status(report, {DAMAGE_STATUS_INSPECTED}, DAMAGE_STATUS_REPAIRABLE)
        report.status = DAMAGE_STATUS_REPAIRABLE
        if notes is not None:
            report.notes = notes
        db.session.commit()
        return report

    return run_with_retry(_op)


def repair_damage(
    *,
    org_id: int,
    report_id: int,
    quantity=None,
    repair_cost_cents=0,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> DamageReport:
    """
    Return repaired units from the damaged bucket to available stock.

    Args:
        quantity: Units repaired; defaults to all outstanding units.
        repair_cost_cents: Added to the report's accumulated repair cost.

    The report becomes REPAIRED once nothing is outstanding, else
    PARTIALLY_REPAIRED.
    """
    repair_cost_cents = require_cents("repair_cost_cents", repair_cost_cents)

    def _op():
        report = _lock_report(org_id, report_id)
        _require_status(report, REPAIRABLE_FROM, DAMAGE_STATUS_REPAIRED)
        repaired = _action_quantity(report, quantity, "quantity_repaired")

        report.repair_actions.append(
            RepairAction(
                quantity=repaired,
                repair_cost_cents=repair_cost_cents,
                notes=notes,
                performed_by_user_id=actor_user_id,
            )
        )
        _restore_to_available(report, repaired, actor_user_id, f"Repair of damage report {report.id}")

        report.quantity -= repaired
        report.repair_cost_cents = (report.repair_cost_cents or 0) + repair_cost_cents
        report.status = DAMAGE_STATUS_REPAIRED if report.quantity == 0 else DAMAGE_STATUS_PARTIALLY_REPAIRED
        db.session.commit()
        logger.info("Repaired damage org=%s report=%s qty=%s status=%s", org_id, report.id, repaired, report.status)
        return report

    return run_with_retry(_op)


def scrap_damage(
    *,
    org_id: int,
    report_id: int,
    quantity=None,
    recovery_value_cents=0,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> DamageReport:
    """
    Write off damaged units. They leave damaged_quantity and never return
    to available stock.
    """
    recovery_value_cents = require_cents("recovery_value_cents", recovery_value_cents)

    def _op():
        report = _lock_report(org_id, report_id)
        _require_status(report, SCRAPPABLE_FROM, DAMAGE_STATUS_SCRAPPED)
        scrapped = _action_quantity(report, quantity, "quantity_scrapped")

        report.scrap_actions.append(
            ScrapAction(
                quantity=scrapped,
                recovery_value_cents=recovery_value_cents,
                notes=notes,
                performed_by_user_id=actor_user_id,
            )
        )
        ledger_store.upsert_damaged(
            org_id=report.org_id,
            outlet_id=report.outlet_id,
            product_id=report.product_id,
            delta=-scrapped,
            change_type=CHANGE_DAMAGE_OUT,
            actor_user_id=actor_user_id,
            reason=f"Scrap of damage report {report.id}",
            damage_report_id=report.id,
        )

        report.quantity -= scrapped
        report.recovery_value_cents = (report.recovery_value_cents or 0) + recovery_value_cents
        report.status = DAMAGE_STATUS_SCRAPPED
        db.session.commit()
        logger.info("Scrapped damage org=%s report=%s qty=%s", org_id, report.id, scrapped)
        return report

    return run_with_retry(_op)


def resolve_damage(
    *,
    org_id: int,
    report_id: int,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> DamageReport:
    """Close the report with no remedial action. No ledger effect."""

    def _op():
        report = _lock_report(org_id, report_id)
        _require_status(report, RESOLVABLE_FROM, DAMAGE_STATUS_RESOLVED)

        report.status = DAMAGE_STATUS_RESOLVED
        report.resolved_by_user_id = actor_user_id
        report.resolved_at = utcnow()
        if notes is not None:
            report.notes = notes
        db.session.commit()
        return report

    return run_with_retry(_op)


def update_damage_report(
    *,
    org_id: int,
    report_id: int,
    quantity=None,
    reason: str | None = None,
    notes: str | None = None,
    severity: str | None = None,
    damage_type: str | None = None,
    estimated_loss_cents=None,
    actor_user_id: int | None = None,
) -> DamageReport:
    """
    Correct an open report (REPORTED/INSPECTED only).

    quantity may only go down; the released units go back to available
    stock with a DAMAGE_RESTORE movement.
    """
    if quantity is not None:
        quantity = require_positive_int("quantity", quantity)
    reason = clean_reason(reason)
    if severity is not None:
        severity = require_choice("severity", severity, DAMAGE_SEVERITIES)
    if damage_type is not None:
        damage_type = require_choice("damage_type", damage_type, DAMAGE_TYPES)
    estimated_loss_cents = require_cents("estimated_loss_cents", estimated_loss_cents, default=None)

    def _op():
        report = _lock_report(org_id, report_id)
        if report.status not in EDITABLE_STATUSES:
            raise InvalidStateTransitionError("Damage report", report.status, "UPDATED")

        if quantity is not None and quantity != report.quantity:
            if quantity > report.quantity:
                raise ValidationError(
                    "Cannot increase damaged quantity in an existing report",
                    details={"original_quantity": report.quantity, "requested_quantity": quantity},
                )
            released = report.quantity - quantity
            _restore_to_available(
                report,
                released,
                actor_user_id,
                f"Correction of damage report {report.id}",
            )
            report.quantity = quantity

        if reason:
            report.reason = reason
        if notes is not None:
            report.notes = notes
        if severity is not None:
            report.severity = severity
        if damage_type is not None:
            report.damage_type = damage_type
        if estimated_loss_cents is not None:
            report.estimated_loss_cents = estimated_loss_cents
        db.session.commit()
        return report

    return run_with_retry(_op)


def delete_damage_report(*, org_id: int, report_id: int, actor_user_id: int | None = None) -> None:
    """
    Delete an open report with no actions, restoring its outstanding units.

    The DAMAGE_OUT/DAMAGE_RESTORE movements keep the deleted report's id.
    """

    def _op():
        report = _lock_report(org_id, report_id)
        if report.status not in EDITABLE_STATUSES:
            raise InvalidStateTransitionError("Damage report", report.status, "DELETED")
        if report.repair_actions or report.scrap_actions:
            raise ValidationError(
                "Cannot delete a damage report with repair or scrap actions",
                details={"report_id": report.id},
            )

        if report.quantity > 0:
            _restore_to_available(
                report,
                report.quantity,
                actor_user_id,
                f"Deleted damage report {report.id}",
            )
        db.session.delete(report)
        db.session.commit()
        logger.info("Deleted damage report org=%s report=%s", org_id, report_id)

    run_with_retry(_op)


def get_damage_report(*, org_id: int, report_id: int) -> DamageReport:
    report = db.session.query(DamageReport).filter_by(id=report_id, org_id=org_id).first()
    if report is None:
        raise NotFoundError("Damage report", report_id)
    return report


def list_damage_reports(
    *,
    org_id: int,
    status: str | None = None,
    outlet_id: int | None = None,
    product_id: int | None = None,
    severity: str | None = None,
    damage_type: str | None = None,
    limit: int = 100,
) -> list[DamageReport]:
    q = db.session.query(DamageReport).filter(DamageReport.org_id == org_id)
    if status is not None:
        q = q.filter(DamageReport.status == status.upper())
    if outlet_id is not None:
        q = q.filter(DamageReport.outlet_id == outlet_id)
    if product_id is not None:
        q = q.filter(DamageReport.product_id == product_id)
    if severity is not None:
        q = q.filter(DamageReport.severity == severity.upper())
    if damage_type is not None:
        q = q.filter(DamageReport.damage_type == damage_type.upper())
    return q.order_by(DamageReport.created_at.desc(), DamageReport.id.desc()).limit(limit).all()


def _count_by(org_id: int, column, outlet_id: int | None) -> dict:
    q = db.session.query(column, func.count(DamageReport.id)).filter(DamageReport.org_id == org_id)
    if outlet_id is not None:
        q = q.filter(DamageReport.outlet_id == outlet_id)
    return {key: count for key, count in q.group_by(column).all()}


def get_damage_stats(*, org_id: int, outlet_id: int | None = None) -> dict:
    """Counts by status/severity/type plus the most-damaged products."""
    base = db.session.query(DamageReport).filter(DamageReport.org_id == org_id)
    if outlet_id is not None:
        base = base.filter(DamageReport.outlet_id == outlet_id)

    totals = base.with_entities(
        func.count(DamageReport.id),
        func.coalesce(func.sum(DamageReport.reported_quantity), 0),
        func.coalesce(func.sum(DamageReport.quantity), 0),
        func.coalesce(func.sum(DamageReport.estimated_loss_cents), 0),
        func.coalesce(func.sum(DamageReport.repair_cost_cents), 0),
        func.coalesce(func.sum(DamageReport.recovery_value_cents), 0),
    ).one()

    top_q = (
        db.session.query(
            Product.id,
            Product.sku,
            Product.name,
            func.sum(DamageReport.reported_quantity).label("reported_quantity"),
            func.count(DamageReport.id),
        )
        .join(Product, Product.id == DamageReport.product_id)
        .filter(DamageReport.org_id == org_id)
    )
    if outlet_id is not None:
        top_q = top_q.filter(DamageReport.outlet_id == outlet_id)
    top_rows = (
        top_q.group_by(Product.id, Product.sku, Product.name)
        .order_by(func.sum(DamageReport.reported_quantity).desc(), Product.id.asc())
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )

    return {
        "total_reports": int(totals[0]),
        "total_reported_quantity": int(totals[1]),
        "outstanding_quantity": int(totals[2]),
        "estimated_loss_cents": int(totals[3]),
        "repair_cost_cents": int(totals[4]),
        "recovery_value_cents": int(totals[5]),
        "by_status": _count_by(org_id, DamageReport.status, outlet_id),
        "by_severity": _count_by(org_id, DamageReport.severity, outlet_id),
        "by_type": _count_by(org_id, DamageReport.damage_type, outlet_id),
        "top_products": [
            {
                "product_id": pid,
                "sku": sku,
                "name": name,
                "reported_quantity": int(qty),
                "report_count": int(count),
            }
            for pid, sku, name, qty, count in top_rows
        ],
    }
