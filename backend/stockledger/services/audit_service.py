# Overview: Read-only consistency audit of ledger counters against the movement log.

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import LedgerEntry, MovementLogEntry
from .movement_log import latest_movement_for_entry


@dataclass
class AuditFinding:
    ledger_entry_id: int
    outlet_id: int
    product_id: int
    problem: str

    def to_dict(self) -> dict:
        return {
            "ledger_entry_id": self.ledger_entry_id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "problem": self.problem,
        }


@dataclass
class AuditReport:
    entries_checked: int = 0
    movements_checked: int = 0
    findings: list[AuditFinding] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings


def _audit_entry(entry: LedgerEntry, report: AuditReport) -> None:
    def flag(problem: str) -> None:
        report.findings.append(AuditFinding(entry.id, entry.outlet_id, entry.product_id, problem))

    if entry.quantity < 0:
        flag(f"negative quantity {entry.quantity}")
    if entry.damaged_quantity < 0:
        flag(f"negative damaged_quantity {entry.damaged_quantity}")

    movements = (
        db.session.query(MovementLogEntry)
        .filter_by(ledger_entry_id=entry.id)
        .order_by(MovementLogEntry.id.asc())
        .all()
    )
    report.movements_checked += len(movements)
    if not movements:
        return

    previous = None
    for movement in movements:
        if movement.quantity_after - movement.quantity_before != movement.change_amount:
            flag(f"movement {movement.id} change_amount does not match before/after")
        if (
            movement.damaged_quantity_after - movement.damaged_quantity_before
            != movement.damaged_change_amount
        ):
            flag(f"movement {movement.id} damaged_change_amount does not match before/after")
        if previous is not None and (
            movement.quantity_before != previous.quantity_after
            or movement.damaged_quantity_before != previous.damaged_quantity_after
        ):
            flag(f"movement {movement.id} does not continue from movement {previous.id}")
        previous = movement

    latest = latest_movement_for_entry(entry.id)
    if latest.quantity_after != entry.quantity:
        flag(f"quantity {entry.quantity} != last movement quantity_after {latest.quantity_after}")
    if latest.damaged_quantity_after != entry.damaged_quantity:
        flag(
            f"damaged_quantity {entry.damaged_quantity} != last movement "
            f"damaged_quantity_after {latest.damaged_quantity_after}"
        )


def audit_ledger(org_id: int | None = None) -> AuditReport:
    """
    Check every ledger entry (optionally one organization's):
    - counters are non-negative
    - each movement's amounts agree with its before/after values
    - consecutive movements chain (before == previous after)
    - the last movement's after-values equal the stored counters
    """
    q = db.session.query(LedgerEntry)
    if org_id is not None:
        q = q.filter(LedgerEntry.org_id == org_id)

    report = AuditReport()
    for entry in q.order_by(LedgerEntry.id.asc()).all():
        report.entries_checked += 1
        _audit_entry(entry, report)
    return report
