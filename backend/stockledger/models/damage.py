from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


DAMAGE_STATUS_REPORTED = "REPORTED"
DAMAGE_STATUS_INSPECTED = "INSPECTED"
DAMAGE_STATUS_REPAIRABLE = "REPAIRABLE"
DAMAGE_STATUS_REPAIRED = "REPAIRED"
DAMAGE_STATUS_PARTIALLY_REPAIRED = "PARTIALLY_REPAIRED"
DAMAGE_STATUS_SCRAPPED = "SCRAPPED"
DAMAGE_STATUS_RESOLVED = "RESOLVED"

DAMAGE_SEVERITIES = frozenset({"LOW", "MEDIUM", "HIGH", "CRITICAL"})
DAMAGE_TYPES = frozenset({"PHYSICAL", "WATER", "EXPIRED", "DEFECTIVE", "OTHER"})


class DamageReport(db.Model):
    """
    Damaged-stock report for one product at one outlet.

    QUANTITIES:
    - reported_quantity: units moved into the damaged bucket at creation (fixed)
    - quantity: units still outstanding in the damaged bucket for this report.
      Only ever decreases (repair, scrap, or a downward correction while
      REPORTED/INSPECTED); never increases.

    Costs are accumulated in cents across child actions.
    """
    __tablename__ = "damage_reports"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_damage_quantity_non_negative"),
        db.Index("ix_damage_org_status_created", "org_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    reported_quantity = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(24), nullable=False, default=DAMAGE_STATUS_REPORTED, index=True)
    severity = db.Column(db.String(16), nullable=False, default="MEDIUM")
    damage_type = db.Column(db.String(16), nullable=False, default="PHYSICAL")
    reason = db.Column(db.String(255), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    estimated_loss_cents = db.Column(db.Integer, nullable=True)
    repair_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    recovery_value_cents = db.Column(db.Integer, nullable=False, default=0)

    reported_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    inspected_by_user_id = db.Column(db.Integer, nullable=True)
    inspected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_user_id = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    outlet = db.relationship("Outlet")
    repair_actions = db.relationship(
        "RepairAction",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="RepairAction.id",
    )
    scrap_actions = db.relationship(
        "ScrapAction",
        back_populates="report",
        cascade="all, delete-orphan",
        order_by="ScrapAction.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def repaired_quantity(self) -> int:
        return sum(a.quantity for a in self.repair_actions)

    @property
    def scrapped_quantity(self) -> int:
        return sum(a.quantity for a in self.scrap_actions)

    def to_dict(self, include_actions: bool = False) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "reported_quantity": self.reported_quantity,
            "quantity": self.quantity,
            "repaired_quantity": self.repaired_quantity,
            "scrapped_quantity": self.scrapped_quantity,
            "status": self.status,
            "severity": self.severity,
            "damage_type": self.damage_type,
            "reason": self.reason,
            "notes": self.notes,
            "estimated_loss_cents": self.estimated_loss_cents,
            "repair_cost_cents": self.repair_cost_cents,
            "recovery_value_cents": self.recovery_value_cents,
            "reported_by_user_id": self.reported_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "inspected_by_user_id": self.inspected_by_user_id,
            "inspected_at": to_utc_z(self.inspected_at) if self.inspected_at else None,
            "resolved_by_user_id": self.resolved_by_user_id,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "version_id": self.version_id,
        }
        if include_actions:
            data["repair_actions"] = [a.to_dict() for a in self.repair_actions]
            data["scrap_actions"] = [a.to_dict() for a in self.scrap_actions]
        return data


class RepairAction(db.Model):
    """Units returned from the damaged bucket to available stock."""
    __tablename__ = "damage_repair_actions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("damage_reports.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    repair_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    performed_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    report = db.relationship("DamageReport", back_populates="repair_actions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "report_id": self.report_id,
            "quantity": self.quantity,
            "repair_cost_cents": self.repair_cost_cents,
            "notes": self.notes,
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class ScrapAction(db.Model):
    """Units written off from the damaged bucket; they leave the system."""
    __tablename__ = "damage_scrap_actions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(db.Integer, db.ForeignKey("damage_reports.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    recovery_value_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    performed_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    report = db.relationship("DamageReport", back_populates="scrap_actions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "report_id": self.report_id,
            "quantity": self.quantity,
            "recovery_value_cents": self.recovery_value_cents,
            "notes": self.notes,
            "performed_by_user_id": self.performed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
