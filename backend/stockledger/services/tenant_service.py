"""
Tenant scoping helpers.

WHY: Every ledger key is (organization, outlet, product). Outlets and
products referenced by a request must belong to the caller's organization;
a foreign id is reported exactly like a missing one (NotFoundError) so
cross-tenant existence never leaks.

USAGE:
    from stockledger.services.tenant_service import require_outlet_in_org

    outlet = require_outlet_in_org(outlet_id, org_id)
"""
from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError
from ..models import Organization, Outlet, Product


def require_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id) if org_id is not None else None
    if org is None or not org.is_active:
        raise NotFoundError("Organization", org_id)
    return org


def require_outlet_in_org(outlet_id: int, org_id: int, *, require_active: bool = False) -> Outlet:
    outlet = db.session.query(Outlet).filter_by(id=outlet_id, org_id=org_id).first()
    if outlet is None:
        raise NotFoundError("Outlet", outlet_id)
    if require_active and not outlet.is_active:
        raise NotFoundError("Outlet", outlet_id)
    return outlet


def require_product_in_org(product_id: int, org_id: int, *, require_active: bool = False) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, org_id=org_id).first()
    if product is None:
        raise NotFoundError("Product", product_id)
    if require_active and not product.is_active:
        raise NotFoundError("Product", product_id)
    return product
