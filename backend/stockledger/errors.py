# Overview: Domain error taxonomy shared by the ledger services and API routes.

"""
Stock ledger error taxonomy.

Every error carries a machine-readable ``code`` and a ``details`` dict with
enough structure (available vs. requested quantities, current vs. requested
status) for a caller to render an actionable message.

Validation and not-found errors are raised before any ledger mutation.
Anything outside this taxonomy is an internal failure and surfaces as a
generic 500 from the API layer.
"""
from __future__ import annotations


class StockLedgerError(Exception):
    """Base class for domain errors raised by the ledger engine."""

    code = "STOCK_LEDGER_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(StockLedgerError):
    """Referenced organization, outlet, product, sale or report does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id=None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message, details={"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStockError(StockLedgerError):
    """Requested decrement exceeds the quantity held in the ledger bucket."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(
        self,
        *,
        available: int,
        requested: int,
        product_id: int | None = None,
        outlet_id: int | None = None,
        bucket: str = "AVAILABLE",
        message: str | None = None,
    ):
        if message is None:
            message = f"Insufficient stock: available {available}, requested {requested}"
        super().__init__(
            message,
            details={
                "available": available,
                "requested": requested,
                "product_id": product_id,
                "outlet_id": outlet_id,
                "bucket": bucket,
            },
        )
        self.available = available
        self.requested = requested
        self.product_id = product_id
        self.outlet_id = outlet_id
        self.bucket = bucket


class InvalidTransferError(StockLedgerError):
    """Source and destination outlets are the same."""

    code = "INVALID_TRANSFER"
    http_status = 400


class InvalidStateTransitionError(StockLedgerError):
    """Status change is not permitted from the document's current status."""

    code = "INVALID_STATE_TRANSITION"
    http_status = 409

    def __init__(self, entity: str, current_status: str, requested_status: str):
        super().__init__(
            f"Cannot move {entity} from {current_status} to {requested_status}",
            details={
                "entity": entity,
                "current_status": current_status,
                "requested_status": requested_status,
            },
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ValidationError(StockLedgerError, ValueError):
    """400-level input problem (malformed payload, non-positive quantity, ...)."""

    code = "VALIDATION_ERROR"
    http_status = 400
