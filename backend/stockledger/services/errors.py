# Overview: Typed errors raised by the fulfillment and inventory services.

from __future__ import annotations


class FulfillmentError(Exception):
    """
    Base class for domain errors surfaced to callers.

    code is stable and machine-readable; http_status is what the routes
    answer with. details carries structured context (ids, shortfalls).
    """
    code = "FULFILLMENT_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class NotFound(FulfillmentError):
    """Order, warehouse, product or receipt absent for the tenant."""
    code = "NOT_FOUND"
    http_status = 404


class InvalidTransition(FulfillmentError):
    """Target status is not reachable from the current one."""
    code = "INVALID_TRANSITION"
    http_status = 409


class AlreadyInState(FulfillmentError):
    """The order already has the requested status."""
    code = "ALREADY_IN_STATE"
    http_status = 409


class NoWarehouseAvailable(FulfillmentError):
    """The tenant has no active warehouse to deduct from."""
    code = "NO_WAREHOUSE_AVAILABLE"
    http_status = 422


class InsufficientStock(FulfillmentError):
    """On-hand quantity is lower than requested and the shortfall policy is 'reject'."""
    code = "INSUFFICIENT_STOCK"
    http_status = 422


class StorageConflict(FulfillmentError):
    """
    A ledger uniqueness violation that no recorded movement explains.

    A violation caused by a concurrent caller that already wrote the same
    rows is not an error; the adjuster treats it as already applied.
    """
    code = "STORAGE_CONFLICT"
    http_status = 409


class PartialCascadeFailure(FulfillmentError):
    """
    One or more receipts could not be voided after an order unwind.

    Recorded on the transition result and logged; the order change stands.
    """
    code = "PARTIAL_CASCADE_FAILURE"
    http_status = 207


class ReceiptAlreadyVoided(InvalidTransition):
    code = "RECEIPT_ALREADY_VOIDED"
