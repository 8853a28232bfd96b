"""
Typed errors for the retail ledger.

Every error carries a machine-readable ``code``, an actionable ``message``
and structured ``details`` so that callers (routes, CLI, tests) can branch on
the type instead of parsing strings:

    LedgerError
    +-- ValidationError
    |   +-- EmptyCart
    +-- StockError
    |   +-- InsufficientStock
    |   +-- UnitMismatch
    |   +-- ProductNotFound
    |   +-- AmbiguousScentResolution
    +-- NotFound
    +-- Conflict
    +-- TransitionError
    |   +-- AlreadyVoided
    |   +-- AlreadyDecided
    |   +-- AlreadySettled
    |   +-- NotApproved
    +-- PersistenceFailure
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the ledger services."""

    code = "ledger_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""

    code = "validation_error"


class EmptyCart(ValidationError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty. Add at least one item before completing the sale."):
        super().__init__(message)


# =============================================================================
# Stock
# =============================================================================

class StockError(LedgerError):
    code = "stock_error"
    http_status = 409


class InsufficientStock(StockError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, product_name: str, requested, available, unit: str):
        super().__init__(
            f"Out of stock: {product_name} has {available} {unit} available, {requested} requested.",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested": requested,
                "available": available,
                "unit": unit,
            },
        )


class UnitMismatch(StockError):
    code = "unit_mismatch"
    http_status = 422

    def __init__(self, product_id: int, product_name: str, tracking_type: str, unit: str):
        super().__init__(
            f"Wrong unit type: {product_name} is tracked in {tracking_type}, not {unit}.",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "tracking_type": tracking_type,
                "unit": unit,
            },
        )


class ProductNotFound(StockError):
    code = "product_not_found"
    http_status = 404

    def __init__(self, message: str = "Product not found", details: dict | None = None):
        super().__init__(message, details)


class AmbiguousScentResolution(StockError):
    code = "ambiguous_scent"

    def __init__(self, name: str, department_id: int | None, candidate_ids: list[int]):
        super().__init__(
            f"Scent '{name}' matches more than one stock row; pick the scent explicitly.",
            details={
                "name": name,
                "department_id": department_id,
                "candidate_ids": candidate_ids,
            },
        )


# =============================================================================
# Lookups and state transitions
# =============================================================================

class NotFound(LedgerError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity.capitalize()} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )


class Conflict(LedgerError):
    """Duplicate of a record that must be unique (e.g. a second count for one shift)."""

    code = "conflict"
    http_status = 409


class TransitionError(LedgerError):
    code = "invalid_transition"
    http_status = 409


class AlreadyVoided(TransitionError):
    code = "already_voided"


class AlreadyDecided(TransitionError):
    code = "already_decided"


class AlreadySettled(TransitionError):
    code = "already_settled"


class NotApproved(TransitionError):
    code = "not_approved"


# =============================================================================
# Storage
# =============================================================================

class PersistenceFailure(LedgerError):
    """Transient storage problem; the caller may retry the whole operation."""

    code = "persistence_failure"
    http_status = 503
    retryable = True

    def __init__(self, message: str = "Could not save to the database. Check the connection and try again.",
                 details: dict | None = None):
        super().__init__(message, details)
