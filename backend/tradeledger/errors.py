# Overview: Error taxonomy raised by the ledger services and mapped to HTTP responses by routes.

"""
Ledger error taxonomy.

Every error raised by a coordinated operation leaves all records unchanged:
the coordinator rolls the session back before the exception reaches the
caller. Routes turn these into JSON bodies with ``error_response``.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for business errors surfaced to the caller."""

    status_code = 400
    code = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        body.update(self.details)
        return body


class ValidationError(LedgerError):
    """Missing or malformed input (reason text, positive amount, selected obligation)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class Conflict(LedgerError):
    """Uniqueness clash such as a duplicate SKU or warehouse code."""

    status_code = 409
    code = "CONFLICT"


class NotFound(LedgerError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "entity_id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStock(LedgerError):
    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, available: int, requested: int, warehouse_id: int | None = None):
        super().__init__(
            f"Insufficient stock for '{product_name}': requested {requested}, available {available}",
            details={
                "product": product_name,
                "available": available,
                "requested": requested,
                "warehouse_id": warehouse_id,
            },
        )
        self.product_name = product_name
        self.available = available
        self.requested = requested
        self.warehouse_id = warehouse_id


class InsufficientCredit(LedgerError):
    status_code = 409
    code = "INSUFFICIENT_CREDIT"

    def __init__(self, available_cents: int, requested_cents: int):
        super().__init__(
            f"Credit balance {available_cents} is lower than the requested {requested_cents}",
            details={"available_cents": available_cents, "requested_cents": requested_cents},
        )
        self.available_cents = available_cents
        self.requested_cents = requested_cents


class CreditInUse(LedgerError):
    """The deposited credit has already been spent and cannot be withdrawn."""

    status_code = 409
    code = "CREDIT_IN_USE"

    def __init__(self, available_cents: int, required_cents: int):
        super().__init__(
            f"Credit already used: current balance {available_cents}, reversal needs {required_cents}",
            details={"available_cents": available_cents, "required_cents": required_cents},
        )
        self.available_cents = available_cents
        self.required_cents = required_cents


class ConcurrencyExhausted(LedgerError):
    status_code = 503
    code = "CONCURRENCY_EXHAUSTED"

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            f"{operation} could not commit after {attempts} attempt(s) because of concurrent writes",
            details={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts


class ConfirmationRequired(LedgerError):
    """Soft warning: the caller may repeat the request with an explicit override."""

    status_code = 409
    code = "CONFIRMATION_REQUIRED"


class CreditLimitConfirmationRequired(ConfirmationRequired):
    code = "CREDIT_LIMIT_CONFIRMATION_REQUIRED"

    def __init__(self, projected_cents: int, limit_cents: int):
        super().__init__(
            f"Projected balance {projected_cents} exceeds the credit limit {limit_cents}",
            details={"projected_cents": projected_cents, "limit_cents": limit_cents},
        )
        self.projected_cents = projected_cents
        self.limit_cents = limit_cents


class SurplusConfirmationRequired(ConfirmationRequired):
    code = "SURPLUS_CONFIRMATION_REQUIRED"

    def __init__(self, amount_cents: int, total_debt_cents: int):
        super().__init__(
            f"Payment {amount_cents} exceeds the total debt {total_debt_cents}; the surplus would become credit",
            details={"amount_cents": amount_cents, "total_debt_cents": total_debt_cents},
        )
        self.amount_cents = amount_cents
        self.total_debt_cents = total_debt_cents


def error_response(exc: LedgerError):
    """Flask (body, status) tuple for a ledger error."""
    return exc.to_dict(), exc.status_code
