"""Domain error taxonomy.

Every error carries a stable machine-readable ``code``, a human message and the
HTTP status the API layer should answer with.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID


class EngineError(Exception):
    """Base class for all compensation engine errors."""

    code = "ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(EngineError):
    """Raised when an employee's wage configuration cannot be computed."""

    code = "NOT_COMPUTABLE"
    status_code = 422

    def __init__(self, employee_id: UUID | None, reason: str):
        self.employee_id = employee_id
        self.reason = reason
        subject = f"employee {employee_id}" if employee_id else "wage configuration"
        super().__init__(
            f"Salary for {subject} is not computable: {reason}",
            {"employee_id": str(employee_id) if employee_id else None, "reason": reason},
        )


class NotFoundError(EngineError):
    """Raised when a tenant-scoped record does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            {"entity": entity, "id": str(entity_id)},
        )


class ValidationError(EngineError):
    """Raised for invalid request parameters that reach the services."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InsufficientDataError(EngineError):
    """Raised when a statement has neither payslips nor a configuration to estimate from."""

    code = "INSUFFICIENT_DATA"
    status_code = 422

    def __init__(self, employee_id: UUID, year: int):
        self.employee_id = employee_id
        self.year = year
        super().__init__(
            f"No salary data available for employee {employee_id} in {year}",
            {"employee_id": str(employee_id), "year": year},
        )


class InternalError(EngineError):
    """Wraps infrastructure failures without leaking storage details."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message)


class PayslipFrozenError(EngineError):
    """Raised on any attempt to change a payslip of a finalized payrun."""

    code = "PAYSLIP_FROZEN"
    status_code = 409

    def __init__(self, payslip_id: UUID | None):
        self.payslip_id = payslip_id
        super().__init__(
            f"Payslip {payslip_id} belongs to a finalized payrun and cannot be modified",
            {"payslip_id": str(payslip_id) if payslip_id else None},
        )
