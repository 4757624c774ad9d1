"""Payrun state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from compensation_engine.errors import EngineError


class PayrunStatus(str, Enum):
    """Payrun status values."""

    DRAFT = "draft"
    COMPUTED = "computed"
    VALIDATED = "validated"
    DONE = "done"
    CANCELLED = "cancelled"


class InvalidTransitionError(EngineError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = str(getattr(from_status, "value", from_status))
        self.to_status = str(getattr(to_status, "value", to_status))
        self.reason = reason
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"from_status": self.from_status, "to_status": self.to_status},
        )


class PayrunStateMachine:
    """State machine for payrun status transitions.

    Allowed transitions:
    - draft → computed
    - computed → computed (recompute)
    - computed → validated
    - validated → done
    - draft, computed, validated → cancelled
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        PayrunStatus.DRAFT: [PayrunStatus.COMPUTED, PayrunStatus.CANCELLED],
        PayrunStatus.COMPUTED: [
            PayrunStatus.COMPUTED,
            PayrunStatus.VALIDATED,
            PayrunStatus.CANCELLED,
        ],
        PayrunStatus.VALIDATED: [PayrunStatus.DONE, PayrunStatus.CANCELLED],
        PayrunStatus.DONE: [],  # Terminal state
        PayrunStatus.CANCELLED: [],  # Terminal state
    }

    # Statuses where a full compute may run
    COMPUTE_ALLOWED = {
        PayrunStatus.DRAFT,
        PayrunStatus.COMPUTED,
    }

    # Statuses where a single payslip may be recomputed
    PAYSLIP_RECOMPUTE_ALLOWED = {
        PayrunStatus.DRAFT,
        PayrunStatus.COMPUTED,
        PayrunStatus.VALIDATED,
    }

    TERMINAL = {
        PayrunStatus.DONE,
        PayrunStatus.CANCELLED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(PayrunStatus(from_status), [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_compute(cls, status: str) -> bool:
        return PayrunStatus(status) in cls.COMPUTE_ALLOWED

    @classmethod
    def can_recompute_payslip(cls, status: str) -> bool:
        return PayrunStatus(status) in cls.PAYSLIP_RECOMPUTE_ALLOWED

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return PayrunStatus(status) in cls.TERMINAL

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(PayrunStatus(current_status), [])
