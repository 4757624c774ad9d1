"""Service layer: payrun lifecycle, statements and salary configuration."""

from compensation_engine.services.locking_service import LockingService
from compensation_engine.services.payrun_service import (
    ComputeResult,
    DuplicatePayrunError,
    PayrollWarnings,
    PayrunService,
)
from compensation_engine.services.salary_service import EmployeeSalary, SalaryService
from compensation_engine.services.snapshot_service import PayslipSnapshotter
from compensation_engine.services.state_machine import (
    InvalidTransitionError,
    PayrunStateMachine,
    PayrunStatus,
)
from compensation_engine.services.statement_service import (
    AnnualStatement,
    StatementReconstructor,
)

__all__ = [
    "AnnualStatement",
    "ComputeResult",
    "DuplicatePayrunError",
    "EmployeeSalary",
    "InvalidTransitionError",
    "LockingService",
    "PayrollWarnings",
    "PayrunService",
    "PayrunStateMachine",
    "PayrunStatus",
    "PayslipSnapshotter",
    "SalaryService",
    "StatementReconstructor",
]
