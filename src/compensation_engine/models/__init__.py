"""ORM models."""

from compensation_engine.models.audit import AuditEvent
from compensation_engine.models.base import Base
from compensation_engine.models.company import Employee, Tenant
from compensation_engine.models.payroll import PAYRUN_STATUSES, Payrun, Payslip
from compensation_engine.models.salary import WageConfiguration

__all__ = [
    "AuditEvent",
    "Base",
    "Employee",
    "PAYRUN_STATUSES",
    "Payrun",
    "Payslip",
    "Tenant",
    "WageConfiguration",
]
