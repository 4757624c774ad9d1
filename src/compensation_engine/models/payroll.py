"""Payrun and payslip models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compensation_engine.errors import PayslipFrozenError
from compensation_engine.models.base import Base, JSONType, TimestampMixin, utcnow

PAYRUN_STATUSES = ("draft", "computed", "validated", "cancelled", "done")


class Payrun(Base, TimestampMixin):
    """One payroll cycle for a tenant and month. Never deleted."""

    __tablename__ = "payrun"

    payrun_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_month: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    employees_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gross_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    net_total: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00")
    )
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    validated_by: Mapped[UUID | None] = mapped_column(nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'computed', 'validated', 'cancelled', 'done')",
            name="payrun_status_check",
        ),
        # One live payrun per tenant and month; cancelled ones free the slot
        Index(
            "uq_payrun_tenant_period_active",
            "tenant_id",
            "period_month",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
    )

    payslips: Mapped[list[Payslip]] = relationship(back_populates="payrun")


class Payslip(Base, TimestampMixin):
    """One employee's computed snapshot within a payrun."""

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    payrun_id: Mapped[UUID] = mapped_column(
        ForeignKey("payrun.payrun_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_month: Mapped[date] = mapped_column(Date, nullable=False)

    basic: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    components: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    allowances_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gross_monthly: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    gross_yearly: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    deduction_employee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    deduction_employer: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fixed_deduction: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payable_days: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    total_working_days: Mapped[int] = mapped_column(Integer, nullable=False)
    attendance_days_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_leave_days_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    calculation_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="computed")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        UniqueConstraint("payrun_id", "employee_id", name="payslip_payrun_employee_unique"),
        CheckConstraint(
            "status IN ('draft', 'computed', 'validated', 'cancelled', 'done')",
            name="payslip_status_check",
        ),
        Index("ix_payslip_employee_period", "tenant_id", "employee_id", "period_month"),
    )

    payrun: Mapped[Payrun] = relationship(back_populates="payslips")

    @property
    def allowances(self) -> dict[str, Any]:
        return dict((self.components or {}).get("allowances", {}))


def _persisted_status(target: Payslip) -> str | None:
    history = inspect(target).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


@event.listens_for(Payslip, "before_update")
def _block_frozen_update(mapper, connection, target: Payslip) -> None:
    if _persisted_status(target) == "done":
        raise PayslipFrozenError(target.payslip_id)


@event.listens_for(Payslip, "before_delete")
def _block_frozen_delete(mapper, connection, target: Payslip) -> None:
    if _persisted_status(target) == "done":
        raise PayslipFrozenError(target.payslip_id)
