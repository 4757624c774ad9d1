"""Wage configuration model.

Configurations are versioned by insertion: the authoritative row for an
employee is the most recently created one.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from compensation_engine.models.base import Base, JSONType, TimestampMixin


class WageConfiguration(Base, TimestampMixin):
    """Per-employee wage and component rules.

    ``component_config`` maps component names to ``{"type", "value"}`` rules.
    When it is empty the legacy ``basic`` and ``allowances`` columns are used
    as stored.
    """

    __tablename__ = "wage_configuration"

    wage_configuration_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    wage: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    wage_type: Mapped[str] = mapped_column(String, nullable=False, default="FIXED")
    component_config: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    deduction_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    fixed_deduction: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Legacy storage, also refreshed with resolved values on every update
    basic: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    allowances: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("wage_type IN ('FIXED')", name="wage_configuration_wage_type_check"),
        Index("ix_wage_configuration_employee", "tenant_id", "employee_id", "created_at"),
    )
