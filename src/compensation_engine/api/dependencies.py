"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from compensation_engine.database import init_db
from compensation_engine.errors import ValidationError
from compensation_engine.services import PayrunService, SalaryService, StatementReconstructor


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes that write commit explicitly; anything raised rolls back.
    """
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def _parse_uuid_header(value: str | None, name: str, required: bool) -> UUID | None:
    if not value:
        if required:
            raise ValidationError(f"{name} header is required")
        return None
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid {name} format") from None


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract tenant ID from header."""
    return _parse_uuid_header(x_tenant_id, "X-Tenant-ID", required=True)


async def get_actor_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> UUID | None:
    """Extract the acting user, if the caller identified one."""
    return _parse_uuid_header(x_user_id, "X-User-ID", required=False)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
TenantId = Annotated[UUID, Depends(get_tenant_id)]
ActorId = Annotated[UUID | None, Depends(get_actor_id)]


def get_payrun_service(db: DbSession) -> PayrunService:
    return PayrunService(db)


def get_salary_service(db: DbSession) -> SalaryService:
    return SalaryService(db)


def get_statement_reconstructor(db: DbSession) -> StatementReconstructor:
    return StatementReconstructor(db)


PayrunServiceDep = Annotated[PayrunService, Depends(get_payrun_service)]
SalaryServiceDep = Annotated[SalaryService, Depends(get_salary_service)]
StatementReconstructorDep = Annotated[
    StatementReconstructor, Depends(get_statement_reconstructor)
]
