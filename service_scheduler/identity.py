"""Identity resolution between auth subjects and employee records.

Staffing rows reference ``employees.id``. Callers arrive with the auth
provider's subject. Every path from a caller to staffing data goes through
``resolve_employee_id`` so an auth subject can never be written where an
employee id belongs.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .authn import AuthIdentity
from .errors import EmployeeInactive, IdentityNotProvisioned, NotFound, ValidationFailed
from .ids import AuthIdentityId, EmployeeId
from .models import AuthUser, Employee, utc_now_naive
from .observability import get_logger

log = get_logger("service_scheduler.identity")

_PROVISION_ATTEMPTS = 3


def get_employee_by_auth_identity(
    db: Session, tenant_id: int, auth_identity_id: AuthIdentityId
) -> Employee | None:
    return db.execute(
        select(Employee).where(
            Employee.tenant_id == tenant_id,
            Employee.auth_identity_id == str(auth_identity_id),
        )
    ).scalar_one_or_none()


def resolve_employee(db: Session, tenant_id: int, auth_identity_id: AuthIdentityId) -> Employee:
    employee = get_employee_by_auth_identity(db, tenant_id, auth_identity_id)
    if employee is None:
        raise IdentityNotProvisioned()
    if not bool(employee.is_active):
        raise EmployeeInactive()
    return employee


def resolve_employee_id(db: Session, tenant_id: int, auth_identity_id: AuthIdentityId) -> EmployeeId:
    return EmployeeId(resolve_employee(db, tenant_id, auth_identity_id).id)


@dataclass(frozen=True)
class Actor:
    """The caller of a staffing command, resolved into the employee keyspace."""

    auth_identity_id: AuthIdentityId
    email: str
    is_admin: bool
    employee_id: EmployeeId | None = None

    @property
    def label(self) -> str:
        return self.email or str(self.auth_identity_id)


def build_actor(db: Session, tenant_id: int, identity: AuthIdentity) -> Actor:
    """Admins may act without an employee record; everyone else must resolve."""
    if identity.is_admin:
        employee = get_employee_by_auth_identity(db, tenant_id, identity.auth_identity_id)
        employee_id = EmployeeId(employee.id) if employee is not None and employee.is_active else None
    else:
        employee_id = resolve_employee_id(db, tenant_id, identity.auth_identity_id)
    return Actor(
        auth_identity_id=identity.auth_identity_id,
        email=identity.email,
        is_admin=identity.is_admin,
        employee_id=employee_id,
    )


def get_employee(db: Session, tenant_id: int, employee_id: EmployeeId) -> Employee:
    employee = db.execute(
        select(Employee).where(Employee.tenant_id == tenant_id, Employee.id == str(employee_id))
    ).scalar_one_or_none()
    if employee is None:
        raise NotFound("Employee not found")
    return employee


def list_employees(db: Session, tenant_id: int, include_inactive: bool = False) -> list[Employee]:
    stmt = select(Employee).where(Employee.tenant_id == tenant_id)
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    return db.execute(stmt.order_by(Employee.name.asc(), Employee.id.asc())).scalars().all()


def _apply_profile(employee: Employee, name: str, email: str | None, position: str | None) -> None:
    employee.name = name.strip()
    if email:
        employee.email = email.strip().lower()
    if position is not None:
        employee.position = position.strip() or None


def provision_employee(
    db: Session,
    tenant_id: int,
    auth_identity_id: AuthIdentityId,
    *,
    name: str,
    email: str | None = None,
    position: str | None = None,
    role: str = "employee",
) -> tuple[Employee, bool]:
    """Get or create the employee controlled by ``auth_identity_id``.

    Returns ``(employee, created)``. An archived employee is reactivated. Two
    concurrent calls for the same subject race on the unique
    ``employees.auth_identity_id`` constraint; the loser rolls back and returns
    the winner's row.
    """
    subject = str(auth_identity_id).strip()
    if not subject:
        raise ValidationFailed("auth_identity_id is required")

    for _ in range(_PROVISION_ATTEMPTS):
        existing = get_employee_by_auth_identity(db, tenant_id, AuthIdentityId(subject))
        if existing is not None:
            was_inactive = not bool(existing.is_active)
            _apply_profile(existing, name, email, position)
            existing.is_active = True
            existing.updated_at = utc_now_naive()
            db.commit()
            db.refresh(existing)
            if was_inactive:
                log.info("employee_reactivated", employee_id=existing.id)
            return existing, False

        auth_user = db.get(AuthUser, subject)
        if auth_user is not None and int(auth_user.tenant_id) != int(tenant_id):
            raise ValidationFailed("auth identity belongs to another tenant")
        if auth_user is None:
            db.add(
                AuthUser(
                    id=subject,
                    tenant_id=tenant_id,
                    email=(email or "").strip().lower(),
                    role=(role or "employee").strip().lower(),
                    created_at=utc_now_naive(),
                )
            )

        employee = Employee(tenant_id=tenant_id, auth_identity_id=subject, is_active=True)
        _apply_profile(employee, name, email, position)
        employee.created_at = utc_now_naive()
        employee.updated_at = utc_now_naive()
        db.add(employee)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            log.info("employee_provision_conflict", auth_identity_id=subject)
            continue
        db.refresh(employee)
        log.info("employee_provisioned", employee_id=employee.id, auth_identity_id=subject)
        return employee, True

    raise ValidationFailed("Could not provision employee, retry later")


def deactivate_employee(db: Session, tenant_id: int, employee_id: EmployeeId) -> Employee:
    employee = get_employee(db, tenant_id, employee_id)
    if bool(employee.is_active):
        employee.is_active = False
        employee.updated_at = utc_now_naive()
        db.commit()
        db.refresh(employee)
        log.info("employee_deactivated", employee_id=employee.id)
    return employee
