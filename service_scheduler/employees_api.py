from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .authn import AuthIdentity
from .db import get_db
from .deps import get_current_tenant, require_admin, require_identity
from .identity import Actor, deactivate_employee, list_employees, provision_employee, resolve_employee
from .ids import AuthIdentityId, EmployeeId
from .models import Employee, Tenant
from .schemas import EmployeeOut, EmployeeProvision

router = APIRouter(prefix="/api/employees", tags=["employees"])


def _to_employee_out(e: Employee) -> EmployeeOut:
    return EmployeeOut(
        id=e.id,
        auth_identity_id=e.auth_identity_id,
        name=e.name,
        email=e.email,
        position=e.position,
        is_active=bool(e.is_active),
        created_at=e.created_at,
    )


@router.post("", response_model=EmployeeOut)
def add_employee(
    payload: EmployeeProvision,
    response: Response,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    employee, created = provision_employee(
        db,
        tenant.id,
        AuthIdentityId(payload.auth_identity_id),
        name=payload.name,
        email=payload.email,
        position=payload.position,
        role=payload.role,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return _to_employee_out(employee)


@router.get("", response_model=list[EmployeeOut])
def get_employees(
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return [_to_employee_out(e) for e in list_employees(db, tenant.id, include_inactive=include_inactive)]


@router.get("/me", response_model=EmployeeOut)
def get_my_employee(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    identity: AuthIdentity = Depends(require_identity),
):
    return _to_employee_out(resolve_employee(db, tenant.id, identity.auth_identity_id))


@router.delete("/{employee_id}", response_model=EmployeeOut)
def archive_employee(
    employee_id: str,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
    actor: Actor = Depends(require_admin),
):
    return _to_employee_out(deactivate_employee(db, tenant.id, EmployeeId(employee_id)))
