"""Shared fixtures: one SQLite file per test and signed bearer tokens."""

import os
import tempfile
from datetime import date
from pathlib import Path

import pytest

# Must run before service_scheduler is imported.
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{Path(tempfile.gettempdir()) / 'service_scheduler_pytest.db'}"
)
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key")
os.environ.setdefault("NOTIFY_TRANSPORT", "log")

from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from service_scheduler import models  # noqa: E402,F401
from service_scheduler.api import router  # noqa: E402
from service_scheduler.authn import AuthIdentity, create_access_token  # noqa: E402
from service_scheduler.db import Base, build_engine, get_db  # noqa: E402
from service_scheduler.employees_api import router as employees_router  # noqa: E402
from service_scheduler.errors import register_error_handlers  # noqa: E402
from service_scheduler.identity import Actor, build_actor, provision_employee  # noqa: E402
from service_scheduler.ids import AuthIdentityId, EmployeeId  # noqa: E402
from service_scheduler.mobile_api import router as mobile_router  # noqa: E402
from service_scheduler.models import Booking  # noqa: E402
from service_scheduler.platform_api import router as platform_router  # noqa: E402
from service_scheduler.platform_api import staffing_router  # noqa: E402
from service_scheduler.tenants import get_or_create_tenant  # noqa: E402

TENANT = "acme"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_staffing.db"


@pytest.fixture
def session_factory(db_path):
    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def client(session_factory):
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(router)
    app.include_router(employees_router)
    app.include_router(mobile_router)
    app.include_router(platform_router)
    app.include_router(staffing_router)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def bearer(subject: str, role: str = "employee", tenant: str = TENANT, email: str | None = None) -> dict:
    identity = AuthIdentity(
        auth_identity_id=AuthIdentityId(subject),
        email=email or f"{subject}@example.test",
        role=role,
        tenant_slug=tenant,
    )
    return {
        "Authorization": f"Bearer {create_access_token(identity=identity)}",
        "X-Tenant-Slug": tenant,
    }


@pytest.fixture
def admin_headers():
    return bearer("auth-admin", role="admin", email="admin@example.test")


@pytest.fixture
def headers_for():
    return bearer


class StaffingSeed:
    """Writes fixtures through the service layer, one short session per call."""

    def __init__(self, session_factory, tenant_slug: str = TENANT):
        self.session_factory = session_factory
        with session_factory() as db:
            self.tenant_id = get_or_create_tenant(db, tenant_slug).id

    def employee(self, name: str, subject: str | None = None) -> tuple[EmployeeId, AuthIdentityId]:
        auth_id = AuthIdentityId(subject or f"auth-{name.lower()}")
        with self.session_factory() as db:
            employee, _ = provision_employee(db, self.tenant_id, auth_id, name=name)
            return EmployeeId(employee.id), auth_id

    def booking(self, staff_required: int = 1, status: str = "pending") -> int:
        with self.session_factory() as db:
            booking = Booking(
                tenant_id=self.tenant_id,
                customer_name="Jane Customer",
                service_name="Deep Clean",
                scheduled_date=date(2030, 5, 14),
                scheduled_time="09:30",
                status=status,
                staff_required=staff_required,
                staff_fulfilled=0,
            )
            db.add(booking)
            db.commit()
            return booking.id

    def actor(self, subject: str, role: str = "employee") -> Actor:
        identity = AuthIdentity(
            auth_identity_id=AuthIdentityId(subject),
            email=f"{subject}@example.test",
            role=role,
            tenant_slug=TENANT,
        )
        with self.session_factory() as db:
            return build_actor(db, self.tenant_id, identity)

    def admin(self) -> Actor:
        return self.actor("auth-admin", role="admin")


@pytest.fixture
def seed(session_factory):
    return StaffingSeed(session_factory)
