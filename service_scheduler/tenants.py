from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import Tenant


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    return db.execute(
        select(Tenant).where(Tenant.slug == slug.strip().lower())
    ).scalar_one_or_none()


def get_or_create_tenant(db: Session, slug: str, name: str | None = None) -> Tenant:
    normalized_slug = slug.strip().lower()
    tenant = get_tenant_by_slug(db, normalized_slug)
    if tenant:
        return tenant

    tenant = Tenant(slug=normalized_slug, name=(name or normalized_slug).strip())
    db.add(tenant)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first.
        db.rollback()
        existing = get_tenant_by_slug(db, normalized_slug)
        if existing is None:
            raise
        return existing
    db.refresh(tenant)
    return tenant
