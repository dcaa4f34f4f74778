from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .authn import AuthIdentity, extract_identity_from_authorization_header
from .db import get_db
from .errors import Forbidden
from .identity import Actor, build_actor
from .models import Tenant
from .tenants import get_or_create_tenant


def require_identity(request: Request) -> AuthIdentity:
    identity = extract_identity_from_authorization_header(request.headers.get("authorization"))
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or invalid bearer token")
    return identity


def get_current_tenant(
    x_tenant_slug: Optional[str] = Header(default=None),
    identity: AuthIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> Tenant:
    header_slug = (x_tenant_slug or "").strip().lower()
    token_slug = (identity.tenant_slug or "").strip().lower()
    if header_slug and token_slug and header_slug != token_slug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant mismatch with bearer token")
    slug = header_slug or token_slug
    if not slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing X-Tenant-Slug")
    return get_or_create_tenant(db=db, slug=slug, name=slug)


def get_current_actor(
    identity: AuthIdentity = Depends(require_identity),
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db),
) -> Actor:
    return build_actor(db, tenant.id, identity)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise Forbidden("Admin role required")
    return actor
