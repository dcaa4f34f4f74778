"""Bearer-token adapter for the external auth provider.

Sessions are issued and refreshed elsewhere; this module only verifies the
signed access token and exposes its claims as an ``AuthIdentity``. The token
subject is an auth identity id, which is never an employee id.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from .config import settings
from .ids import AuthIdentityId


@dataclass(frozen=True)
class AuthIdentity:
    auth_identity_id: AuthIdentityId
    email: str
    role: str
    tenant_slug: str

    @property
    def is_admin(self) -> bool:
        return self.role in settings.ADMIN_ROLES


def create_access_token(*, identity: AuthIdentity, minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    lifetime = minutes if minutes is not None else settings.AUTH_ACCESS_TOKEN_MINUTES
    payload = {
        "sub": str(identity.auth_identity_id),
        "email": identity.email,
        "role": identity.role,
        "tenant_slug": identity.tenant_slug,
        "iss": settings.AUTH_ISSUER,
        "aud": settings.AUTH_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(minutes=max(1, int(lifetime))),
    }
    return jwt.encode(payload, settings.AUTH_SECRET_KEY, algorithm=settings.AUTH_ALGORITHM)


def decode_access_token(token: str) -> AuthIdentity | None:
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_SECRET_KEY,
            algorithms=[settings.AUTH_ALGORITHM],
            audience=settings.AUTH_AUDIENCE,
            issuer=settings.AUTH_ISSUER,
            options={"verify_aud": True, "verify_iss": True},
        )
    except JWTError:
        return None

    subject = str(payload.get("sub") or "").strip()
    email = str(payload.get("email") or "").strip().lower()
    role = str(payload.get("role") or "").strip().lower()
    tenant_slug = str(payload.get("tenant_slug") or "").strip().lower()
    if not subject or not role or not tenant_slug:
        return None
    return AuthIdentity(
        auth_identity_id=AuthIdentityId(subject),
        email=email,
        role=role,
        tenant_slug=tenant_slug,
    )


def extract_identity_from_authorization_header(authorization_header: str | None) -> AuthIdentity | None:
    raw = (authorization_header or "").strip()
    if not raw.lower().startswith("bearer "):
        return None
    token = raw[7:].strip()
    if not token:
        return None
    return decode_access_token(token)
