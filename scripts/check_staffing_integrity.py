import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from service_scheduler.config import settings  # noqa: E402
from service_scheduler.db import SessionLocal  # noqa: E402
from service_scheduler.integrity import (  # noqa: E402
    build_integrity_report,
    repair_auth_identity_references,
    repair_staff_fulfilled_drift,
)
from service_scheduler.observability import configure_logging  # noqa: E402
from service_scheduler.tenants import get_tenant_by_slug  # noqa: E402


def run(tenant_slug: str, repair: bool = False, session_factory=SessionLocal) -> dict:
    with session_factory() as db:
        tenant = get_tenant_by_slug(db, tenant_slug)
        if tenant is None:
            raise SystemExit(f"Unknown tenant: {tenant_slug}")
        result = {"tenant": tenant.slug}
        if repair:
            result["repair"] = {
                **repair_auth_identity_references(db, tenant.id),
                **repair_staff_fulfilled_drift(db, tenant.id),
            }
        result["report"] = build_integrity_report(db, tenant.id)
        return result


def main() -> int:
    parser = argparse.ArgumentParser(description="Report (and optionally repair) staffing data drift")
    parser.add_argument("--tenant", default=settings.DEFAULT_TENANT_SLUG, help="Tenant slug")
    parser.add_argument("--repair", action="store_true", help="Remap legacy auth ids and fix staff_fulfilled")
    args = parser.parse_args()

    configure_logging()
    result = run(args.tenant, repair=args.repair)
    print(json.dumps(result, indent=2, default=str))
    return 0 if result["report"]["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
