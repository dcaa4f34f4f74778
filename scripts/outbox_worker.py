import argparse
import json
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from service_scheduler.config import settings  # noqa: E402
from service_scheduler.db import SessionLocal  # noqa: E402
from service_scheduler.notifications import build_emitter  # noqa: E402
from service_scheduler.observability import configure_logging, get_logger  # noqa: E402
from service_scheduler.outbox import dispatch_outbox_events  # noqa: E402
from service_scheduler.tenants import get_tenant_by_slug  # noqa: E402

log = get_logger("service_scheduler.outbox_worker")


def process_once(
    batch_size: int,
    tenant_slug: str | None = None,
    emitter=None,
    session_factory=SessionLocal,
) -> dict:
    with session_factory() as db:
        tenant_id = None
        if tenant_slug:
            tenant = get_tenant_by_slug(db, tenant_slug)
            if tenant is None:
                raise SystemExit(f"Unknown tenant: {tenant_slug}")
            tenant_id = tenant.id
        return dispatch_outbox_events(
            db=db,
            tenant_id=tenant_id,
            batch_size=max(1, min(int(batch_size), 500)),
            emitter=emitter,
        )


def main() -> int:
    parser = argparse.ArgumentParser(description="Deliver staffing notifications from the outbox")
    parser.add_argument("--batch-size", type=int, default=settings.OUTBOX_BATCH_SIZE)
    parser.add_argument("--interval", type=float, default=float(settings.OUTBOX_POLL_INTERVAL_SECONDS))
    parser.add_argument("--tenant", default=None, help="Only dispatch events of this tenant slug")
    parser.add_argument("--transport", default=None, help="Override NOTIFY_TRANSPORT")
    parser.add_argument("--once", action="store_true")
    args = parser.parse_args()

    configure_logging()
    emitter = build_emitter(args.transport)
    try:
        while True:
            result = process_once(args.batch_size, args.tenant, emitter=emitter)
            log.info("outbox_batch", **result)
            if args.once:
                print(json.dumps(result))
                return 0
            # Failed rows wait for next_attempt_at; retrying them now would spin.
            if int(result.get("published", 0)) == 0:
                time.sleep(max(0.2, float(args.interval)))
    finally:
        emitter.close()


if __name__ == "__main__":
    raise SystemExit(main())
