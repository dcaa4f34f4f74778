from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import settings


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _configure_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # SQLAlchemy emits BEGIN itself (see below); pysqlite must not.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        # Takes the database write lock at BEGIN, so a booking recount-then-insert
        # cannot interleave with another writer. SQLite has no SELECT ... FOR UPDATE.
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, **kwargs) -> Engine:
    connect_args = {}
    if is_sqlite_url(database_url):
        connect_args = {
            "check_same_thread": False,
            "timeout": max(1, int(settings.SQLITE_BUSY_TIMEOUT_SECONDS)),
        }
    engine = create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)
    if is_sqlite_url(database_url):
        _configure_sqlite(engine)
    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def _sqlite_table_exists(conn, table_name: str) -> bool:
    row = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name = :name"),
        {"name": table_name},
    ).first()
    return row is not None


def _sqlite_table_has_column(conn, table_name: str, column_name: str) -> bool:
    rows = conn.execute(text(f"PRAGMA table_info({table_name})")).fetchall()
    return any(r[1] == column_name for r in rows)


def run_schema_migrations(bind: Engine | None = None) -> None:
    """Bring a pre-existing SQLite staffing schema up to date.

    Older databases stored assignments without the per-transition timestamps and
    without the partial unique index over active (booking, employee) pairs, and
    outbox rows without retry scheduling. Fresh databases get all of it from
    ``Base.metadata.create_all``.
    """
    target = bind or engine
    if not is_sqlite_url(str(target.url)):
        return

    with target.begin() as conn:
        if _sqlite_table_exists(conn, "outbox_events"):
            for column_name, ddl in (
                ("next_attempt_at", "ALTER TABLE outbox_events ADD COLUMN next_attempt_at DATETIME"),
                ("claimed_at", "ALTER TABLE outbox_events ADD COLUMN claimed_at DATETIME"),
            ):
                if not _sqlite_table_has_column(conn, "outbox_events", column_name):
                    conn.execute(text(ddl))
        if not _sqlite_table_exists(conn, "booking_staff_assignments"):
            return
        for column_name, ddl in (
            ("declined_at", "ALTER TABLE booking_staff_assignments ADD COLUMN declined_at DATETIME"),
            ("cancelled_at", "ALTER TABLE booking_staff_assignments ADD COLUMN cancelled_at DATETIME"),
            ("assigned_by", "ALTER TABLE booking_staff_assignments ADD COLUMN assigned_by VARCHAR(255)"),
        ):
            if not _sqlite_table_has_column(conn, "booking_staff_assignments", column_name):
                conn.execute(text(ddl))
        conn.execute(
            text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_assignments_active_pair
                ON booking_staff_assignments (booking_id, employee_id)
                WHERE status IN ('assigned', 'accepted', 'completed')
                """
            )
        )


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
