"""Database session. SQLite for local/dev, pooled connections for server databases."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.core.config import settings


def enable_sqlite_savepoints(engine):
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINTs nest correctly.

    Occurrence inserts run inside begin_nested(); without this the driver
    would commit the outer transaction when the first savepoint is released.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


connect_args = (
    {"check_same_thread": False}
    if settings.DATABASE_URL.startswith("sqlite")
    else {}
)

if settings.DATABASE_URL.startswith("sqlite"):
    # SQLite: Use NullPool for thread-safety
    from sqlalchemy.pool import NullPool
    engine = enable_sqlite_savepoints(create_engine(
        settings.DATABASE_URL,
        connect_args=connect_args,
        poolclass=NullPool
    ))
else:
    # PostgreSQL/MySQL: the store is remote, so keep a small warm pool
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args=connect_args,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,  # Seconds to wait for connection
        pool_recycle=3600,
        pool_pre_ping=True  # Verify connection health
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
