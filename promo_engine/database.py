# promo_engine/database.py
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from promo_engine.config import DATABASE_URL, REDEEM_LOCK_TIMEOUT_MS

Base = declarative_base()


def make_engine(url: str = DATABASE_URL, **kwargs):
    """
    Build an engine for the given URL.

    SQLite has no row locks, so every transaction is opened with
    BEGIN IMMEDIATE: writers queue on the database lock (bounded by the busy
    timeout) instead of failing mid-transaction on a stale read. Connections
    carrying the read_only execution option get a plain deferred BEGIN and
    keep reading while a writer holds the lock.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", REDEEM_LOCK_TIMEOUT_MS / 1000)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            # hand transaction control to SQLAlchemy
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            if conn.get_execution_options().get("read_only"):
                conn.exec_driver_sql("BEGIN")
            else:
                conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, **kwargs)


def read_only(bind):
    """Same engine and pool; transactions never take the SQLite write lock."""
    return bind.execution_options(read_only=True)


engine = make_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
ReadSessionLocal = sessionmaker(bind=read_only(engine), autoflush=False, expire_on_commit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_read_db():
    db = ReadSessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def init_db(bind=None):
    """Create the promo tables if they do not exist yet."""
    # register models on Base.metadata
    from promo_engine.models import promo_code, redemption  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
