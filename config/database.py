"""
RMShop - Database Configuration
================================
Engine, SessionLocal, Base, and get_db dependency.
All models across all modules inherit from this Base.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from config.settings import DATABASE_URL


def enable_sqlite_savepoints(bind):
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINT (begin_nested) works.
    Needed by refund/placement savepoints when running on SQLite.
    """
    @event.listens_for(bind, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(bind, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


if DATABASE_URL.startswith("sqlite"):
    # Local runs / tests: single file or in-memory DB, no server-side pool
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=20,
        max_overflow=40,
        pool_timeout=30,
        pool_recycle=1800,  # Refresh connections every 30 minutes
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session, auto-closes after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
