"""Database connection and session management"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()

engine = None
SessionLocal = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL

    SQLite (used by the test suite) shares one connection across threads
    and enforces foreign keys like PostgreSQL does.
    """
    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
        event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )


def init_database(database_url: str) -> Engine:
    """Create the process-wide engine and session factory"""
    global engine, SessionLocal

    logger.info("Initializing database connection")
    engine = build_engine(database_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info(f"Database connection initialized ({engine.dialect.name})")

    return engine


def create_tables():
    """Create all tables"""
    # Import models so they register on Base.metadata
    import storefront_orders.models  # noqa: F401

    logger.info("Creating database tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def check_connection() -> None:
    """Round-trip a trivial query; raises if the database is unreachable"""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized")
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
