"""
Database Configuration
"""
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator, Iterator
import logging

from condohub.core.config import settings

logger = logging.getLogger(__name__)


def enable_sqlite_savepoints(target: Engine) -> Engine:
    """
    Let SQLAlchemy emit BEGIN itself on pysqlite connections.

    Without this the driver's implicit transactions make SAVEPOINT
    (used by the audit and notification writers) commit too early.
    """
    @event.listens_for(target, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return target


db_url = settings.database_url

engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if "sqlite" in db_url else {},
    echo=settings.DEBUG
)
if "sqlite" in db_url:
    enable_sqlite_savepoints(engine)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base model
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Ensures the session is closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block, or roll it all back.

    Operations touching a transaction and its maintenance request must
    run inside one of these so both rows change together.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


@contextmanager
def session_scope(session_factory=None) -> Iterator[Session]:
    """Open a fresh session for background work and always close it"""
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables"""
    # Import all models to register them with Base
    from condohub.models import (  # noqa: F401
        Condominium, Unit, User, FinancialTransaction, MaintenanceRequest,
        UnitPayment, AuditLog, Notification
    )
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")
