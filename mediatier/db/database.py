"""SQLite database setup and connection."""
import logging
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Global engine and session factory
engine = None
SessionLocal = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignore ON DELETE CASCADE sans ce pragma
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """Crée un moteur SQLite utilisable depuis FastAPI et la boucle asyncio."""
    db_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
    return db_engine


def init_db(data_dir: str = "/data", database_url: Optional[str] = None) -> None:
    """Initialize database connection."""
    global engine, SessionLocal

    if database_url is None:
        # Ensure data directory exists and is writable
        data_path = Path(data_dir)
        try:
            data_path.mkdir(parents=True, exist_ok=True)
            test_file = data_path / ".write_test"
            try:
                test_file.touch()
                test_file.unlink()
            except OSError as e:
                raise PermissionError(f"Cannot write to {data_dir}: {str(e)}")
        except Exception as e:
            logger.error(f"Error creating data directory {data_dir}: {str(e)}")
            raise
        db_path = data_path / "mediatier.db"
        database_url = f"sqlite:///{db_path}"

    logger.info(f"Initializing database at: {database_url}")

    try:
        engine = create_db_engine(database_url)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        # Create tables
        from mediatier.db.models import Base
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database at {database_url}: {str(e)}")
        raise


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db_sync() -> Session:
    """Get database session (synchronous, for non-async contexts)."""
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return SessionLocal()
