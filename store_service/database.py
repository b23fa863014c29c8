"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Any, Dict, Generator
import logging

from store_service.config import ADMIN_EMAIL, ADMIN_PASSWORD, DATABASE_URL
from store_service.models import Base, User
from store_service.security import hash_password

logger = logging.getLogger(__name__)


def engine_options(url: str) -> Dict[str, Any]:
    """Connection pool settings for ``url``; SQLite gets a single-thread-safe setup."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_admin(db: Session) -> None:
    """Create the bootstrap admin from ADMIN_EMAIL/ADMIN_PASSWORD if absent."""
    if not (ADMIN_EMAIL and ADMIN_PASSWORD):
        return
    if db.query(User).filter(User.email == ADMIN_EMAIL.lower()).first():
        return
    db.add(User(
        name="Administrator",
        email=ADMIN_EMAIL.lower(),
        password_hash=hash_password(ADMIN_PASSWORD),
        role="admin",
    ))
    db.commit()
    logger.info("Seeded bootstrap admin user", extra={"email": ADMIN_EMAIL.lower()})


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()
