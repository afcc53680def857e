from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

Base = declarative_base()


def normalize_database_url(url: str) -> str:
    # Standardize Postgres URL if needed (Supabase/Vercel often use postgres://)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(database_url: str) -> Engine:
    """Create the SQLAlchemy engine for ``database_url``."""
    database_url = normalize_database_url(database_url)
    # SQLite needs special config
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def ensure_tables(engine: Engine):
    """Ensure database tables exist. Safe to call multiple times."""
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)


def get_db(request: Request):
    """Dependency to provide a DB session from the app's session factory."""
    SessionLocal = request.app.state.session_factory
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
