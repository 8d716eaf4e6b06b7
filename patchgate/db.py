# FILE: patchgate/db.py
"""
Database wiring for stored deployment records.

One SQLite file holds every deployment the API has made, so a later
request (or a later process) can verify or roll a deployment back.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

DATABASE_URL = os.getenv("PATCHGATE_DATABASE_URL", "sqlite:///./patchgate.db")


def _connect_args(url: str) -> dict:
    # Request handlers and executor threads share the SQLite connection pool
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL), echo=False)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Session per request for the deployment endpoints."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Create the deployments table on `bind` (default: the configured engine)."""
    from patchgate.deployment import models  # noqa: F401  registers DeploymentRecordRow
    Base.metadata.create_all(bind=bind or engine)
