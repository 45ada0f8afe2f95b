# database.py
import os
from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker, declarative_base

from utils.config import database_url

Base = declarative_base()


# -------------------------------------------------------------------
# DATABASE URL
# -------------------------------------------------------------------
def normalize_database_url(raw: str) -> str:
    url = raw.strip()

    # Vercel / Render / Heroku often provide postgres://, SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    # Force psycopg2 explicitly
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg2://", 1)

    return url


# -------------------------------------------------------------------
# ENGINE CONFIG
# -------------------------------------------------------------------
def _engine_kwargs(url) -> dict:
    kwargs = {
        "future": True,
        "pool_pre_ping": True,  # checks connection liveness before using it
    }

    if url.get_backend_name() == "postgresql":
        # Managed Postgres can drop idle connections.
        kwargs.update(
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE_SECONDS", "300")),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )

        sslmode = (dict(url.query).get("sslmode") or "").lower()
        if sslmode == "require" or os.getenv("DB_SSL_REQUIRE", "").lower() in {"1", "true", "yes"}:
            kwargs["connect_args"] = {"sslmode": "require"}

    # Enable SQL logging only if explicitly requested
    if os.getenv("SQL_ECHO", "").lower() in {"1", "true", "yes"}:
        kwargs["echo"] = True

    return kwargs


@lru_cache(maxsize=8)
def get_engine(raw_url: str) -> Engine:
    """One engine (and pool) per connection string; creating it does not connect."""
    url = make_url(normalize_database_url(raw_url))
    return create_engine(url, **_engine_kwargs(url))


@lru_cache(maxsize=8)
def get_sessionmaker(raw_url: str) -> sessionmaker:
    return sessionmaker(
        bind=get_engine(raw_url),
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def configured_engine() -> Optional[Engine]:
    """Engine for the currently configured URL, or None when running file-only."""
    url = database_url()
    if not url:
        return None
    return get_engine(url)
