from __future__ import annotations

from app.config import get_database_settings
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
  pass


engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None

_ASYNC_DRIVERS = {"postgresql://": "postgresql+asyncpg://", "postgres://": "postgresql+asyncpg://", "mysql://": "mysql+aiomysql://", "sqlite://": "sqlite+aiosqlite://"}


def normalize_database_url(database_url: str | None) -> str | None:
  """Rewrite plain driver URLs to the async drivers SQLAlchemy needs."""
  if not database_url:
    return None
  for prefix, replacement in _ASYNC_DRIVERS.items():
    if database_url.startswith(prefix):
      return database_url.replace(prefix, replacement, 1)
  return database_url


def _database_url() -> str | None:
  """Build the SQLAlchemy database URL while keeping settings evaluation minimal."""
  return normalize_database_url(get_database_settings().db_dsn)


def _connect_args(database_url: str, timeout: int) -> dict[str, int]:
  if database_url.startswith("postgresql+asyncpg"):
    return {"timeout": timeout}
  if database_url.startswith("mysql+aiomysql"):
    return {"connect_timeout": timeout}
  return {}


def get_db_engine() -> AsyncEngine | None:
  global engine
  settings = get_database_settings()
  database_url = _database_url()
  if engine is None and database_url:
    engine = create_async_engine(database_url, echo=settings.debug, pool_pre_ping=True, connect_args=_connect_args(database_url, settings.db_connect_timeout))
  return engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  global SessionLocal
  if SessionLocal is None:
    db_engine = get_db_engine()
    if db_engine:
      SessionLocal = async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)
  return SessionLocal


def require_db_engine() -> AsyncEngine:
  """Return the configured engine or fail with a clear configuration error."""
  db_engine = get_db_engine()
  if db_engine is None:
    raise RuntimeError("Database connection is not configured (ABSENTA_DB_DSN is missing).")
  return db_engine


async def dispose_db_engine() -> None:
  """Dispose the pooled engine and forget the cached factories."""
  global engine, SessionLocal
  if engine is not None:
    await engine.dispose()
  engine = None
  SessionLocal = None
