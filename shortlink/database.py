"""Database configuration and session management for the shortlink service.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ Repository  │
    │ operation   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_session│
    │ ()          │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Execute &    │
    │ commit      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (async with) │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Open a session per operation**::
    async with async_session() as session:
        result = await session.execute(select(ShortLink))

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Sessions are opened per repository operation, never shared across requests,
  so detached background work cannot touch a closed request session.
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
    ping_db():  Round-trips ``SELECT 1`` for health checks.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "engine", "async_session", "init_db", "close_db", "ping_db"]

settings = get_settings()

_pool_options = {} if settings.DATABASE_URL.startswith("sqlite") else {"pool_size": 20, "max_overflow": 10}

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    **_pool_options,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


async def ping_db() -> None:
    async with async_session() as session:
        await session.execute(text("SELECT 1"))
