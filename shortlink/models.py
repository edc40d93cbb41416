"""SQLAlchemy ORM models for the shortlink service.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for short link mappings.

Data Model Layout
=================
::
    short_links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)   generated codes AND custom aliases
    ├─ target_url (TEXT NOT NULL, INDEXED)
    ├─ is_custom_alias (BOOLEAN DEFAULT FALSE)
    ├─ active (BOOLEAN DEFAULT TRUE)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ expires_at (TIMESTAMPTZ NULL, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)

How to Use
===========
**Step 1 — Import**::
    from shortlink.models import ShortLink

**Step 2 — Create a new link**::
    link = ShortLink(code="abc123", target_url="https://example.com")

**Step 3 — Query links**::
    result = await db.execute(select(ShortLink).where(ShortLink.code == "abc123"))
    link = result.scalar_one_or_none()

Key Behaviours
===============
- One ``code`` column with one unique constraint holds both generated codes and
  custom aliases, so the two can never collide.
- Links are never physically deleted; ``active`` is flipped to false instead.
- ``click_count`` is a best-effort local counter; analytics is the real record.

Classes:
    ShortLink:  A short code mapped to a target URL.
"""

import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["ShortLink"]


class ShortLink(Base):
    __tablename__ = "short_links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    target_url: Mapped[str] = mapped_column(Text, index=True, nullable=False)
    is_custom_alias: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ShortLink(id={self.id}, code='{self.code}', active={self.active}, clicks={self.click_count})>"
