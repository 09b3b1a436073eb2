from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from croissant_tour.db.base import Base


class User(Base):
    """Anonymous user. Created on first contact, never mutated."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    ratings: Mapped[list["Rating"]] = relationship(back_populates="user", passive_deletes=True)
