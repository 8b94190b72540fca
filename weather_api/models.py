"""
ORM models.

We store:
- user accounts (password only as a bcrypt hash)
- one history row per successful weather lookup, owned by a user
"""

import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import String, Integer, Float, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    # bcrypt hash, never the plaintext
    password: Mapped[str] = mapped_column(String(255))

    name: Mapped[str] = mapped_column(String(255))
    role: Mapped[UserRole] = mapped_column(Enum(UserRole), default=UserRole.USER)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Removing a user removes their history too.
    weather_queries: Mapped[List["WeatherQuery"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
    )


class WeatherQuery(Base):
    __tablename__ = "weather_queries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Provider-reported name, not what the user typed
    city: Mapped[str] = mapped_column(String(255), index=True)
    country: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Metric units (Celsius)
    temperature: Mapped[float] = mapped_column(Float)
    humidity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    user: Mapped[User] = relationship(back_populates="weather_queries")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
