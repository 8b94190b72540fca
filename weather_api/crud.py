"""
CRUD functions.

Plain query helpers over the ORM models. They raise SQLAlchemy errors as-is;
the service layer decides which failures are fatal.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, contains_eager

from . import models
from .schemas import WeatherReading


# -------------------------
# Users
# -------------------------

def get_user_by_email(db: Session, email: str) -> models.User | None:
    return db.query(models.User).filter(models.User.email == email).first()


def get_user(db: Session, user_id: str) -> models.User | None:
    """Fetch a single user by id."""
    return db.get(models.User, user_id)


def list_users(db: Session):
    """All users, newest first."""
    return db.query(models.User).order_by(models.User.created_at.desc()).all()


def create_user(db: Session, email: str, password_hash: str, name: str, role: models.UserRole) -> models.User:
    user = models.User(email=email, password=password_hash, name=name, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user: models.User) -> None:
    """DELETE user; history rows go with it via the relationship cascade."""
    db.delete(user)
    db.commit()


# -------------------------
# Weather history
# -------------------------

def create_weather_query(db: Session, reading: WeatherReading, user_id: str) -> models.WeatherQuery:
    record = models.WeatherQuery(
        city=reading.city,
        country=reading.country,
        temperature=reading.temperature,
        humidity=reading.humidity,
        description=reading.description,
        icon=reading.icon,
        user_id=user_id,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def list_weather_queries(db: Session, owner_id: Optional[str], limit: int = 10, offset: int = 0):
    """
    History page, newest first, with the owning user loaded.
    owner_id=None means every user's records. Rows without an owner are skipped.
    """
    stmt = (
        select(models.WeatherQuery)
        .join(models.WeatherQuery.user)
        .options(contains_eager(models.WeatherQuery.user))
    )
    if owner_id is not None:
        stmt = stmt.where(models.WeatherQuery.user_id == owner_id)
    # id breaks timestamp ties so pages never overlap.
    stmt = stmt.order_by(
        models.WeatherQuery.created_at.desc(),
        models.WeatherQuery.id.desc(),
    ).offset(offset).limit(limit)
    return db.execute(stmt).scalars().all()


def count_weather_queries(db: Session, owner_id: Optional[str]) -> int:
    stmt = select(func.count()).select_from(models.WeatherQuery).join(models.WeatherQuery.user)
    if owner_id is not None:
        stmt = stmt.where(models.WeatherQuery.user_id == owner_id)
    return db.execute(stmt).scalar_one()
