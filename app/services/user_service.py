from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.models import User
from app.models.schemas import UserRecord

logger = logging.getLogger(__name__)

DEFAULT_USERS: tuple[tuple[str, str], ...] = (
    ("Dan", "Welcome back, Dan!"),
    ("Alice", "Good to see you, Alice!"),
    ("Bob", "Hey there, Bob!"),
)


def find_by_name(db: Session, name: str) -> UserRecord | None:
    user = db.execute(select(User).where(User.name == name)).scalar_one_or_none()
    if user is None:
        return None
    return UserRecord.model_validate(user)


def count_users(db: Session) -> int:
    return int(db.execute(select(func.count()).select_from(User)).scalar_one())


def seed_users(db: Session, records: Iterable[tuple[str, str]] = DEFAULT_USERS) -> int:
    """Insert the given (name, message) pairs, skipping names that already exist.

    Returns the total number of users after seeding.
    """

    logger.info("Loading test data...")

    existing = set(db.execute(select(User.name)).scalars())
    for name, message in records:
        if name in existing:
            continue
        db.add(User(name=name, personalized_message=message))
        existing.add(name)
    db.commit()

    total = count_users(db)
    logger.info("Loaded %d users", total)
    return total
