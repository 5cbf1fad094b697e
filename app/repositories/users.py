"""
User persistence.

Lockout counters are changed with single conditional UPDATE statements so
concurrent failed logins for the same account cannot lose increments.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import User


class UserRepository(ABC):
    """Storage operations the auth layer needs for user records."""

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def find_by_id(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    def save(self, user: User) -> User:
        pass

    @abstractmethod
    def restart_failure_window(self, user: User, now: datetime) -> bool:
        """
        Reset attempts to 1 and clear the lock if a previous lock has
        already expired. Returns True when the reset happened.
        """
        pass

    @abstractmethod
    def increment_login_attempts(self, user: User) -> None:
        pass

    @abstractmethod
    def lock_if_threshold_reached(
        self, user: User, threshold: int, lock_until: datetime, now: datetime
    ) -> bool:
        """Set lock_until when attempts >= threshold and no lock is active."""
        pass

    @abstractmethod
    def reset_login_attempts(self, user: User) -> None:
        pass


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def find_by_id(self, user_id: UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def save(self, user: User) -> User:
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def _apply(self, user: User, *criteria, values: dict) -> bool:
        updated = self.db.query(User).filter(User.id == user.id, *criteria).update(
            values, synchronize_session=False
        )
        self.db.commit()
        self.db.refresh(user)
        return updated > 0

    def restart_failure_window(self, user: User, now: datetime) -> bool:
        return self._apply(
            user,
            User.lock_until.isnot(None),
            User.lock_until < now,
            values={User.login_attempts: 1, User.lock_until: None},
        )

    def increment_login_attempts(self, user: User) -> None:
        self._apply(user, values={User.login_attempts: User.login_attempts + 1})

    def lock_if_threshold_reached(
        self, user: User, threshold: int, lock_until: datetime, now: datetime
    ) -> bool:
        return self._apply(
            user,
            User.login_attempts >= threshold,
            or_(User.lock_until.is_(None), User.lock_until <= now),
            values={User.lock_until: lock_until},
        )

    def reset_login_attempts(self, user: User) -> None:
        self._apply(user, values={User.login_attempts: 0, User.lock_until: None})
