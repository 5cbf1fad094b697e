import logging
from datetime import datetime, timedelta
from typing import Optional

from app.core.config import settings
from app.core.security import utcnow
from app.models import User
from app.repositories import UserRepository

logger = logging.getLogger(__name__)


class LockoutTracker:
    """
    Counts failed logins per account and locks the account once the
    configured threshold is reached.

    A failure after an expired lock starts a fresh window at one attempt.
    """

    def __init__(
        self,
        users: UserRepository,
        max_attempts: Optional[int] = None,
        lock_duration: Optional[timedelta] = None,
    ):
        self.users = users
        self.max_attempts = max_attempts or settings.MAX_LOGIN_ATTEMPTS
        self.lock_duration = lock_duration or timedelta(minutes=settings.LOCK_DURATION_MINUTES)

    def record_failure(self, user: User) -> None:
        now = utcnow()
        if self.users.restart_failure_window(user, now):
            return

        self.users.increment_login_attempts(user)
        if self.users.lock_if_threshold_reached(
            user, self.max_attempts, now + self.lock_duration, now
        ):
            logger.warning(
                f"Account {user.id} locked until {user.lock_until} after "
                f"{user.login_attempts} failed login attempts"
            )

    def record_success(self, user: User) -> None:
        if user.login_attempts or user.lock_until is not None:
            self.users.reset_login_attempts(user)

    @staticmethod
    def is_locked(user: User, now: Optional[datetime] = None) -> bool:
        return user.lock_until is not None and user.lock_until > (now or utcnow())
