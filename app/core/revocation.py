"""
Token revocation registry.

The registry hashes raw tokens and stores them until the token's own
expiry. Storage sits behind the RevocationStore protocol so a single
process can keep entries in memory while multi-instance deployments share
the token_blacklist table.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_token, parse_duration, token_expiry, utcnow

logger = logging.getLogger(__name__)


class RevocationStore(Protocol):
    def add(self, token_hash: str, expires_at: datetime) -> bool:
        """Insert if absent. Returns True only for the caller that inserted."""
        ...

    def contains(self, token_hash: str) -> bool: ...

    def purge_expired(self, now: datetime) -> int: ...


class InMemoryRevocationStore:
    """Process-local store. Entries are lost on restart."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, datetime] = {}

    def add(self, token_hash: str, expires_at: datetime) -> bool:
        with self._lock:
            if token_hash in self._entries:
                return False
            self._entries[token_hash] = expires_at
            return True

    def contains(self, token_hash: str) -> bool:
        with self._lock:
            return token_hash in self._entries

    def purge_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [h for h, exp in self._entries.items() if exp <= now]
            for token_hash in expired:
                del self._entries[token_hash]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class DatabaseRevocationStore:
    """Shared store on the token_blacklist table; the unique hash makes add atomic."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def add(self, token_hash: str, expires_at: datetime) -> bool:
        from app.models.token_blacklist import TokenBlacklist

        db = self._session_factory()
        try:
            db.add(TokenBlacklist(token_hash=token_hash, expires_at=expires_at))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False
        finally:
            db.close()

    def contains(self, token_hash: str) -> bool:
        from app.models.token_blacklist import TokenBlacklist

        db = self._session_factory()
        try:
            return db.query(TokenBlacklist.id).filter(
                TokenBlacklist.token_hash == token_hash
            ).first() is not None
        finally:
            db.close()

    def purge_expired(self, now: datetime) -> int:
        from app.models.token_blacklist import TokenBlacklist

        db = self._session_factory()
        try:
            deleted = db.query(TokenBlacklist).filter(
                TokenBlacklist.expires_at <= now
            ).delete(synchronize_session=False)
            db.commit()
            return deleted
        finally:
            db.close()


class RevocationRegistry:
    """Set of revoked token strings, pruned once their tokens expire."""

    def __init__(self, store: RevocationStore):
        self.store = store

    def revoke(self, token: str) -> bool:
        """
        Revoke a token. Idempotent; returns True only when this call
        performed the revocation, which lets a refresh exchange claim a
        token exactly once.
        """
        expires_at = token_expiry(token)
        if expires_at is None:
            # Unreadable token: keep it as long as the longest-lived token could live
            expires_at = utcnow() + max(
                parse_duration(settings.REFRESH_TOKEN_EXPIRES_IN),
                parse_duration(settings.REFRESH_TOKEN_REMEMBER_EXPIRES_IN),
            )
        return self.store.add(hash_token(token), expires_at)

    def is_revoked(self, token: str) -> bool:
        return self.store.contains(hash_token(token))

    def prune(self, now: Optional[datetime] = None) -> int:
        removed = self.store.purge_expired(now or utcnow())
        if removed:
            logger.info(f"Pruned {removed} expired revocation entries")
        return removed


_registry: Optional[RevocationRegistry] = None
_registry_lock = threading.Lock()


def _build_store() -> RevocationStore:
    if settings.REVOCATION_BACKEND == "database":
        from app.core.database import SessionLocal

        return DatabaseRevocationStore(SessionLocal)
    return InMemoryRevocationStore()


def get_revocation_registry() -> RevocationRegistry:
    """Process-wide registry built from REVOCATION_BACKEND on first use."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = RevocationRegistry(_build_store())
    return _registry


def set_revocation_registry(registry: Optional[RevocationRegistry]) -> None:
    """Swap the process-wide registry (None rebuilds it lazily)."""
    global _registry
    with _registry_lock:
        _registry = registry
