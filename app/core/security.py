import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError
from passlib.context import CryptContext

from app.core.config import settings
from app.core.exceptions import (
    InvalidTokenError,
    MalformedTokenError,
    TokenExpiredError,
    TokenNotActiveError,
    WrongTokenTypeError,
)
from app.schemas.auth import TokenClaims, TokenPair

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

# Token type constants
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> float:
    """Convert a naive UTC datetime to POSIX seconds."""
    return value.replace(tzinfo=timezone.utc).timestamp()


def from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def parse_duration(value: Union[str, timedelta]) -> timedelta:
    """Parse a duration string like '15m', '24h' or '7d'."""
    if isinstance(value, timedelta):
        return value
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    return pwd_context.verify(plain_password, hashed_password)


def dummy_verify_password() -> None:
    """Spend the same hashing time as a real verification when no user matched."""
    pwd_context.dummy_verify()


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    """Create SHA-256 hash of a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def _secret_for(token_type: str) -> str:
    if token_type == TOKEN_TYPE_ACCESS:
        return settings.SECRET_KEY
    if token_type == TOKEN_TYPE_REFRESH:
        return settings.REFRESH_SECRET_KEY
    raise ValueError(f"Unknown token type: {token_type}")


def create_token(
    user_id: str,
    token_type: str,
    expires_in: Union[str, timedelta],
) -> str:
    """
    Create a signed JWT for a user.

    iat keeps sub-second precision so it can be compared against
    password_changed_at without a same-second blind spot.
    """
    now = utcnow()
    issued_at = to_timestamp(now)
    expire = now + parse_duration(expires_in)

    to_encode = {
        "sub": str(user_id),
        "type": token_type,
        "iat": issued_at,
        "nbf": int(issued_at),
        "exp": int(to_timestamp(expire)),
        "jti": str(uuid4()),
    }
    return jwt.encode(to_encode, _secret_for(token_type), algorithm=settings.ALGORITHM)


def issue_token_pair(
    user_id: str,
    access_expires_in: Optional[Union[str, timedelta]] = None,
    refresh_expires_in: Optional[Union[str, timedelta]] = None,
) -> TokenPair:
    """Mint an access/refresh pair; lifetimes default to the configured values."""
    access_expires_in = access_expires_in or settings.ACCESS_TOKEN_EXPIRES_IN
    refresh_expires_in = refresh_expires_in or settings.REFRESH_TOKEN_EXPIRES_IN

    return TokenPair(
        access_token=create_token(user_id, TOKEN_TYPE_ACCESS, access_expires_in),
        refresh_token=create_token(user_id, TOKEN_TYPE_REFRESH, refresh_expires_in),
        access_expires_in=int(parse_duration(access_expires_in).total_seconds()),
        refresh_expires_in=int(parse_duration(refresh_expires_in).total_seconds()),
    )


def verify_token(token: str, expected_type: str) -> TokenClaims:
    """
    Verify a JWT and return its claims.

    The type discriminator is checked before the signature, so a token of
    the other family is always reported as WRONG_TOKEN_TYPE even though it
    was signed with a different secret.
    """
    try:
        unverified = jwt.get_unverified_claims(token)
    except JWTError:
        raise MalformedTokenError()

    if unverified.get("type") != expected_type:
        raise WrongTokenTypeError(expected_type)

    try:
        payload = jwt.decode(
            token, _secret_for(expected_type), algorithms=[settings.ALGORITHM]
        )
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTClaimsError as e:
        if "nbf" in str(e):
            raise TokenNotActiveError()
        raise InvalidTokenError()
    except JWTError as e:
        if "Signature verification failed" in str(e):
            raise InvalidTokenError("Invalid token signature")
        raise MalformedTokenError()

    if not payload.get("sub") or "iat" not in payload or "exp" not in payload:
        raise MalformedTokenError()

    return TokenClaims(**payload)


def token_expiry(token: str) -> Optional[datetime]:
    """Read the exp claim without verifying the token. None if unreadable."""
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
        return from_timestamp(float(exp)) if exp is not None else None
    except (JWTError, TypeError, ValueError, OverflowError):
        return None
