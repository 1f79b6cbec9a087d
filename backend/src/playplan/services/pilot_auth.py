import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from playplan.config import settings
from playplan.db import repo
from playplan.schemas.request import (
    PILOT_TOKEN_MAX_LENGTH,
    PILOT_TOKEN_MIN_LENGTH,
    PILOT_TOKEN_PATTERN,
)
from playplan.services.errors import ErrorCode, PilotTokenError

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 16
DEFAULT_EXPIRES_IN_DAYS = 14

_TOKEN_RE = re.compile(PILOT_TOKEN_PATTERN)


@dataclass(frozen=True)
class PilotAuthResult:
    institution_id: str
    token_hash: str


def get_pilot_token_salt() -> str:
    salt = settings.pilot_token_salt
    if not salt or len(salt.strip()) < MIN_SALT_LENGTH:
        raise RuntimeError("PILOT_TOKEN_SALT must be set to a secure value.")
    return salt


def hash_pilot_token(pilot_token: str) -> str:
    salt = get_pilot_token_salt()
    return hmac.new(salt.encode(), pilot_token.encode(), hashlib.sha256).hexdigest()


def generate_pilot_token() -> str:
    return secrets.token_urlsafe(32)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are always UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def verify_pilot_token(db: AsyncSession, pilot_token: str | None) -> PilotAuthResult:
    token = (pilot_token or "").strip()
    if (
        not token
        or not PILOT_TOKEN_MIN_LENGTH <= len(token) <= PILOT_TOKEN_MAX_LENGTH
        or not _TOKEN_RE.match(token)
    ):
        raise PilotTokenError(ErrorCode.TOKEN_MISSING, "Pilot token is missing.")

    token_hash = hash_pilot_token(token)
    record = await repo.find_pilot_token_by_hash(db, token_hash)

    if record is None:
        raise PilotTokenError(ErrorCode.TOKEN_INVALID, "Pilot token is invalid.")
    if record.revoked_at is not None:
        raise PilotTokenError(ErrorCode.TOKEN_REVOKED, "Pilot token has been revoked.")
    if _as_utc(record.expires_at) <= datetime.now(timezone.utc):
        raise PilotTokenError(ErrorCode.TOKEN_EXPIRED, "Pilot token has expired.", retryable=True)

    return PilotAuthResult(institution_id=record.institution_id, token_hash=record.token_hash)


async def issue_pilot_token(
    db: AsyncSession, institution_id: str, expires_in_days: int = DEFAULT_EXPIRES_IN_DAYS
) -> tuple[str, datetime]:
    """Create a token for an institution. Only the hash is stored."""
    pilot_token = generate_pilot_token()
    expires_at = datetime.now(timezone.utc) + timedelta(days=expires_in_days)
    await repo.create_pilot_token(db, hash_pilot_token(pilot_token), institution_id, expires_at)
    logger.info("Issued pilot token for institution %s (expires %s)", institution_id, expires_at)
    return pilot_token, expires_at
