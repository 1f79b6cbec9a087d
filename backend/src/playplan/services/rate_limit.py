import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from playplan.config import settings
from playplan.db import repo
from playplan.services.errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    remaining: int
    limit: int
    count: int


async def enforce_rate_limit(
    db: AsyncSession, institution_id: str, limit: int | None = None
) -> RateLimitResult:
    if limit is None:
        limit = settings.rate_limit_per_day
    count = await repo.increment_daily_rate_limit(db, institution_id)

    if count > limit:
        logger.info("Institution %s hit its daily limit (%d)", institution_id, limit)
        raise RateLimitError("Daily generation limit reached for this pilot token.")

    return RateLimitResult(remaining=max(limit - count, 0), limit=limit, count=count)
