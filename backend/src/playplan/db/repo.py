from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from playplan.db.models import Generation, Institution, PilotToken, RateLimit, StageLog, new_uuid


def today_key_utc(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).strftime("%Y-%m-%d")


async def create_institution(db: AsyncSession, city: str, name: str | None = None) -> Institution:
    institution = Institution(name=name, city=city)
    db.add(institution)
    await db.flush()
    return institution


async def get_institution(db: AsyncSession, institution_id: str) -> Institution | None:
    return await db.get(Institution, institution_id)


async def create_pilot_token(
    db: AsyncSession, token_hash: str, institution_id: str, expires_at: datetime
) -> PilotToken:
    token = PilotToken(token_hash=token_hash, institution_id=institution_id, expires_at=expires_at)
    db.add(token)
    await db.flush()
    return token


async def find_pilot_token_by_hash(db: AsyncSession, token_hash: str) -> PilotToken | None:
    return await db.get(PilotToken, token_hash)


async def increment_daily_rate_limit(
    db: AsyncSession, institution_id: str, date: str | None = None
) -> int:
    """Atomically bump today's counter for an institution and return the new count."""
    dialect = db.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

    stmt = insert(RateLimit).values(
        id=new_uuid(),
        institution_id=institution_id,
        date=date or today_key_utc(),
        count=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[RateLimit.institution_id, RateLimit.date],
        set_={"count": RateLimit.count + 1},
    ).returning(RateLimit.count)

    result = await db.execute(stmt)
    return result.scalar_one()


async def create_generation(
    db: AsyncSession,
    institution_id: str,
    request_payload: dict,
    *,
    outline_json: dict | None = None,
    final_json: dict | None = None,
    validation_pass: bool = False,
    latency_ms: int | None = None,
    model_name: str | None = None,
    regenerate_flag: bool = False,
    error_code: str | None = None,
    stage_logs: list[StageLog] | None = None,
) -> Generation:
    generation = Generation(
        institution_id=institution_id,
        request_payload=request_payload,
        outline_json=outline_json,
        final_json=final_json,
        validation_pass=validation_pass,
        latency_ms=latency_ms,
        model_name=model_name,
        regenerate_flag=regenerate_flag,
        error_code=error_code,
        stage_logs=stage_logs or [],
    )
    db.add(generation)
    await db.flush()
    return generation


async def list_recent_concepts(
    db: AsyncSession, institution_id: str, limit: int = 20
) -> list[str]:
    """Title and concept of the institution's most recent successful generations."""
    result = await db.execute(
        select(Generation)
        .where(
            Generation.institution_id == institution_id,
            Generation.validation_pass.is_(True),
        )
        .order_by(Generation.created_at.desc())
        .limit(limit)
    )
    concepts = []
    for generation in result.scalars():
        title = ((generation.final_json or {}).get("activity") or {}).get("title", "")
        concept = (generation.outline_json or {}).get("activity_concept", "")
        text = f"{title} {concept}".strip()
        if text:
            concepts.append(text)
    return concepts
