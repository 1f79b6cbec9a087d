from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from playplan.db.session import get_db_session
from playplan.schemas.request import GenerateActivityResponse
from playplan.services.domain_config import get_domain_config
from playplan.services.generation import generate_activity, get_orchestrator, parse_generate_payload
from playplan.services.orchestrator import ActivityOrchestrator

router = APIRouter(prefix="/api", tags=["generation"])


@router.post("/generate-activity", response_model=GenerateActivityResponse)
async def generate_activity_endpoint(
    body: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db_session),
    orchestrator: ActivityOrchestrator = Depends(get_orchestrator),
):
    payload = parse_generate_payload(body, get_domain_config())
    result = await generate_activity(db, payload, orchestrator)
    return GenerateActivityResponse(
        schema_version=result.activity.schema_version,
        activity=result.activity.activity,
    )
