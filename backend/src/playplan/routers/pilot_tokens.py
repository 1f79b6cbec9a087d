from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from playplan.auth.dependencies import require_admin
from playplan.db import repo
from playplan.db.session import get_db_session
from playplan.schemas.admin import PilotTokenCreateRequest, PilotTokenResponse
from playplan.services.errors import RequestInvalidError
from playplan.services.pilot_auth import issue_pilot_token

router = APIRouter(prefix="/api/pilot-tokens", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("", response_model=PilotTokenResponse, status_code=201)
async def create_pilot_token(
    req: PilotTokenCreateRequest,
    db: AsyncSession = Depends(get_db_session),
):
    institution_id = str(req.institution_id)
    if await repo.get_institution(db, institution_id) is None:
        raise RequestInvalidError("Unknown institution_id.")

    pilot_token, expires_at = await issue_pilot_token(db, institution_id, req.expires_in_days)
    return PilotTokenResponse(
        pilot_token=pilot_token,
        institution_id=institution_id,
        expires_at=expires_at,
    )
