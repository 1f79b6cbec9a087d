from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from playplan.auth.dependencies import require_admin
from playplan.db import repo
from playplan.db.session import get_db_session
from playplan.schemas.admin import InstitutionCreateRequest, InstitutionResponse

router = APIRouter(prefix="/api/institutions", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("", response_model=InstitutionResponse, status_code=201)
async def create_institution(
    req: InstitutionCreateRequest,
    db: AsyncSession = Depends(get_db_session),
):
    institution = await repo.create_institution(db, city=req.city, name=req.name)
    return institution
