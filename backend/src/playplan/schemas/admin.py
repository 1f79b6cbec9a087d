from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class InstitutionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=120)
    city: str = Field(default="Bucharest", min_length=1, max_length=80)


class InstitutionResponse(BaseModel):
    id: str
    name: str | None
    city: str

    model_config = {"from_attributes": True}


class PilotTokenCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    institution_id: UUID
    expires_in_days: int = Field(default=14, ge=1, le=30)


class PilotTokenResponse(BaseModel):
    """The raw token is only ever returned here; the database keeps its hash."""

    pilot_token: str
    institution_id: str
    expires_at: datetime
