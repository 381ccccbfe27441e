from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    personalized_message: str


class HealthResponse(BaseModel):
    status: str = "ok"
