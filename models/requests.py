from uuid import UUID

from pydantic import BaseModel, Field


class RegenerateInsightsRequest(BaseModel):
    account_id: UUID = Field(..., description="Account (prospect) to regenerate insights for")


class AccountBriefRequest(BaseModel):
    account_id: UUID = Field(..., description="Account to stream a pre-call brief for")
