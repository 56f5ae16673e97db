"""Stage-1 analysis result schema."""

from typing import Any

from pydantic import BaseModel, Field


class Competitor(BaseModel):
    name: str
    website: str | None = None
    threat_level: str | None = None
    description: str | None = None


class Stage1Result(BaseModel):
    """Validated Stage-1 output, written to the idea on entering complete."""

    score: int = Field(..., ge=0, le=100)
    risk_score: float = Field(..., ge=0, le=10)
    risk_analysis: dict[str, Any]
    ai_insights: dict[str, Any]
    competitors: list[Competitor] = Field(default_factory=list)
