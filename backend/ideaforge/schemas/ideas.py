"""Idea API schemas: request bodies and response envelopes."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class CreateIdeaRequest(BaseModel):
    """Request to submit a new idea."""

    idea_text: str = Field(..., description="The idea, 10 to 500 characters")
    start_generation: bool = True

    @field_validator("idea_text")
    @classmethod
    def check_length(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < 10:
            raise ValueError("Idea must be at least 10 characters")
        if len(stripped) > 500:
            raise ValueError("Idea must be at most 500 characters")
        return stripped


class UpdateIdeaRequest(BaseModel):
    """Autosave delta or a draft submission. At least one field is required."""

    wizard_answers: dict[str, Any] | None = None
    current_step: int | None = Field(default=None, ge=0)
    status: Literal["generating_questions"] | None = None

    @model_validator(mode="after")
    def at_least_one_field(self) -> "UpdateIdeaRequest":
        if self.wizard_answers is None and self.current_step is None and self.status is None:
            raise ValueError("At least one field must be provided")
        return self


class RefineTextRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)

    @field_validator("text")
    @classmethod
    def at_least_two_words(cls, v: str) -> str:
        if len(v.split()) < 2:
            raise ValueError("Please enter at least 2 words")
        return v


class CreateIdeaResponse(BaseModel):
    success: bool = True
    id: str
    status: str


class UpdateIdeaResponse(BaseModel):
    success: bool = True
    updated_at: datetime


class CompleteWizardResponse(BaseModel):
    success: bool = True
    status: str
    message: str


class DeleteIdeaResponse(BaseModel):
    success: bool = True
    message: str = "Idea deleted successfully"


class RefineTextResponse(BaseModel):
    success: bool = True
    raw_text: str
    refined_text: str
    skip_refinement: bool = False
    message: str | None = None


class IdeaSummary(BaseModel):
    id: str
    title: str
    status: str
    created_at: datetime
    updated_at: datetime


class ListMeta(BaseModel):
    total: int
    limit: int
    offset: int
    remaining: int


class IdeaListResponse(BaseModel):
    success: bool = True
    ideas: list[IdeaSummary]
    meta: ListMeta
