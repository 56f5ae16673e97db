"""Lifecycle statuses, job kinds and queue payloads."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class IdeaStatus(str, Enum):
    """Idea lifecycle states."""

    DRAFT = "draft"
    GENERATING_QUESTIONS = "generating_questions"
    QUESTIONS_READY = "questions_ready"
    GENERATION_FAILED = "generation_failed"
    GENERATING_STAGE1 = "generating_stage1"
    COMPLETE = "complete"
    STAGE1_FAILED = "stage1_failed"


# Statuses a background job is currently working on
IN_FLIGHT_STATUSES = frozenset({IdeaStatus.GENERATING_QUESTIONS, IdeaStatus.GENERATING_STAGE1})

# Statuses in which no further automatic progress happens
TERMINAL_STATUSES = frozenset(
    {
        IdeaStatus.QUESTIONS_READY,
        IdeaStatus.GENERATION_FAILED,
        IdeaStatus.COMPLETE,
        IdeaStatus.STAGE1_FAILED,
    }
)

# Statuses in which wizard answers may be autosaved
ANSWERABLE_STATUSES = frozenset(
    {
        IdeaStatus.QUESTIONS_READY,
        IdeaStatus.GENERATING_STAGE1,
        IdeaStatus.STAGE1_FAILED,
        IdeaStatus.COMPLETE,
    }
)

# Statuses from which the wizard may be submitted for Stage-1
WIZARD_SUBMITTABLE_STATUSES = frozenset({IdeaStatus.QUESTIONS_READY, IdeaStatus.STAGE1_FAILED})


class JobKind(str, Enum):
    QUESTION_GENERATION = "question_generation"
    STAGE1_ANALYSIS = "stage1_analysis"


# (in-flight status, success status, failure status) per job kind
JOB_OUTCOMES: dict[JobKind, tuple[IdeaStatus, IdeaStatus, IdeaStatus]] = {
    JobKind.QUESTION_GENERATION: (
        IdeaStatus.GENERATING_QUESTIONS,
        IdeaStatus.QUESTIONS_READY,
        IdeaStatus.GENERATION_FAILED,
    ),
    JobKind.STAGE1_ANALYSIS: (
        IdeaStatus.GENERATING_STAGE1,
        IdeaStatus.COMPLETE,
        IdeaStatus.STAGE1_FAILED,
    ),
}


class JobPayload(BaseModel):
    """One unit of background work, serialized onto the Redis queue."""

    job_id: str
    kind: JobKind
    idea_id: str
    user_id: str
    attempt: int = Field(default=1, ge=1)  # delivery attempt, incremented on redelivery
    enqueued_at: datetime
