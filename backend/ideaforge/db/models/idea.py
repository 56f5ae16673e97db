"""Idea model: one submitted idea and its wizard / Stage-1 lifecycle."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from ideaforge.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Idea(Base):
    __tablename__ = "ideas"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(255), nullable=False, index=True)

    idea_text = Column(Text, nullable=False)  # immutable once set
    title = Column(String(80), nullable=False)
    status = Column(String(32), nullable=False, default="draft", index=True)  # IdeaStatus values

    # Wizard
    questions = Column(JSONType, nullable=True)  # list of Question dicts, fixed once generated
    total_questions = Column(Integer, nullable=True)
    wizard_answers = Column(JSONType, nullable=False, default=dict)  # {question_id: answer}, merge only
    current_step = Column(Integer, nullable=False, default=0)
    questions_generated_at = Column(DateTime(timezone=True), nullable=True)
    wizard_completed_at = Column(DateTime(timezone=True), nullable=True)

    # Stage-1 results (populated only on entering complete)
    score = Column(Integer, nullable=True)
    risk_score = Column(Float, nullable=True)
    risk_analysis = Column(JSONType, nullable=True)
    ai_insights = Column(JSONType, nullable=True)
    competitors = Column(JSONType, nullable=True)

    # Error tracking (set on entering a failed state, cleared on retry)
    error_message = Column(Text, nullable=True)
    error_occurred_at = Column(DateTime(timezone=True), nullable=True)

    # Audit: updated_at is written explicitly by every mutating statement
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
