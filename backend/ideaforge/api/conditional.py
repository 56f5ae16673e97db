"""Conditional GET support and idea serialization for polling clients.

ETag is ``"{id}-{updated_at in microseconds}"``: every mutating write sets
updated_at, so any change produces a new tag. ``If-None-Match`` wins over
``If-Modified-Since``; the date comparison is at whole-second precision
because HTTP dates carry no fractions.
"""

from datetime import UTC, datetime
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any

from ideaforge.db.models.idea import Idea
from ideaforge.queue.schemas import IdeaStatus

INCLUDE_OPTIONS = frozenset({"wizard", "stage1", "competitors"})

# Statuses in which the wizard payload is returned by default
WIZARD_STATUSES = frozenset(
    {IdeaStatus.GENERATING_QUESTIONS.value, IdeaStatus.QUESTIONS_READY.value, IdeaStatus.GENERATION_FAILED.value}
)

GENERATING_CACHE_CONTROL = "no-store, must-revalidate"
SETTLED_CACHE_CONTROL = "private, max-age=60"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def compute_etag(idea: Idea) -> str:
    stamp = as_utc(idea.updated_at or idea.created_at)
    micros = int(stamp.timestamp()) * 1_000_000 + stamp.microsecond
    return f'"{idea.id}-{micros}"'


def last_modified_header(idea: Idea) -> str:
    return format_datetime(as_utc(idea.updated_at or idea.created_at), usegmt=True)


def _etag_matches(if_none_match: str, etag: str) -> bool:
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == "*" or candidate == etag:
            return True
    return False


def is_not_modified(idea: Idea, if_none_match: str | None, if_modified_since: str | None) -> bool:
    """True when the client's cached copy is still current (respond 304)."""
    if if_none_match:
        return _etag_matches(if_none_match, compute_etag(idea))

    if if_modified_since:
        try:
            client_time = parsedate_to_datetime(if_modified_since)
        except (TypeError, ValueError, IndexError):
            return False
        if client_time is None:
            return False
        last_modified = as_utc(idea.updated_at or idea.created_at).replace(microsecond=0)
        return last_modified <= as_utc(client_time)

    return False


def cache_control(status: str) -> str:
    if status.startswith("generating_"):
        return GENERATING_CACHE_CONTROL
    return SETTLED_CACHE_CONTROL


def parse_include(raw: str | None) -> set[str]:
    """Parse ``?include=a,b``. Unknown names are ignored."""
    if not raw:
        return set()
    return {part.strip() for part in raw.split(",") if part.strip() in INCLUDE_OPTIONS}


def default_include(idea: Idea) -> set[str]:
    if idea.status in WIZARD_STATUSES:
        return {"wizard"}
    if idea.status == IdeaStatus.COMPLETE.value and idea.score is not None:
        return {"stage1", "competitors"}
    return set()


def serialize_idea(idea: Idea, include: set[str]) -> dict[str, Any]:
    """Build the ``idea`` object of the GET response."""
    include = include or default_include(idea)
    body: dict[str, Any] = {
        "id": str(idea.id),
        "title": idea.title,
        "status": idea.status,
        "idea_text": idea.idea_text,
        "created_at": _iso(idea.created_at),
        "updated_at": _iso(idea.updated_at),
    }

    if "wizard" in include:
        body.update(
            questions=idea.questions,
            wizard_answers=idea.wizard_answers or {},
            current_step=idea.current_step or 0,
            total_questions=idea.total_questions,
            questions_generated_at=_iso(idea.questions_generated_at),
            wizard_completed_at=_iso(idea.wizard_completed_at),
        )

    if "stage1" in include:
        for field in ("score", "risk_score", "risk_analysis", "ai_insights"):
            value = getattr(idea, field)
            if value is not None:
                body[field] = value
        body["wizard_completed_at"] = _iso(idea.wizard_completed_at)

    if "competitors" in include:
        body["competitors"] = idea.competitors or []

    if idea.error_message:
        body["error_message"] = idea.error_message
        body["error_occurred_at"] = _iso(idea.error_occurred_at)

    return body
