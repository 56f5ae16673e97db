"""Tests for ETag / Last-Modified helpers and idea serialization."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from ideaforge.api.conditional import (
    cache_control,
    compute_etag,
    is_not_modified,
    last_modified_header,
    parse_include,
    serialize_idea,
)
from ideaforge.db.models.idea import Idea

pytestmark = pytest.mark.unit

UPDATED_AT = datetime(2026, 3, 14, 9, 26, 53, 589793, tzinfo=UTC)


def _idea(**fields) -> Idea:
    values = {
        "id": uuid.UUID("5b0c7a2e-1f5e-4c3b-9d8e-0a1b2c3d4e5f"),
        "user_id": "user_a",
        "idea_text": "A marketplace connecting dog walkers with busy owners",
        "title": "Dog Walker Marketplace",
        "status": "questions_ready",
        "wizard_answers": {},
        "current_step": 0,
        "created_at": UPDATED_AT - timedelta(hours=1),
        "updated_at": UPDATED_AT,
    }
    values.update(fields)
    return Idea(**values)


def test_etag_is_id_and_update_time():
    etag = compute_etag(_idea())

    assert etag == f'"5b0c7a2e-1f5e-4c3b-9d8e-0a1b2c3d4e5f-{int(UPDATED_AT.timestamp()) * 1_000_000 + 589793}"'


def test_etag_changes_with_updated_at():
    before = compute_etag(_idea())
    after = compute_etag(_idea(updated_at=UPDATED_AT + timedelta(microseconds=1)))

    assert before != after


def test_naive_timestamps_are_treated_as_utc():
    assert compute_etag(_idea(updated_at=UPDATED_AT.replace(tzinfo=None))) == compute_etag(_idea())


def test_last_modified_is_http_date():
    assert last_modified_header(_idea()) == "Sat, 14 Mar 2026 09:26:53 GMT"


class TestIsNotModified:
    def test_matching_etag(self):
        idea = _idea()
        assert is_not_modified(idea, compute_etag(idea), None) is True

    def test_weak_and_listed_etags(self):
        idea = _idea()
        assert is_not_modified(idea, f'"other", W/{compute_etag(idea)}', None) is True
        assert is_not_modified(idea, "*", None) is True

    def test_stale_etag(self):
        assert is_not_modified(_idea(), '"stale"', None) is False

    def test_if_none_match_takes_precedence(self):
        assert is_not_modified(_idea(), '"stale"', "Sat, 14 Mar 2026 09:26:53 GMT") is False

    def test_if_modified_since_second_precision(self):
        idea = _idea()
        assert is_not_modified(idea, None, "Sat, 14 Mar 2026 09:26:53 GMT") is True
        assert is_not_modified(idea, None, "Sat, 14 Mar 2026 09:26:52 GMT") is False

    def test_unparseable_date(self):
        assert is_not_modified(_idea(), None, "yesterday") is False

    def test_no_validators(self):
        assert is_not_modified(_idea(), None, None) is False


@pytest.mark.parametrize(
    "status,expected",
    [
        ("generating_questions", "no-store, must-revalidate"),
        ("generating_stage1", "no-store, must-revalidate"),
        ("questions_ready", "private, max-age=60"),
        ("complete", "private, max-age=60"),
    ],
)
def test_cache_control(status, expected):
    assert cache_control(status) == expected


def test_parse_include_ignores_unknown():
    assert parse_include("wizard, stage1,bogus") == {"wizard", "stage1"}
    assert parse_include(None) == set()


def test_serialize_defaults_to_wizard_before_analysis():
    body = serialize_idea(_idea(questions=[], total_questions=0), set())

    assert body["wizard_answers"] == {}
    assert "score" not in body


def test_serialize_complete_idea_includes_results():
    idea = _idea(status="complete", score=72, risk_score=4.2, competitors=[{"name": "Acme"}])

    body = serialize_idea(idea, set())

    assert body["score"] == 72
    assert body["competitors"] == [{"name": "Acme"}]
    assert "wizard_answers" not in body


def test_serialize_includes_error():
    idea = _idea(status="generation_failed", error_message="Question generation failed.", error_occurred_at=UPDATED_AT)

    body = serialize_idea(idea, set())

    assert body["error_message"] == "Question generation failed."
    assert body["error_occurred_at"] == UPDATED_AT.isoformat()
