"""Tests for wizard question schemas and answer validation."""

import pytest
from pydantic import ValidationError

from ideaforge.schemas.questions import (
    CheckboxQuestion,
    NumberQuestion,
    QuestionSet,
    RadioQuestion,
    TextQuestion,
    parse_questions,
    validate_answers,
)

pytestmark = pytest.mark.unit


def _text(**kwargs) -> TextQuestion:
    return TextQuestion(id="q", text="Describe it", **kwargs)


class TestTextQuestion:
    def test_required_empty(self):
        assert _text(required=True).validate_answer("") == "This field is required"
        assert _text(required=True).validate_answer(None) == "This field is required"

    def test_optional_empty_passes(self):
        assert _text(validation={"minLength": 5}).validate_answer("") is None

    def test_min_and_max_length(self):
        question = _text(validation={"minLength": 5, "maxLength": 8})
        assert question.validate_answer("abc") == "Minimum 5 characters required"
        assert question.validate_answer("abcdefghij") == "Maximum 8 characters allowed"
        assert question.validate_answer("abcdef") is None

    def test_pattern(self):
        question = _text(validation={"pattern": r"^\d{5}$"})
        assert question.validate_answer("1234a") == "Please check the format and try again"
        assert question.validate_answer("12345") is None

    def test_broken_pattern_does_not_block(self):
        assert _text(validation={"pattern": "(["}).validate_answer("anything") is None


class TestChoiceQuestions:
    def test_radio_must_be_an_option(self):
        question = RadioQuestion(id="q", text="Pick", options=["A", "B"], required=True)
        assert question.validate_answer("C") == "Please select one of the available options"
        assert question.validate_answer("A") is None

    def test_checkbox_required_needs_a_selection(self):
        question = CheckboxQuestion(id="q", text="Pick", options=["A", "B"], required=True)
        assert question.validate_answer([]) == "Please select at least one option"
        assert question.validate_answer(["A", "B"]) is None

    def test_checkbox_unknown_option(self):
        question = CheckboxQuestion(id="q", text="Pick", options=["A", "B"])
        assert question.validate_answer(["A", "Z"]) == "Please select from the available options"
        assert question.validate_answer([]) is None

    def test_choice_requires_options(self):
        with pytest.raises(ValidationError):
            RadioQuestion(id="q", text="Pick", options=[])


class TestNumberQuestion:
    @pytest.mark.parametrize("value", ["abc", True, "nan"])
    def test_not_a_number(self, value):
        assert NumberQuestion(id="q", text="How many").validate_answer(value) == "Must be a valid number"

    def test_bounds(self):
        question = NumberQuestion(id="q", text="How many", validation={"min": 1, "max": 10})
        assert question.validate_answer(0) == "Must be at least 1"
        assert question.validate_answer("11") == "Must be no more than 10"
        assert question.validate_answer("7.5") is None


def test_parse_questions_discriminates_on_type():
    questions = parse_questions(
        [
            {"id": "a", "type": "text", "text": "A?"},
            {"id": "b", "type": "select", "text": "B?", "options": ["x"]},
            {"id": "c", "type": "number", "text": "C?"},
        ]
    )

    assert [type(q).__name__ for q in questions] == ["TextQuestion", "SelectQuestion", "NumberQuestion"]


def test_unknown_question_type_rejected():
    with pytest.raises(ValidationError):
        parse_questions([{"id": "a", "type": "slider", "text": "A?"}])


def test_question_ids_must_be_unique():
    with pytest.raises(ValidationError, match="unique"):
        QuestionSet.model_validate(
            {
                "questions": [
                    {"id": "a", "type": "text", "text": "A?"},
                    {"id": "a", "type": "text", "text": "Again?"},
                ]
            }
        )


async def test_validate_answers_against_generated_questions(runner_fake):
    questions = parse_questions(await runner_fake.generate_questions("idea"))

    errors = validate_answers(
        questions,
        {
            "target_customer": "Busy professionals who own dogs",
            "problem_frequency": "Hourly",
            "startup_budget": 100,
        },
    )

    assert errors == {
        "problem_frequency": "Please select one of the available options",
        "channels": "This field is required",
    }
