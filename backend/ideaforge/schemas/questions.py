"""Wizard question schemas: one variant per input type.

Questions arrive from the AI service as JSON with a ``type`` discriminator.
Each variant validates an answer and returns a user-facing message, or None
when the answer is acceptable. Empty answers to optional questions pass.
"""

import math
import re
from typing import Annotated, Any, Literal

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator

logger = structlog.get_logger(__name__)


class QuestionValidation(BaseModel):
    """Optional per-question constraints. Accepts camelCase keys from the AI output."""

    model_config = ConfigDict(populate_by_name=True)

    min_length: int | None = Field(default=None, validation_alias=AliasChoices("min_length", "minLength"))
    max_length: int | None = Field(default=None, validation_alias=AliasChoices("max_length", "maxLength"))
    min: float | None = None
    max: float | None = None
    pattern: str | None = None


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


class BaseQuestion(BaseModel):
    id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    required: bool = False
    placeholder: str | None = None
    help_text: str | None = None
    validation: QuestionValidation | None = None

    def validate_answer(self, value: Any) -> str | None:
        """Return an error message for ``value``, or None if it is acceptable."""
        if self.required and _is_empty(value):
            return "This field is required"
        if _is_empty(value):
            return None
        return self._check(value)

    def _check(self, value: Any) -> str | None:
        return None


class _TextRules(BaseQuestion):
    def _check(self, value: Any) -> str | None:
        text = str(value)
        rules = self.validation
        if rules is None:
            return None
        if rules.min_length and len(text) < rules.min_length:
            return f"Minimum {rules.min_length} characters required"
        if rules.max_length and len(text) > rules.max_length:
            return f"Maximum {rules.max_length} characters allowed"
        if rules.pattern:
            try:
                if re.search(rules.pattern, text) is None:
                    return "Please check the format and try again"
            except re.error as exc:
                # A broken pattern from the AI output must not block the user
                logger.warning("question_pattern_invalid", question_id=self.id, pattern=rules.pattern, error=str(exc))
        return None


class TextQuestion(_TextRules):
    type: Literal["text"] = "text"


class TextareaQuestion(_TextRules):
    type: Literal["textarea"] = "textarea"


class _ChoiceRules(BaseQuestion):
    options: list[str] = Field(..., min_length=1)

    def _check(self, value: Any) -> str | None:
        if not isinstance(value, str) or value not in self.options:
            return "Please select one of the available options"
        return None


class RadioQuestion(_ChoiceRules):
    type: Literal["radio"] = "radio"


class SelectQuestion(_ChoiceRules):
    type: Literal["select"] = "select"


class CheckboxQuestion(BaseQuestion):
    type: Literal["checkbox"] = "checkbox"
    options: list[str] = Field(..., min_length=1)

    def validate_answer(self, value: Any) -> str | None:
        if self.required:
            if _is_empty(value):
                return "This field is required"
            if isinstance(value, list) and not value:
                return "Please select at least one option"
        if _is_empty(value) or value == []:
            return None
        if not isinstance(value, list) or any(item not in self.options for item in value):
            return "Please select from the available options"
        return None


class NumberQuestion(BaseQuestion):
    type: Literal["number"] = "number"

    def _check(self, value: Any) -> str | None:
        if isinstance(value, bool):
            return "Must be a valid number"
        try:
            number = float(value)
        except (TypeError, ValueError):
            return "Must be a valid number"
        if math.isnan(number):
            return "Must be a valid number"

        rules = self.validation
        if rules is not None:
            if rules.min is not None and number < rules.min:
                return f"Must be at least {rules.min:g}"
            if rules.max is not None and number > rules.max:
                return f"Must be no more than {rules.max:g}"
        return None


Question = Annotated[
    TextQuestion | TextareaQuestion | RadioQuestion | CheckboxQuestion | SelectQuestion | NumberQuestion,
    Field(discriminator="type"),
]

_question_list_adapter = TypeAdapter(list[Question])


class QuestionSet(BaseModel):
    """Questions generated for one idea, with unique ids."""

    questions: list[Question] = Field(..., min_length=1)

    @model_validator(mode="after")
    def unique_ids(self) -> "QuestionSet":
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("Question ids must be unique")
        return self


def parse_questions(raw: list[dict]) -> list[Question]:
    """Parse stored question dicts into typed question objects."""
    return _question_list_adapter.validate_python(raw)


def validate_answers(questions: list[Question], answers: dict[str, Any]) -> dict[str, str]:
    """Validate every question's answer; returns {question_id: message} for failures."""
    errors: dict[str, str] = {}
    for question in questions:
        message = question.validate_answer(answers.get(question.id))
        if message:
            errors[question.id] = message
    return errors
