"""RunnerReal: Production implementation of the Runner protocol on the Anthropic SDK.

- One client per runner, per-call timeout from the SDK
- Markdown fence stripping before JSON parsing
- Output validated against the question / analysis schemas; invalid output
  raises NonRetryableError so the job fails fast instead of retrying
"""

from typing import Any

import anthropic
import structlog
from pydantic import ValidationError as PydanticValidationError

from ideaforge.agent.llm_helpers import invoke_claude, parse_json_response
from ideaforge.core.config import get_settings
from ideaforge.core.exceptions import NonRetryableError
from ideaforge.schemas.analysis import Stage1Result
from ideaforge.schemas.questions import QuestionSet

logger = structlog.get_logger(__name__)

QUESTIONS_SYSTEM = """You help first-time founders pressure-test a business idea.
Write 5 to 7 wizard questions that uncover the customer, the problem, the budget,
the distribution channels and the existing alternatives.

Return ONLY a JSON array. Each item has:
- id: snake_case identifier, unique
- type: one of text, textarea, radio, checkbox, select, number
- text: the question
- required: true or false
- placeholder, help_text: optional strings
- options: list of strings, required for radio, checkbox and select
- validation: optional object with minLength, maxLength, min, max, pattern"""

TITLE_SYSTEM = """Create a clean, professional title (2-6 words) for a business idea.
Use title case. Return ONLY the title, no quotes, no explanations."""

STAGE1_SYSTEM = """You are a pragmatic startup analyst. Using the idea and the founder's
wizard answers, assess viability and risk. Base budget-related judgements on the
founder's stated budget, not market averages.

Return ONLY a JSON object with:
- score: integer 0-100, overall viability
- risk_score: number 0-10, higher is riskier
- risk_analysis: object with risk_level (Low, Medium, High) and top_risks
  (list of {title, severity, mitigation})
- ai_insights: object with verdict (proceed or needs_work), summary and score_factors
- competitors: list of {name, website, threat_level}"""

REFINE_SYSTEM = """Rewrite the user's text so it is clear and concise. Keep the meaning,
keep the first person if used, do not add facts. Return ONLY the rewritten text."""


class RunnerReal:
    """Runner backed by Claude via the Anthropic SDK."""

    def __init__(self, client: anthropic.AsyncAnthropic | None = None):
        settings = get_settings()
        self.settings = settings
        self.client = client or anthropic.AsyncAnthropic(
            api_key=settings.anthropic_api_key,
            max_retries=0,  # retries are owned by retry_with_backoff
            timeout=120.0,
        )

    async def generate_questions(self, idea_text: str) -> list[dict[str, Any]]:
        content = await invoke_claude(
            self.client,
            self.settings.question_model,
            QUESTIONS_SYSTEM,
            [{"role": "user", "content": f"Business idea:\n{idea_text}"}],
        )
        raw = parse_json_response(content)
        if isinstance(raw, dict):
            raw = raw.get("questions", [])
        try:
            question_set = QuestionSet.model_validate({"questions": raw})
        except PydanticValidationError as exc:
            logger.warning("questions_schema_invalid", error_count=exc.error_count())
            raise NonRetryableError("The AI service returned invalid questions") from exc
        return [q.model_dump(exclude_none=True) for q in question_set.questions]

    async def generate_title(self, idea_text: str) -> str:
        content = await invoke_claude(
            self.client,
            self.settings.refine_model,
            TITLE_SYSTEM,
            [{"role": "user", "content": idea_text}],
            max_tokens=50,
        )
        title = content.strip().strip("\"'").strip()
        if not title:
            raise NonRetryableError("The AI service returned an empty title")
        return title[:80]

    async def analyze_stage1(
        self,
        idea_text: str,
        questions: list[dict[str, Any]],
        answers: dict[str, Any],
    ) -> dict[str, Any]:
        lines = [f"Business idea:\n{idea_text}", "", "Wizard answers:"]
        for question in questions:
            answer = answers.get(question["id"])
            if isinstance(answer, list):
                answer = ", ".join(str(item) for item in answer)
            lines.append(f"- {question['text']}: {answer if answer not in (None, '') else '(no answer)'}")

        content = await invoke_claude(
            self.client,
            self.settings.analysis_model,
            STAGE1_SYSTEM,
            [{"role": "user", "content": "\n".join(lines)}],
            max_tokens=8192,
        )
        try:
            result = Stage1Result.model_validate(parse_json_response(content))
        except PydanticValidationError as exc:
            logger.warning("stage1_schema_invalid", error_count=exc.error_count())
            raise NonRetryableError("The AI service returned an invalid analysis") from exc
        return result.model_dump()

    async def refine_text(self, text: str) -> str:
        content = await invoke_claude(
            self.client,
            self.settings.refine_model,
            REFINE_SYSTEM,
            [{"role": "user", "content": text}],
            max_tokens=1024,
        )
        refined = content.strip()
        if not refined:
            raise NonRetryableError("The AI service returned an empty refinement")
        return refined
