"""RunnerFake: Scenario-based test double for Runner protocol.

Provides deterministic, instant responses for named scenarios:
- happy_path: Successful responses with realistic content
- llm_failure: Every call fails as if the API were down
- malformed_output: Calls succeed but return unusable content
- flaky: The first call to each operation fails, later calls succeed

All scenarios return instantly (no LLM calls, no delays).
"""

from collections import Counter
from typing import Any

from ideaforge.core.exceptions import NonRetryableError, UpstreamUnavailable


class RunnerFake:
    """Scenario-based test double for Runner protocol.

    ``calls`` counts invocations per operation so tests can assert how often
    the AI service would have been hit.
    """

    VALID_SCENARIOS = {"happy_path", "llm_failure", "malformed_output", "flaky"}

    def __init__(self, scenario: str = "happy_path"):
        """Initialize RunnerFake with a named scenario.

        Raises:
            ValueError: If scenario is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(
                f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}"
            )
        self.scenario = scenario
        self.calls: Counter[str] = Counter()

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.scenario == "llm_failure":
            raise UpstreamUnavailable("Anthropic API overloaded. Retry after 60 seconds.")
        if self.scenario == "flaky" and self.calls[operation] == 1:
            raise UpstreamUnavailable("Anthropic API overloaded. Retry after 60 seconds.")

    async def generate_questions(self, idea_text: str) -> list[dict[str, Any]]:
        self._enter("generate_questions")
        if self.scenario == "malformed_output":
            raise NonRetryableError("AI returned questions that failed validation")

        return [
            {
                "id": "target_customer",
                "type": "textarea",
                "text": "Who is the primary customer for this idea?",
                "required": True,
                "placeholder": "e.g. independent coffee shop owners",
                "validation": {"minLength": 10, "maxLength": 500},
            },
            {
                "id": "problem_frequency",
                "type": "radio",
                "text": "How often does your customer face this problem?",
                "required": True,
                "options": ["Daily", "Weekly", "Monthly", "Rarely"],
            },
            {
                "id": "startup_budget",
                "type": "number",
                "text": "What budget (USD) can you put into the first version?",
                "required": True,
                "validation": {"min": 0, "max": 10000000},
            },
            {
                "id": "channels",
                "type": "checkbox",
                "text": "Which channels could reach your first customers?",
                "required": True,
                "options": ["Social media", "Direct sales", "Partnerships", "Content / SEO"],
            },
            {
                "id": "existing_solutions",
                "type": "text",
                "text": "What do people use today instead?",
                "required": False,
                "help_text": "Name products, spreadsheets, or manual workarounds.",
            },
        ]

    async def generate_title(self, idea_text: str) -> str:
        self._enter("generate_title")
        if self.scenario == "malformed_output":
            raise NonRetryableError("AI returned an empty title")
        words = idea_text.split()[:4]
        return " ".join(word.capitalize() for word in words)

    async def analyze_stage1(
        self,
        idea_text: str,
        questions: list[dict[str, Any]],
        answers: dict[str, Any],
    ) -> dict[str, Any]:
        self._enter("analyze_stage1")
        if self.scenario == "malformed_output":
            raise NonRetryableError("AI returned an analysis that failed validation")

        return {
            "score": 72,
            "risk_score": 4.2,
            "risk_analysis": {
                "risk_level": "Medium",
                "top_risks": [
                    {
                        "title": "Customer acquisition cost",
                        "severity": "High",
                        "mitigation": "Validate one low-cost channel before building.",
                    },
                    {
                        "title": "Crowded market",
                        "severity": "Medium",
                        "mitigation": "Differentiate on a narrow niche first.",
                    },
                ],
            },
            "ai_insights": {
                "verdict": "proceed",
                "summary": "Clear customer and a frequent problem; distribution is the main unknown.",
                "score_factors": [
                    {"factor": "Problem frequency", "impact": "positive"},
                    {"factor": "Budget", "impact": "neutral"},
                ],
            },
            "competitors": [
                {"name": "Acme Insights", "website": "https://acme.example", "threat_level": "Medium"},
                {"name": "Launchpad Labs", "website": "https://launchpad.example", "threat_level": "Low"},
            ],
        }

    async def refine_text(self, text: str) -> str:
        self._enter("refine_text")
        if self.scenario == "malformed_output":
            raise NonRetryableError("AI returned an empty refinement")
        cleaned = " ".join(text.split())
        return cleaned[0].upper() + cleaned[1:] if cleaned else cleaned
