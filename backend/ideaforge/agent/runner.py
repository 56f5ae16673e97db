"""Runner Protocol: the testable abstraction for all AI operations.

Business logic talks to the AI service only through this protocol, so
tests swap in RunnerFake and never call the network.

All Runner implementations MUST provide these 4 methods:
- generate_questions: Create the wizard questions for an idea
- generate_title: Create a short display title for an idea
- analyze_stage1: Produce the Stage-1 analysis from the idea and wizard answers
- refine_text: Rewrite a short piece of user text more clearly
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Runner(Protocol):
    """Protocol for all LLM-based operations.

    Implementations raise ``ideaforge.core.exceptions`` errors:
    UpstreamTimeout / UpstreamFailure for transport problems (retryable),
    NonRetryableError when the response cannot be used.
    """

    async def generate_questions(self, idea_text: str) -> list[dict[str, Any]]:
        """Generate wizard questions.

        Returns:
            List of question dicts, each with id, type, text, required and
            optional placeholder, help_text, options, validation
        """
        ...

    async def generate_title(self, idea_text: str) -> str:
        """Generate a 2-6 word title for the idea."""
        ...

    async def analyze_stage1(
        self,
        idea_text: str,
        questions: list[dict[str, Any]],
        answers: dict[str, Any],
    ) -> dict[str, Any]:
        """Run the Stage-1 analysis.

        Returns:
            Dict with score, risk_score, risk_analysis, ai_insights, competitors
        """
        ...

    async def refine_text(self, text: str) -> str:
        """Return a clearer rewrite of ``text``."""
        ...
