"""Shared LLM utility functions for error mapping, fence-stripping, and JSON parsing.

This module provides:
- strip_json_fences: Remove markdown code fences from LLM output
- parse_json_response: Parse JSON from LLM response after stripping fences
- invoke_claude: One messages.create() call with Anthropic errors mapped to ours
"""

import json
from typing import Any

import anthropic
import structlog

from ideaforge.core.exceptions import (
    NonRetryableError,
    UpstreamFailure,
    UpstreamTimeout,
    UpstreamUnavailable,
)

logger = structlog.get_logger(__name__)

# Anthropic status codes that mean "try again later"
_UNAVAILABLE_STATUSES = {429, 500, 502, 503, 529}


def strip_json_fences(content: str) -> str:
    """Remove markdown code fences wrapping JSON output."""
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        if first_newline != -1:
            content = content[first_newline + 1 :]
        if content.endswith("```"):
            content = content[:-3].rstrip()
    return content


def parse_json_response(content: str) -> Any:
    """Parse JSON from LLM response, stripping fences first.

    Raises NonRetryableError when the content is not JSON.
    """
    try:
        return json.loads(strip_json_fences(content))
    except json.JSONDecodeError as exc:
        raise NonRetryableError("The AI service returned malformed JSON") from exc


async def invoke_claude(
    client: anthropic.AsyncAnthropic,
    model: str,
    system: str,
    messages: list[dict],
    max_tokens: int = 4096,
) -> str:
    """Invoke Anthropic messages.create() once.

    Timeouts become UpstreamTimeout, overload / rate limit / 5xx become
    UpstreamUnavailable, other API errors UpstreamFailure. Retrying is the
    caller's decision.

    Returns:
        Text content of the first response block
    """
    try:
        response = await client.messages.create(
            model=model,
            system=system,
            messages=messages,
            max_tokens=max_tokens,
        )
    except anthropic.APITimeoutError as exc:
        logger.warning("claude_timeout", model=model)
        raise UpstreamTimeout() from exc
    except anthropic.APIConnectionError as exc:
        logger.warning("claude_connection_error", model=model, error=str(exc))
        raise UpstreamUnavailable() from exc
    except anthropic.APIStatusError as exc:
        logger.warning("claude_api_error", model=model, status_code=exc.status_code, error=str(exc))
        if exc.status_code in _UNAVAILABLE_STATUSES:
            raise UpstreamUnavailable() from exc
        raise UpstreamFailure() from exc

    if not response.content or getattr(response.content[0], "type", "text") != "text":
        raise NonRetryableError("The AI service returned no text")
    return response.content[0].text
