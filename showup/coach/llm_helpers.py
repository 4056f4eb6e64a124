"""Helpers for model-backed coaches: fence stripping, JSON parsing, overload retry."""

import json
from typing import Any

import structlog
from anthropic._exceptions import OverloadedError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def strip_json_fences(content: str) -> str:
    """Remove a markdown code fence wrapping a JSON reply."""
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        if first_newline != -1:
            content = content[first_newline + 1 :]
        if content.endswith("```"):
            content = content[:-3].rstrip()
    return content


def parse_json_response(content: str) -> dict | list:
    return json.loads(strip_json_fences(content))


@retry(
    retry=retry_if_exception_type(OverloadedError),
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=2, min=2, max=30),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "coach_model_overloaded_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)
async def invoke_with_retry(client: Any, model: str, system: str, messages: list[dict], max_tokens: int = 1024) -> Any:
    """Call ``client.messages.create`` and retry only on 529 overload.

    Returns the full response so callers can read token usage.
    """
    return await client.messages.create(
        model=model,
        system=system,
        messages=messages,
        max_tokens=max_tokens,
    )
