"""AnthropicCoach: discovery replies generated by Claude.

The model is asked for a JSON object ``{"message": ..., "suggestion": ...}``.
A reply that is not valid JSON is still shown to the user as plain text,
without a suggestion.
"""

import json

import anthropic
import pydantic
import structlog

from showup.coach.base import CoachReply
from showup.coach.llm_helpers import invoke_with_retry, parse_json_response
from showup.core.exceptions import ExternalServiceError
from showup.schemas.onboarding import AIMessage, SuggestedChallenge

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = """You are a supportive and motivating coach helping users discover meaningful personal challenges. Your role is to:

1. Help users identify challenges that will genuinely improve their lives
2. Encourage starting with simple, behavioral challenges (like "maintain a skincare routine" or "drink 8 glasses of water daily")
3. Focus on consistency over intensity - small daily habits often create the biggest changes
4. Ask clarifying questions to understand their motivation and lifestyle
5. Suggest realistic timeframes and deposit amounts that feel meaningful but not overwhelming

Key principles:
- The best challenges are often mundane things we want to do consistently
- Behavioral challenges (doing something regularly) work better than outcome-based goals
- Start small - it's better to succeed at a 7-day challenge than fail at a 30-day one
- The deposit should feel significant enough to motivate, but not cause financial stress
- Encourage challenges that build positive habits rather than restrictive ones

Be warm, encouraging, and realistic. Celebrate their decision to invest in themselves."""

REPLY_FORMAT = """

Respond ONLY with a JSON object of this shape:
{
  "message": "<your reply to the user>",
  "suggestion": null | {
    "title": "<clear, actionable title>",
    "description": "<what success looks like>",
    "type": "behavioral|habit|milestone|consistency|wellness|learning|fitness|productivity|custom",
    "suggested_frequency": "daily|weekly|specific-days|custom",
    "suggested_duration": <days, 7-30>,
    "suggested_deposit": <dollars, usually 25-100>,
    "reasoning": "<why this challenge suits them>"
  }
}
Only include a suggestion once you understand what the user wants to work on."""


class AnthropicCoach:
    """Model-backed coach. Selected when ANTHROPIC_API_KEY is configured."""

    def __init__(self, api_key: str, model: str, client: anthropic.AsyncAnthropic | None = None):
        self.model = model
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def generate(self, transcript: list[AIMessage], latest_user_text: str) -> CoachReply:
        messages = [
            {"role": m.role, "content": m.content}
            for m in transcript
            if m.role in ("user", "assistant")
        ]

        try:
            response = await invoke_with_retry(self._client, self.model, SYSTEM_PROMPT + REPLY_FORMAT, messages)
        except anthropic.APIError as exc:
            raise ExternalServiceError("Discovery assistant", f"{type(exc).__name__}: {exc}") from exc

        raw_text: str = response.content[0].text
        usage = getattr(response, "usage", None)
        tokens_used = (usage.input_tokens + usage.output_tokens) if usage else 0

        try:
            data = parse_json_response(raw_text)
            content = data["message"]
            suggestion = SuggestedChallenge.model_validate(data["suggestion"]) if data.get("suggestion") else None
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, pydantic.ValidationError) as exc:
            logger.warning("coach_reply_not_structured", model=self.model, error_type=type(exc).__name__)
            content, suggestion = raw_text, None

        return CoachReply(content=content, suggestion=suggestion, model=self.model, tokens_used=tokens_used)
