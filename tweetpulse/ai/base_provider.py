"""TweetPulse: Abstract Sentiment Provider."""

import json
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from tweetpulse.ai.prompt_template import SENTIMENT_LABELS
from tweetpulse.models.schemas import SentimentOutcome, SentimentRequest, TokenUsage

LABEL_SCORES = {"positive": 0.7, "neutral": 0.0, "negative": -0.7}

# ── Error codes ──
RATE_LIMIT = "RATE_LIMIT"
SERVER_ERROR = "SERVER_ERROR"
TIMEOUT = "TIMEOUT"
CONNECTION_ERROR = "CONNECTION_ERROR"
EMPTY_RESPONSE = "EMPTY_RESPONSE"
TRUNCATED = "TRUNCATED"
UNFINISHED = "UNFINISHED"
SAFETY_BLOCK = "SAFETY_BLOCK"
PARSE_ERROR = "PARSE_ERROR"
INVALID_LABEL = "INVALID_LABEL"
PROMPT_REJECTED = "PROMPT_REJECTED"
API_ERROR = "API_ERROR"

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def label_to_score(label: str) -> float:
    return LABEL_SCORES[label]


def clamp_score(score: float) -> float:
    return max(-1.0, min(1.0, score))


def _numeric_score(value: Any) -> Optional[float]:
    """A finite float, or None when the model's score is unusable."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        score = float(value)
    except OverflowError:
        return None
    return score if math.isfinite(score) else None


def _extract_json(text: str) -> Dict[str, Any]:
    cleaned = _FENCE.sub("", text.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise
        parsed = json.loads(cleaned[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("Sentiment response is not a JSON object")
    return parsed


def parse_sentiment_text(
    text: Optional[str],
    latency_ms: int = 0,
    token_usage: Optional[TokenUsage] = None,
) -> SentimentOutcome:
    """Turn model output text into a classified outcome.

    Missing text is retryable; unparseable JSON and unknown labels are not.
    A score that is missing, non-numeric or not finite is derived from the
    label, and every score is clamped to [-1, 1].
    """
    if text is None or not text.strip():
        return SentimentOutcome.failure(
            EMPTY_RESPONSE, "Model returned an empty response", True, latency_ms
        )

    try:
        payload = _extract_json(text)
    except (ValueError, json.JSONDecodeError) as e:
        return SentimentOutcome.failure(
            PARSE_ERROR, f"Failed to parse JSON response: {e}", False, latency_ms
        )

    label = payload.get("label")
    if isinstance(label, str):
        label = label.strip().lower()
    if label not in SENTIMENT_LABELS:
        return SentimentOutcome.failure(
            INVALID_LABEL, f"Invalid sentiment label: {payload.get('label')!r}", False, latency_ms
        )

    score = _numeric_score(payload.get("score"))
    score = label_to_score(label) if score is None else clamp_score(score)

    summary = payload.get("summary")
    return SentimentOutcome(
        success=True,
        label=label,
        score=score,
        summary=summary if isinstance(summary, str) and summary.strip() else None,
        latency_ms=latency_ms,
        token_usage=token_usage,
    )


class SentimentProvider(ABC):
    """Abstract base for LLM sentiment classification.

    Implementations never raise for per-request problems: every failure is
    returned as a SentimentOutcome carrying (error_code, retryable, message).
    """

    name: str = "base"

    @property
    @abstractmethod
    def model_version(self) -> str:
        """Identifier stored alongside every result."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is configured and ready."""
        ...

    @abstractmethod
    async def analyze(self, request: SentimentRequest) -> SentimentOutcome:
        """Classify one tweet."""
        ...

    async def close(self) -> None:
        return None
