"""TweetPulse: Google Gemini Provider (REST via httpx)."""

import time
from typing import Any, Dict, Optional

import httpx

from tweetpulse.ai import base_provider as codes
from tweetpulse.ai.base_provider import SentimentProvider, parse_sentiment_text
from tweetpulse.ai.prompt_template import (
    SENTIMENT_RESPONSE_SCHEMA,
    SYSTEM_INSTRUCTION,
    build_sentiment_prompt,
)
from tweetpulse.config import settings
from tweetpulse.core.errors import SentimentProviderError
from tweetpulse.core.logging import get_logger
from tweetpulse.core.retry import RetryPolicy, retry_async, transport_policy
from tweetpulse.models.schemas import SentimentOutcome, SentimentRequest, TokenUsage

logger = get_logger("ai.gemini")

SAFETY_FINISH_REASONS = {
    "SAFETY",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "RECITATION",
    "IMAGE_SAFETY",
}
COMPLETE_FINISH_REASONS = {"STOP"}


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, SentimentProviderError) and error.retryable


class GeminiProvider(SentimentProvider):
    """Gemini ``generateContent`` with JSON response mode."""

    name = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.timeout = timeout or settings.sentiment_request_timeout_secs
        self.retry_policy = retry_policy or transport_policy(settings.sentiment_transport_retries)
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    @property
    def model_version(self) -> str:
        return self.model

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    def _body(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "generationConfig": {
                "temperature": 0.2,
                "topP": 0.95,
                "topK": 40,
                "maxOutputTokens": 256,
                "responseMimeType": "application/json",
                "responseSchema": SENTIMENT_RESPONSE_SCHEMA,
            },
        }

    async def _call(self, prompt: str) -> Dict[str, Any]:
        """One HTTP round trip. Raises SentimentProviderError on failure."""
        url = f"{self.base_url}/{self.model}:generateContent"
        try:
            resp = await self._client.post(
                url,
                json=self._body(prompt),
                headers={"x-goog-api-key": self.api_key or ""},
            )
        except httpx.TimeoutException as e:
            raise SentimentProviderError(
                codes.TIMEOUT, f"Request timed out after {self.timeout}s", True
            ) from e
        except httpx.RequestError as e:
            raise SentimentProviderError(codes.CONNECTION_ERROR, str(e), True) from e

        if resp.status_code == 429:
            raise SentimentProviderError(
                codes.RATE_LIMIT, f"Gemini API error (429): {resp.text}", True, 429
            )
        if resp.status_code >= 500:
            raise SentimentProviderError(
                codes.SERVER_ERROR,
                f"Gemini API error ({resp.status_code}): {resp.text}",
                True,
                resp.status_code,
            )
        if resp.status_code == 400:
            raise SentimentProviderError(
                codes.PROMPT_REJECTED, f"Gemini rejected the request: {resp.text}", False, 400
            )
        if resp.is_error:
            raise SentimentProviderError(
                codes.API_ERROR,
                f"Gemini API error ({resp.status_code}): {resp.text}",
                False,
                resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise SentimentProviderError(
                codes.PARSE_ERROR, "Gemini returned a non-JSON body", False
            ) from e

    def _classify(self, data: Dict[str, Any], latency_ms: int) -> SentimentOutcome:
        usage = data.get("usageMetadata") or {}
        token_usage = (
            TokenUsage(
                prompt=usage.get("promptTokenCount", 0) or 0,
                completion=usage.get("candidatesTokenCount", 0) or 0,
                total=usage.get("totalTokenCount", 0) or 0,
            )
            if usage
            else None
        )

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            return SentimentOutcome.failure(
                codes.PROMPT_REJECTED, f"Prompt blocked: {block_reason}", False, latency_ms
            )

        candidates = data.get("candidates") or []
        if not candidates:
            return SentimentOutcome.failure(
                codes.EMPTY_RESPONSE, "Gemini returned no candidates", True, latency_ms
            )

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        if finish_reason in SAFETY_FINISH_REASONS:
            return SentimentOutcome.failure(
                codes.SAFETY_BLOCK, f"Response blocked: {finish_reason}", False, latency_ms
            )
        if finish_reason == "MAX_TOKENS":
            return SentimentOutcome.failure(
                codes.TRUNCATED, "Response truncated at max tokens", True, latency_ms
            )

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if finish_reason not in COMPLETE_FINISH_REASONS and not text.strip():
            return SentimentOutcome.failure(
                codes.UNFINISHED,
                f"Generation did not finish (finishReason={finish_reason})",
                True,
                latency_ms,
            )

        outcome = parse_sentiment_text(text, latency_ms, token_usage)
        outcome.token_usage = token_usage
        return outcome

    async def analyze(self, request: SentimentRequest) -> SentimentOutcome:
        prompt = build_sentiment_prompt(
            request.content, request.author_handle, request.language
        )
        start = time.perf_counter()
        try:
            data = await retry_async(
                lambda: self._call(prompt),
                self.retry_policy,
                is_retryable=_is_retryable,
                label=f"Gemini call for tweet {request.tweet_id}",
            )
        except SentimentProviderError as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.warning(
                f"Gemini call failed for tweet {request.tweet_id}: {e.code}",
                extra={"tweet_id": request.tweet_id, "error_code": e.code},
            )
            return SentimentOutcome.failure(e.code, str(e), e.retryable, latency_ms)

        latency_ms = int((time.perf_counter() - start) * 1000)
        return self._classify(data, latency_ms)
