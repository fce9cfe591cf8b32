"""TweetPulse: Anthropic Claude Provider."""

import time
from typing import Any, Optional

import anthropic
from anthropic import AsyncAnthropic

from tweetpulse.ai import base_provider as codes
from tweetpulse.ai.base_provider import SentimentProvider, parse_sentiment_text
from tweetpulse.ai.prompt_template import SYSTEM_INSTRUCTION, build_sentiment_prompt
from tweetpulse.config import settings
from tweetpulse.core.errors import SentimentProviderError
from tweetpulse.core.logging import get_logger
from tweetpulse.core.retry import RetryPolicy, retry_async, transport_policy
from tweetpulse.models.schemas import SentimentOutcome, SentimentRequest, TokenUsage

logger = get_logger("ai.claude")

COMPLETE_STOP_REASONS = {"end_turn", "stop_sequence"}


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, SentimentProviderError) and error.retryable


def _translate(error: anthropic.AnthropicError) -> SentimentProviderError:
    """Map SDK exceptions onto our retryable/non-retryable codes."""
    if isinstance(error, anthropic.APITimeoutError):
        return SentimentProviderError(codes.TIMEOUT, str(error), True)
    if isinstance(error, anthropic.APIConnectionError):
        return SentimentProviderError(codes.CONNECTION_ERROR, str(error), True)
    if isinstance(error, anthropic.RateLimitError):
        return SentimentProviderError(codes.RATE_LIMIT, str(error), True, 429)
    if isinstance(error, anthropic.BadRequestError):
        return SentimentProviderError(codes.PROMPT_REJECTED, str(error), False, 400)
    if isinstance(error, anthropic.APIStatusError):
        status = error.status_code
        if status >= 500:
            return SentimentProviderError(codes.SERVER_ERROR, str(error), True, status)
        return SentimentProviderError(codes.API_ERROR, str(error), False, status)
    return SentimentProviderError(codes.API_ERROR, str(error), False)


class ClaudeProvider(SentimentProvider):
    """Anthropic Claude provider for sentiment classification."""

    name = "claude"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        retry_policy: Optional[RetryPolicy] = None,
        client: Any = None,
    ):
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.claude_model
        self.retry_policy = retry_policy or transport_policy(settings.sentiment_transport_retries)
        if client is not None:
            self.client = client
        elif self.api_key:
            # Retries are handled by our own policy
            self.client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=timeout or settings.sentiment_request_timeout_secs,
                max_retries=0,
            )
        else:
            self.client = None

    @property
    def model_version(self) -> str:
        return self.model

    def is_available(self) -> bool:
        return self.client is not None

    async def close(self) -> None:
        if self.client is not None and hasattr(self.client, "close"):
            await self.client.close()

    async def _call(self, prompt: str) -> Any:
        try:
            return await self.client.messages.create(
                model=self.model,
                max_tokens=256,
                temperature=0.2,
                system=SYSTEM_INSTRUCTION,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.AnthropicError as e:
            raise _translate(e) from e

    def _classify(self, response: Any, latency_ms: int) -> SentimentOutcome:
        usage = getattr(response, "usage", None)
        token_usage = None
        if usage is not None:
            prompt_tokens = getattr(usage, "input_tokens", 0) or 0
            completion_tokens = getattr(usage, "output_tokens", 0) or 0
            token_usage = TokenUsage(
                prompt=prompt_tokens,
                completion=completion_tokens,
                total=prompt_tokens + completion_tokens,
            )

        stop_reason = getattr(response, "stop_reason", None)
        if stop_reason == "refusal":
            return SentimentOutcome.failure(
                codes.SAFETY_BLOCK, "Model refused to classify the content", False, latency_ms
            )
        if stop_reason == "max_tokens":
            return SentimentOutcome.failure(
                codes.TRUNCATED, "Response truncated at max tokens", True, latency_ms
            )

        text = "".join(
            getattr(block, "text", "")
            for block in (getattr(response, "content", None) or [])
            if getattr(block, "type", None) == "text"
        )
        if stop_reason not in COMPLETE_STOP_REASONS:
            return SentimentOutcome.failure(
                codes.UNFINISHED,
                f"Generation did not finish (stop_reason={stop_reason})",
                True,
                latency_ms,
            )

        outcome = parse_sentiment_text(text, latency_ms, token_usage)
        outcome.token_usage = token_usage
        return outcome

    async def analyze(self, request: SentimentRequest) -> SentimentOutcome:
        if not self.is_available():
            raise RuntimeError("Claude provider not configured")

        prompt = build_sentiment_prompt(
            request.content, request.author_handle, request.language
        )
        start = time.perf_counter()
        try:
            response = await retry_async(
                lambda: self._call(prompt),
                self.retry_policy,
                is_retryable=_is_retryable,
                label=f"Claude call for tweet {request.tweet_id}",
            )
        except SentimentProviderError as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.warning(
                f"Claude call failed for tweet {request.tweet_id}: {e.code}",
                extra={"tweet_id": request.tweet_id, "error_code": e.code},
            )
            return SentimentOutcome.failure(e.code, str(e), e.retryable, latency_ms)

        latency_ms = int((time.perf_counter() - start) * 1000)
        return self._classify(response, latency_ms)
