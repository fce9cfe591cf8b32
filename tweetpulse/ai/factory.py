"""TweetPulse: Sentiment Provider Selection."""

from tweetpulse.ai.base_provider import SentimentProvider
from tweetpulse.ai.claude_provider import ClaudeProvider
from tweetpulse.ai.gemini_provider import GeminiProvider
from tweetpulse.config import settings

PROVIDERS = {
    "gemini": GeminiProvider,
    "claude": ClaudeProvider,
}


def build_provider(name: str | None = None) -> SentimentProvider:
    """Construct the configured provider. Raises if it isn't usable."""
    name = (name or settings.sentiment_provider).lower()
    if name not in PROVIDERS:
        raise ValueError(f"Unknown sentiment provider: {name}")
    provider = PROVIDERS[name]()
    if not provider.is_available():
        raise RuntimeError(f"Sentiment provider '{name}' is not configured")
    return provider
