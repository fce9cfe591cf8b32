"""TweetPulse: Sentiment Prompt Template."""

from typing import Optional

from tweetpulse.models.sentiment_models import SentimentLabel

MAX_CONTENT_CHARS = 2000

SENTIMENT_LABELS = tuple(label.value for label in SentimentLabel)

SYSTEM_INSTRUCTION = """You are a sentiment analysis expert specializing in developer tools and coding agent feedback.
Provide accurate, consistent sentiment classifications based on the content's overall tone and intent.
Always respond with valid JSON containing label, score, and summary fields. No other text."""

# JSON schema handed to providers that support structured output
SENTIMENT_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "label": {"type": "string", "enum": list(SENTIMENT_LABELS)},
        "score": {"type": "number"},
        "summary": {"type": "string"},
    },
    "required": ["label", "score"],
}


def truncate_content(content: str, max_chars: int = MAX_CONTENT_CHARS) -> str:
    if len(content) <= max_chars:
        return content
    return content[: max_chars - 1].rstrip() + "…"


def build_sentiment_prompt(
    content: str,
    author_handle: Optional[str] = None,
    language: Optional[str] = None,
    max_chars: int = MAX_CONTENT_CHARS,
) -> str:
    author_info = f"\nAuthor: @{author_handle}" if author_handle else ""
    lang_info = f"\nLanguage: {language}" if language else ""

    return f"""Analyze the sentiment of this tweet about coding agents or AI development tools.

Tweet Content:
"{truncate_content(content, max_chars)}"{author_info}{lang_info}

Classify the overall sentiment as one of: positive, neutral, or negative.

Guidelines:
- "positive": Expresses satisfaction, enthusiasm, praise, or constructive feedback
- "neutral": Factual statements, questions, or mixed feelings without clear positive/negative bias
- "negative": Criticism, frustration, complaints, or warnings without constructive intent

Respond with ONLY a JSON object in this exact format:
{{
  "label": "positive" | "neutral" | "negative",
  "score": <number between -1.0 (most negative) and 1.0 (most positive)>,
  "summary": "<brief 1-sentence explanation of why this sentiment was chosen>"
}}"""
