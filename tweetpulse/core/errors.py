"""TweetPulse: Pipeline Exception Hierarchy."""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


# ── Normalization (per-item, recorded and skipped) ──


class NormalizationError(PipelineError):
    """A raw item could not be turned into a normalized tweet."""

    code = "normalization_failed"


class MissingIdentifier(NormalizationError):
    code = "missing_identifier"


class MissingContent(NormalizationError):
    code = "missing_content"


# ── Scraper platform (fatal to the attempt) ──


class ApifyAPIError(PipelineError):
    """Raised when the Apify API returns an error."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ApifyRunFailed(PipelineError):
    """An actor run reached a terminal state other than SUCCEEDED."""

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Apify run {run_id} finished with status {status}")


class ApifyRunTimeout(PipelineError):
    """An actor run did not finish within the configured wait bound."""


# ── Backfill state machine ──


class BackfillBatchNotFound(PipelineError):
    pass


class BackfillStateError(PipelineError):
    """Illegal transition requested on a backfill batch."""


class BackfillGuardError(PipelineError):
    """Refused to start new scraper work without an explicit force flag."""


# ── Sentiment provider ──


class SentimentProviderError(PipelineError):
    """Transport-level provider failure, classified for retry decisions."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)
