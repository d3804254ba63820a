"""
Failure taxonomy for the insight pipeline.

AI round-trip failures are retryable and never touch the stored snapshot.
AccountNotFound / Unauthorized abort before any work and are not retryable.
HistoryUnavailable means an empty history could not be trusted; retry later.
Degraded validation is not an exception: see ValidatedAnalysis.
"""
from typing import Optional


class InsightPipelineError(Exception):
    """Base class for every pipeline failure."""
    retryable = False


class AIRoundTripError(InsightPipelineError):
    """The AI provider could not produce a usable result for this run."""
    retryable = True


class DecodeError(AIRoundTripError):
    """Malformed or unreadable stream / payload."""


class ToolCallMissing(AIRoundTripError):
    """The response carried no tool invocation."""


class ToolCallMismatch(AIRoundTripError):
    def __init__(self, expected: str, actual: Optional[str]):
        super().__init__(f"Expected tool '{expected}', got '{actual}'")
        self.expected = expected
        self.actual = actual


class UpstreamRateLimited(AIRoundTripError):
    def __init__(self, message: str = "AI gateway rate limit exceeded", retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamQuotaExceeded(AIRoundTripError):
    """Provider credits exhausted (HTTP 402)."""


class UpstreamFailure(AIRoundTripError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamTimeout(AIRoundTripError):
    """The hard wall-clock budget for the AI round trip elapsed."""


class AccountNotFound(InsightPipelineError):
    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class Unauthorized(InsightPipelineError):
    pass


class SnapshotWriteFailed(InsightPipelineError):
    retryable = True


class HistoryUnavailable(InsightPipelineError):
    """Call or email history could not be read, so an empty history proves nothing."""
    retryable = True

    def __init__(self, account_id: str, sections):
        super().__init__(f"History for {account_id} unavailable: {', '.join(sections)}")
        self.account_id = account_id
        self.sections = list(sections)
