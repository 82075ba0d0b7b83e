"""
Error types raised by the sync engine and analysis pipeline.
"""
from typing import Any, Dict, List, Optional


class ChessInsightsError(Exception):
    """Base class for all application errors."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "statusCode": self.status_code,
        }


class UserNotFoundError(ChessInsightsError):
    """The username does not exist on the platform. Not retryable."""

    code = "USER_NOT_FOUND"
    status_code = 404

    def __init__(self, source: str, username: str):
        super().__init__(f"{source} user not found: {username}")
        self.source = source
        self.username = username


class RateLimitError(ChessInsightsError):
    """The platform throttled us (HTTP 429). Retry after backing off."""

    code = "RATE_LIMIT"
    status_code = 429
    retryable = True

    def __init__(self, source: str, retry_after: Optional[float] = None):
        message = f"Rate limited by {source}"
        if retry_after is not None:
            message += f" (retry after {retry_after:g}s)"
        super().__init__(message)
        self.source = source
        self.retry_after = retry_after

    @classmethod
    def from_response(cls, source: str, response: Any) -> "RateLimitError":
        """Build from a 429 response, reading a numeric Retry-After header if present."""
        value = (getattr(response, "headers", None) or {}).get("Retry-After")
        try:
            retry_after = float(value) if value is not None else None
        except ValueError:
            retry_after = None
        return cls(source, retry_after)


class ExternalApiError(ChessInsightsError):
    """Generic upstream failure (bad status, network error, bad payload)."""

    code = "EXTERNAL_API_ERROR"
    status_code = 502
    retryable = True

    def __init__(
        self,
        source: str,
        original_error: Optional[Exception] = None,
        http_status: Optional[int] = None,
    ):
        if original_error is not None:
            detail = str(original_error)
        elif http_status is not None:
            detail = f"HTTP {http_status}"
        else:
            detail = "Unknown error"
        super().__init__(f"Error fetching from {source}: {detail}")
        self.source = source
        self.original_error = original_error
        self.http_status = http_status


class IncompleteFetchError(ChessInsightsError):
    """
    Part of a platform fetch failed after other parts succeeded.

    Carries the games that did arrive so they can still be saved. Retryable
    when any underlying failure is; a rate limit keeps its 429 status.
    """

    code = "INCOMPLETE_FETCH"
    status_code = 502

    def __init__(self, source: str, games: List[Any], errors: List[ChessInsightsError]):
        detail = "; ".join(e.message for e in errors) or "Unknown error"
        super().__init__(f"Incomplete fetch from {source} ({len(games)} games kept): {detail}")
        self.source = source
        self.games = games
        self.errors = errors
        self.retryable = any(e.retryable for e in errors)
        if any(isinstance(e, RateLimitError) for e in errors):
            self.status_code = RateLimitError.status_code

    @property
    def retry_after(self) -> Optional[float]:
        waits = [e.retry_after for e in self.errors if isinstance(e, RateLimitError) and e.retry_after is not None]
        return max(waits) if waits else None


class DatabaseError(ChessInsightsError):
    """Persistence failure."""

    code = "DATABASE_ERROR"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        if original_error is not None:
            message = f"{message}: {original_error}"
        super().__init__(message)
        self.original_error = original_error


class AccountNotFoundError(ChessInsightsError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class GameNotFoundError(ChessInsightsError):
    code = "GAME_NOT_FOUND"
    status_code = 404

    def __init__(self, game_id: str):
        super().__init__(f"Game {game_id} not found")
        self.game_id = game_id


class EngineError(ChessInsightsError):
    """The local evaluator failed to start or to complete a search."""

    code = "ENGINE_ERROR"
