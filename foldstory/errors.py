"""Error types raised by foldstory."""


class FoldstoryError(Exception):
    """Base class for all foldstory errors."""


class ValidationError(FoldstoryError):
    """The identifier entered by the user is malformed or unrecognized."""


class NoMappingFound(ValidationError):
    """The identifier is valid but has no UniProt linkage."""


class SearchFailed(FoldstoryError):
    """The search service never returned a complete result set."""


class ExhaustedRetries(SearchFailed):
    """Every attempt of a backoff loop was retryable and none succeeded."""

    def __init__(self, attempts: int, last_reason: str | None = None) -> None:
        self.attempts = attempts
        self.last_reason = last_reason
        message = f"Search failed after {attempts} attempts"
        if last_reason:
            message += f" (last: {last_reason})"
        super().__init__(message)


class SearchTimedOut(SearchFailed):
    """The search exceeded its overall time ceiling."""


class EngineOperationFailed(FoldstoryError):
    """A queued visualization-engine operation raised."""


class TimedOut(FoldstoryError):
    """A bounded wait for snapshot registration ran out of attempts."""


class DuplicateSceneKey(FoldstoryError, ValueError):
    """Two scenes in one story would share a key."""
