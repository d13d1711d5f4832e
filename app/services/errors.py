"""Exceptions raised by the matching engine and its backend adapters."""


class MatchingError(Exception):
    """Base class for matching engine failures."""


class UserNotFoundError(MatchingError):
    """The requested user id does not resolve to a stored user."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class BackendUnavailableError(MatchingError):
    """The vector search backend could not be reached or refused the call."""


class VectorUnavailableError(MatchingError):
    """A specific datapoint was not returned by the backend."""

    def __init__(self, datapoint_id: str) -> None:
        super().__init__(f"Embedding not found for: {datapoint_id}")
        self.datapoint_id = datapoint_id


class EmbeddingServiceError(MatchingError):
    """Raised when the embedding API is unavailable or returns an error."""
