from core.errors import Error

from .constants import MAX_VOTE_SCORE, MIN_VOTE_SCORE


class ContestError(Error):
    """Base exception for contest operations."""


class NotFoundError(ContestError):
    """Raised when a configuration, submission or vote row is missing."""


class UnauthorizedError(ContestError):
    """Raised when the caller may not perform the requested action."""


class BadRequestError(ContestError):
    """Raised when a request violates a contest rule."""


class WindowClosedError(BadRequestError):
    """Raised when an action is attempted outside its time window."""


class DuplicateSubmissionError(BadRequestError):
    """Raised when a user who already submitted tries to submit again."""


class DuplicateVoteError(BadRequestError):
    """Raised when a reviewer votes twice on the same submission."""


class InvalidScoreError(BadRequestError):
    """Raised when a vote criterion is outside the accepted range."""

    def __init__(self, field: str, value: int):
        self.field = field
        self.value = value
        super().__init__(
            f"{field} must be between {MIN_VOTE_SCORE} and {MAX_VOTE_SCORE}, "
            f"got {value}"
        )
