from typing import Optional
from uuid import uuid4


class RewardsError(Exception):
    pass


class AuthorizationError(RewardsError):
    pass


class ValidationError(RewardsError):
    pass


class RateLimitError(RewardsError):
    pass


class NotFoundError(RewardsError):
    pass


class ClickNotFoundError(NotFoundError):
    pass


class AppNotFoundError(NotFoundError):
    pass


class PayoutNotFoundError(NotFoundError):
    pass


class SubmissionNotFoundError(NotFoundError):
    pass


class StatusConflictError(RewardsError):
    pass


class StorageFailure(RewardsError):
    """Storage write failed; ``reference`` correlates the caller's error with the logs."""

    def __init__(self, message: str, reference: Optional[str] = None):
        super().__init__(message)
        self.reference = reference or str(uuid4())
