import logging
import re
from typing import Any, Iterable, Optional

from limits import parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from .config import settings
from .exceptions import RateLimitError, StorageFailure, ValidationError
from .storage import InMemoryStorage, StorageError


logger = logging.getLogger(__name__)

UPI_PATTERN = re.compile(r"[A-Za-z0-9._-]{3,}@[A-Za-z]{3,}")
UPI_MIN_LENGTH = 3
UPI_MAX_LENGTH = 50


class RateLimiter:
    """Moving-window limit per user id on top of a ``limits`` storage.

    The default ``MemoryStorage`` is process-local: counters reset on restart
    and are not shared between processes.
    """

    def __init__(self, max_requests: int, window_seconds: int, storage: Optional[Storage] = None,
                 namespace: str = "upi-update"):
        self.limit = parse(f"{max_requests}/{window_seconds} second")
        self.namespace = namespace
        self.storage = storage or MemoryStorage()
        self.strategy = MovingWindowRateLimiter(self.storage)

    def allow(self, key: str) -> bool:
        return self.strategy.hit(self.limit, self.namespace, key)


def validate_upi_id(upi_id: Any, known_providers: Optional[Iterable[str]] = None) -> str:
    if not upi_id or not isinstance(upi_id, str):
        raise ValidationError("Valid UPI ID is required")
    if not UPI_MIN_LENGTH <= len(upi_id) <= UPI_MAX_LENGTH:
        raise ValidationError("UPI ID must be 3-50 characters")
    if not UPI_PATTERN.fullmatch(upi_id):
        raise ValidationError("Invalid UPI ID format. Use: username@provider")

    providers = known_providers if known_providers is not None else settings.KNOWN_UPI_PROVIDERS
    provider = upi_id.split("@", 1)[1].lower()
    if provider not in providers:
        logger.warning(f"Unknown UPI provider: {provider} for UPI ID: {upi_id}")
    return upi_id


class PayoutDestinationService:
    def __init__(self, storage: InMemoryStorage, rate_limiter: Optional[RateLimiter] = None):
        self.storage = storage
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.UPI_RATE_LIMIT_MAX_REQUESTS,
            settings.UPI_RATE_LIMIT_WINDOW_SECONDS,
        )

    def set_payout_destination(self, user_id: str, candidate: Any) -> str:
        if not self.rate_limiter.allow(user_id):
            logger.warning(f"UPI update rate limit exceeded for user {user_id}")
            raise RateLimitError("Rate limit exceeded. Please try again later.")

        upi_id = validate_upi_id(candidate)

        try:
            with self.storage.transaction():
                if self.storage.update("profiles", user_id, {"upi_id": upi_id}) is None:
                    self.storage.insert("profiles", {"id": user_id, "upi_id": upi_id})
        except StorageError as e:
            failure = StorageFailure("Failed to update UPI ID. Please try again or contact support.")
            logger.error(f"[{failure.reference}] Error updating UPI ID for user {user_id}: {e!r}")
            raise failure from e

        logger.info(f"UPI ID updated for user {user_id}")
        return upi_id
