import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .commission import compute_amount
from .config import settings
from .exceptions import (
    AuthorizationError, PayoutNotFoundError, StatusConflictError, StorageFailure,
)
from .models import App, ClickStatus, Payout, PayoutStatus, Profile, Reviewer
from .storage import InMemoryStorage, StorageError, page_limit


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class BalanceService:
    """Derives a profile's balances from its click and payout rows on every read.

    Nothing is incremented in place, so a click can only ever count once:
    confirmed clicks make up ``total_earnings``, and every payout that has not
    failed is deducted from it to give ``confirmed_earnings``.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def get_profile(self, user_id: str) -> Profile:
        row = self.storage.get("profiles", user_id) or {"id": user_id}
        clicks = self.storage.select("clicks", where={"user_id": user_id})

        total_earnings = ZERO
        pending_earnings = ZERO
        for click in clicks:
            if click["status"] == ClickStatus.CONFIRMED:
                total_earnings += click.get("commission_amount") or ZERO
            elif click["status"] == ClickStatus.PENDING:
                pending_earnings += self._pending_amount(click)

        paid_out = sum(
            (p["amount"] for p in self.storage.select("payouts", where={"user_id": user_id})
             if p["status"] != PayoutStatus.FAILED),
            ZERO,
        )

        return Profile(
            id=user_id,
            email=row.get("email"),
            full_name=row.get("full_name"),
            upi_id=row.get("upi_id"),
            total_clicks=len(clicks),
            pending_earnings=pending_earnings,
            confirmed_earnings=total_earnings - paid_out,
            total_earnings=total_earnings,
        )

    def _pending_amount(self, click: dict) -> Decimal:
        if click.get("commission_amount") is not None:
            return click["commission_amount"]
        app_row = self.storage.get("apps", click["app_id"])
        if not app_row:
            return ZERO
        return compute_amount(App(**app_row), click.get("is_my_referral", False))


class PayoutIssuer:
    def __init__(self, storage: InMemoryStorage, balances: Optional[BalanceService] = None):
        self.storage = storage
        self.balances = balances or BalanceService(storage)

    def evaluate_payout_eligibility(self, user_id: str) -> Optional[str]:
        """Create a pending payout for the whole confirmed balance once it reaches the threshold.

        Reading the balance and inserting the payout share one transaction, and
        the new payout is deducted from ``confirmed_earnings`` immediately, so
        repeated checks cannot issue twice for the same balance.
        """
        try:
            with self.storage.transaction():
                profile = self.balances.get_profile(user_id)
                if profile.confirmed_earnings < settings.PAYOUT_THRESHOLD:
                    return None
                if not profile.upi_id:
                    logger.info(
                        f"User {user_id} has ₹{profile.confirmed_earnings} confirmed but no UPI ID on file"
                    )
                    return None

                logger.info(f"User {user_id} eligible for payout: ₹{profile.confirmed_earnings}")
                now = datetime.now(timezone.utc)
                payout = self.storage.insert("payouts", {
                    "user_id": user_id,
                    "amount": profile.confirmed_earnings,
                    "upi_id": profile.upi_id,
                    "status": PayoutStatus.PENDING.value,
                    "created_at": now,
                    "updated_at": now,
                })
        except StorageError as e:
            failure = StorageFailure("Failed to create payout")
            logger.error(f"[{failure.reference}] Error creating payout for user {user_id}: {e}")
            raise failure from e

        logger.info(f"Payout created: {payout['id']} for ₹{payout['amount']}")
        return payout["id"]

    def get_payout(self, payout_id: str) -> Payout:
        row = self.storage.get("payouts", payout_id)
        if not row:
            raise PayoutNotFoundError(f"Payout {payout_id} not found")
        return Payout(**row)

    def list_payouts(self, user_id: str) -> list[Payout]:
        rows = self.storage.select("payouts", where={"user_id": user_id}, order_by="created_at", descending=True)
        return [Payout(**r) for r in rows]

    def list_all_payouts(self, limit: Optional[int] = None) -> list[Payout]:
        page_size = page_limit(limit, settings.ADMIN_PAYOUT_PAGE_SIZE, settings.ADMIN_PAYOUT_PAGE_SIZE)
        rows = self.storage.select("payouts", order_by="created_at", descending=True, limit=page_size)
        return [Payout(**r) for r in rows]

    def update_payout_status(self, payout_id: str, status: PayoutStatus, reviewer: Reviewer) -> Payout:
        """Record the outcome of a payout made outside this service.

        A failed payout stops being deducted, returning its amount to the
        user's confirmed balance.
        """
        if not reviewer.is_admin:
            raise AuthorizationError("Admin access required")

        payout = self.get_payout(payout_id)
        if payout.status == status:
            return payout
        if payout.status != PayoutStatus.PENDING:
            raise StatusConflictError(f"Cannot change payout in {payout.status.value} state")

        updated = self.storage.update(
            "payouts", payout_id,
            {"status": status.value, "updated_at": datetime.now(timezone.utc)},
            expected={"status": PayoutStatus.PENDING.value},
        )
        if updated is None:
            raise StatusConflictError(f"Payout {payout_id} was changed concurrently")

        logger.info(f"Payout {payout_id} marked {status.value} by {reviewer.user_id}")
        return Payout(**updated)
