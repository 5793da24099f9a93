import logging
from datetime import datetime, timezone
from typing import Optional

from .commission import compute_commission
from .config import settings
from .exceptions import (
    AppNotFoundError, AuthorizationError, ClickNotFoundError,
    StatusConflictError, StorageFailure, ValidationError,
)
from .models import App, Attribution, Click, ClickStatus, Reviewer, ReviewResult
from .payouts import PayoutIssuer
from .storage import InMemoryStorage, StorageError, page_limit


logger = logging.getLogger(__name__)

SYSTEM_REVIEWER = Reviewer(user_id="system:auto-review", is_admin=True)


class ClickLedger:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def record_click(self, app_id: str, attribution: Attribution, is_my_referral: bool = False) -> Click:
        if not self.storage.get("apps", app_id):
            raise AppNotFoundError(f"App {app_id} not found")

        row = self.storage.insert("clicks", {
            "app_id": app_id,
            "user_id": attribution.user_id,
            "anonymous_id": attribution.anonymous_id,
            "utm_source": attribution.utm_source,
            "utm_medium": attribution.utm_medium,
            "utm_campaign": attribution.utm_campaign,
            "is_my_referral": is_my_referral,
            "status": ClickStatus.PENDING.value,
            "clicked_at": datetime.now(timezone.utc),
            "confirmed_at": None,
            "commission_amount": None,
        })
        return Click(**row)

    def track_click(self, app_id: str, attribution: Attribution, is_my_referral: bool = False) -> Optional[Click]:
        """Record a click on the redirect path, where tracking must never block navigation."""
        try:
            click = self.record_click(app_id, attribution, is_my_referral)
        except Exception as e:
            logger.error(f"Error tracking click for app {app_id}: {e}")
            return None
        logger.info(
            f"Click {click.id} recorded for app {app_id} "
            f"({click.utm_source}/{click.utm_medium}/{click.utm_campaign})"
        )
        return click

    def get_click(self, click_id: str) -> Click:
        row = self.storage.get("clicks", click_id)
        if not row:
            raise ClickNotFoundError(f"Click {click_id} not found")
        return Click(**row)

    def list_clicks_for_actor(self, user_id: str, limit: Optional[int] = None) -> list[Click]:
        rows = self.storage.select(
            "clicks", where={"user_id": user_id},
            order_by="clicked_at", descending=True,
            limit=page_limit(limit, settings.DASHBOARD_CLICK_LIMIT, settings.ADMIN_CLICK_PAGE_SIZE),
        )
        return [Click(**r) for r in rows]

    def list_clicks_for_review(self, limit: Optional[int] = None) -> list[Click]:
        page_size = page_limit(limit, settings.ADMIN_CLICK_PAGE_SIZE, settings.ADMIN_CLICK_PAGE_SIZE)
        rows = self.storage.select("clicks", order_by="clicked_at", descending=True, limit=page_size)
        return [Click(**r) for r in rows]


class RewardLifecycleManager:
    """Moves a click between pending, confirmed and rejected.

    Every transition is a compare-and-set against the stored status, so a
    repeated or concurrent review to the same status changes nothing and
    cannot trigger a second payout check.
    """

    def __init__(self, storage: InMemoryStorage, payouts: Optional[PayoutIssuer] = None):
        self.storage = storage
        self.payouts = payouts or PayoutIssuer(storage)

    def review_click(self, click_id: Optional[str], new_status: Optional[str], reviewer: Optional[Reviewer]) -> ReviewResult:
        if reviewer is None or not reviewer.is_admin:
            raise AuthorizationError("Admin access required")
        if not click_id or not new_status:
            raise ValidationError("Missing required fields: clickId, status")
        try:
            target = ClickStatus(new_status)
        except ValueError:
            raise ValidationError("Invalid status. Must be: pending, confirmed, or rejected")

        try:
            with self.storage.transaction():
                click = self._load(click_id)
                if click.status == target:
                    logger.info(f"Click {click_id} already {target.value}; nothing to do")
                    return ReviewResult(click=click, payout_id=None, changed=False)

                changes = self._transition_changes(click, target)
                row = self.storage.update(
                    "clicks", click_id, changes, expected={"status": click.status.value},
                )
                if row is None:
                    raise StatusConflictError(f"Click {click_id} was reviewed concurrently")
                updated = Click(**row)
        except StorageError as e:
            failure = StorageFailure(f"Failed to update click: {e}")
            logger.error(f"[{failure.reference}] Error updating click {click_id}: {e}")
            raise failure from e

        logger.info(f"Click {click_id} updated from {click.status.value} to {target.value} by {reviewer.user_id}")

        payout_id = None
        if target == ClickStatus.CONFIRMED and updated.user_id:
            # The confirmation stands either way; the next check retries the payout
            try:
                payout_id = self.payouts.evaluate_payout_eligibility(updated.user_id)
            except StorageFailure as e:
                logger.error(f"[{e.reference}] Payout check failed after confirming click {click_id}")
        return ReviewResult(click=updated, payout_id=payout_id, changed=True)

    def _load(self, click_id: str) -> Click:
        row = self.storage.get("clicks", click_id)
        if not row:
            raise ClickNotFoundError(f"Click {click_id} not found")
        return Click(**row)

    def _transition_changes(self, click: Click, target: ClickStatus) -> dict:
        changes = {"status": target.value}
        if target == ClickStatus.CONFIRMED:
            changes["confirmed_at"] = datetime.now(timezone.utc)
            if click.commission_amount is None:
                changes["commission_amount"] = compute_commission(self._app_for(click), click)
        else:
            # Commission stays on the row for audit; balances filter by status
            changes["confirmed_at"] = None
        return changes

    def _app_for(self, click: Click) -> App:
        row = self.storage.get("apps", click.app_id)
        if not row:
            raise AppNotFoundError(f"App {click.app_id} for click {click.id} not found")
        return App(**row)
