import logging
from datetime import datetime, timezone
from typing import Optional

from .exceptions import AppNotFoundError, AuthorizationError, SubmissionNotFoundError
from .models import (
    App, AppCategory, AppCreate, ReferralSubmission, Reviewer,
    SubmissionCreate, SubmissionStatus,
)
from .storage import InMemoryStorage


logger = logging.getLogger(__name__)


def _require_admin(reviewer: Optional[Reviewer]) -> None:
    if reviewer is None or not reviewer.is_admin:
        raise AuthorizationError("Admin access required")


class CatalogService:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def list_apps(
        self,
        category: Optional[AppCategory] = None,
        featured_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[App]:
        where = {}
        if category:
            where["category"] = category.value
        if featured_only:
            where["is_featured"] = True
        rows = self.storage.select("apps", where=where, order_by="sort_order", limit=limit)
        return [App(**r) for r in rows]

    def get_app(self, app_id: str) -> App:
        row = self.storage.get("apps", app_id)
        if not row:
            raise AppNotFoundError(f"App {app_id} not found")
        return App(**row)

    def add_app(self, data: AppCreate, reviewer: Optional[Reviewer]) -> App:
        _require_admin(reviewer)
        row = self.storage.insert("apps", {
            **data.model_dump(mode="python", exclude={"referral_link", "image_url", "category"}),
            "category": data.category.value,
            "referral_link": str(data.referral_link),
            "image_url": str(data.image_url) if data.image_url else None,
            "created_at": datetime.now(timezone.utc),
        })
        logger.info(f"App {row['id']} ({row['name']}) added by {reviewer.user_id}")
        return App(**row)

    def delete_app(self, app_id: str, reviewer: Optional[Reviewer]) -> None:
        _require_admin(reviewer)
        if not self.storage.delete("apps", app_id):
            raise AppNotFoundError(f"App {app_id} not found")
        logger.info(f"App {app_id} deleted by {reviewer.user_id}")


class SubmissionService:
    """User-submitted referral links waiting for an admin to list them."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def submit(self, user_id: str, data: SubmissionCreate) -> ReferralSubmission:
        row = self.storage.insert("referral_submissions", {
            "user_id": user_id,
            "app_name": data.app_name,
            "category": data.category.value,
            "referral_link": str(data.referral_link),
            "bonus_amount": data.bonus_amount,
            "description": data.description,
            "status": SubmissionStatus.PENDING.value,
            "created_at": datetime.now(timezone.utc),
        })
        logger.info(f"Referral submission {row['id']} for {data.app_name} from user {user_id}")
        return ReferralSubmission(**row)

    def list_submissions(self, status: Optional[SubmissionStatus] = None) -> list[ReferralSubmission]:
        where = {"status": status.value} if status else None
        rows = self.storage.select("referral_submissions", where=where, order_by="created_at", descending=True)
        return [ReferralSubmission(**r) for r in rows]

    def set_status(self, submission_id: str, status: SubmissionStatus, reviewer: Optional[Reviewer]) -> ReferralSubmission:
        _require_admin(reviewer)
        row = self.storage.update("referral_submissions", submission_id, {"status": status.value})
        if row is None:
            raise SubmissionNotFoundError(f"Submission {submission_id} not found")
        logger.info(f"Submission {submission_id} marked {status.value} by {reviewer.user_id}")
        return ReferralSubmission(**row)
