import logging
from typing import Optional

from rules.rule_engine import ActionType, Rule, RuleEngine, TriggerEvent

from .models import Click, ClickStatus, ReviewResult
from .service import SYSTEM_REVIEWER, RewardLifecycleManager
from .storage import InMemoryStorage


logger = logging.getLogger(__name__)


class AutoReviewer:
    """Applies admin-defined rules to clicks as they are recorded.

    Rules run in priority order and the first review decision wins; later
    confirm/reject actions see a click that is no longer pending and skip.
    """

    def __init__(
        self,
        storage: InMemoryStorage,
        lifecycle: RewardLifecycleManager,
        engine: Optional[RuleEngine] = None,
    ):
        self.storage = storage
        self.lifecycle = lifecycle
        self.engine = engine or RuleEngine()
        self.engine.register_handler(ActionType.CONFIRM_CLICK, self._confirm)
        self.engine.register_handler(ActionType.REJECT_CLICK, self._reject)

    def add_rule(self, rule: Rule) -> None:
        self.engine.add_rule(rule)

    def on_click_recorded(self, click: Click) -> list[dict]:
        if not self.engine.rules:
            return []
        # Action failures are caught and reported per action by the engine
        results = self.engine.execute(TriggerEvent.CLICK_RECORDED, self.build_context(click))
        if results:
            logger.info(f"Click {click.id} matched rules: {', '.join(r['rule_id'] for r in results)}")
        return results

    def build_context(self, click: Click) -> dict:
        app = self.storage.get("apps", click.app_id) or {}
        return {
            "click": {
                "id": click.id,
                "app_id": click.app_id,
                "utm_source": click.utm_source,
                "utm_medium": click.utm_medium,
                "utm_campaign": click.utm_campaign,
                "is_my_referral": click.is_my_referral,
            },
            "app": {
                "id": app.get("id"),
                "name": app.get("name"),
                "category": app.get("category"),
                "bonus_amount": app.get("bonus_amount"),
            },
            "actor": {"is_authenticated": not click.is_anonymous},
        }

    def _confirm(self, params: dict, context: dict) -> dict:
        return self._decide(ClickStatus.CONFIRMED, context)

    def _reject(self, params: dict, context: dict) -> dict:
        return self._decide(ClickStatus.REJECTED, context)

    def _decide(self, status: ClickStatus, context: dict) -> dict:
        click_id = context["click"]["id"]
        row = self.storage.get("clicks", click_id)
        if not row or row["status"] != ClickStatus.PENDING:
            return {"action": "review", "click_id": click_id, "status": "skipped"}

        result: ReviewResult = self.lifecycle.review_click(click_id, status.value, SYSTEM_REVIEWER)
        logger.info(f"Rule {context['rule']['id']} set click {click_id} to {status.value}")
        return {
            "action": "review",
            "click_id": click_id,
            "status": result.click.status.value,
            "payout_id": result.payout_id,
        }
