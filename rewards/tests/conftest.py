from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from rewards.api import create_app
from rewards.models import App, Attribution, Reviewer
from rewards.payouts import BalanceService, PayoutIssuer
from rewards.service import ClickLedger, RewardLifecycleManager
from rewards.storage import InMemoryStorage
from rewards.upi import RateLimiter


USER_ID = "550e8400-e29b-41d4-a716-446655440000"
ADMIN_ID = "00000000-0000-0000-0000-00000000a0a0"
ADMIN = Reviewer(user_id=ADMIN_ID, is_admin=True)
NON_ADMIN = Reviewer(user_id=USER_ID, is_admin=False)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def balances(storage):
    return BalanceService(storage)


@pytest.fixture
def payouts(storage, balances):
    return PayoutIssuer(storage, balances)


@pytest.fixture
def ledger(storage):
    return ClickLedger(storage)


@pytest.fixture
def lifecycle(storage, payouts):
    return RewardLifecycleManager(storage, payouts)


@pytest.fixture
def add_app(storage):
    def _add_app(
        bonus_amount: int = 200,
        commission_rate: Optional[Decimal] = None,
        my_commission_rate: Optional[Decimal] = None,
        **extra,
    ) -> App:
        row = storage.insert("apps", {
            "name": extra.pop("name", "Test App"),
            "category": extra.pop("category", "payments"),
            "bonus_amount": bonus_amount,
            "commission_rate": commission_rate,
            "my_commission_rate": my_commission_rate,
            "referral_link": extra.pop("referral_link", "https://partner.example.com/ref/abc"),
            "is_featured": extra.pop("is_featured", False),
            "sort_order": extra.pop("sort_order", 0),
            "created_at": datetime.now(timezone.utc),
            **extra,
        })
        return App(**row)
    return _add_app


@pytest.fixture
def add_profile(storage):
    def _add_profile(user_id: str = USER_ID, upi_id: Optional[str] = None) -> dict:
        return storage.insert("profiles", {
            "id": user_id, "email": f"{user_id[:8]}@example.com",
            "full_name": "Test User", "upi_id": upi_id,
        })
    return _add_profile


@pytest.fixture
def confirmed_click(ledger, lifecycle):
    """Record a click for ``user_id`` on ``app`` and confirm it as admin."""
    def _confirmed_click(app: App, user_id: str = USER_ID, is_my_referral: bool = False):
        click = ledger.record_click(app.id, Attribution(user_id=user_id), is_my_referral=is_my_referral)
        return lifecycle.review_click(click.id, "confirmed", ADMIN)
    return _confirmed_click


@pytest.fixture
def client(storage):
    storage.insert("profiles", {"id": ADMIN_ID, "email": "admin@example.com", "full_name": "Admin", "upi_id": None})
    storage.insert("user_roles", {"user_id": ADMIN_ID, "role": "admin"})
    storage.insert("auth_tokens", {"id": "admin-token", "user_id": ADMIN_ID})
    storage.insert("auth_tokens", {"id": "user-token", "user_id": USER_ID})

    app = create_app(storage=storage, rate_limiter=RateLimiter(5, 60))
    with TestClient(app) as test_client:
        yield test_client


ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}
USER_HEADERS = {"Authorization": "Bearer user-token"}
