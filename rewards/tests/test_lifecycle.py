"""
Unit Tests for the click review lifecycle

Tests cover:
1. Click recording and listing
2. Review authorization and validation
3. Confirm / reject / re-open transitions
4. Balance derivation and idempotent confirmation
5. Payout eligibility and duplicate prevention
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest

from rewards.exceptions import (
    AppNotFoundError, AuthorizationError, ClickNotFoundError,
    StatusConflictError, StorageFailure, ValidationError,
)
from rewards.models import Attribution, ClickStatus, PayoutStatus
from rewards.storage import StorageError

from conftest import ADMIN, NON_ADMIN, USER_ID


class TestClickLedger:
    def test_record_click_is_pending(self, ledger, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(anonymous_id="anon-1"))

        assert click.status == ClickStatus.PENDING
        assert click.anonymous_id == "anon-1"
        assert click.user_id is None
        assert click.confirmed_at is None
        assert click.commission_amount is None
        assert click.clicked_at is not None

    def test_record_click_unknown_app(self, ledger):
        with pytest.raises(AppNotFoundError):
            ledger.record_click("missing", Attribution(user_id=USER_ID))

    def test_track_click_swallows_failures(self, ledger, add_app):
        app = add_app()
        with patch.object(ledger.storage, "insert", side_effect=StorageError("down")):
            assert ledger.track_click(app.id, Attribution(user_id=USER_ID)) is None

    def test_actor_listing_most_recent_first(self, ledger, add_app):
        app = add_app()
        first = ledger.record_click(app.id, Attribution(user_id=USER_ID))
        second = ledger.record_click(app.id, Attribution(user_id=USER_ID))
        ledger.record_click(app.id, Attribution(user_id="someone-else"))
        ledger.storage.update("clicks", first.id, {"clicked_at": first.clicked_at - timedelta(minutes=5)})

        clicks = ledger.list_clicks_for_actor(USER_ID)
        assert [c.id for c in clicks] == [second.id, first.id]

    def test_review_listing_is_bounded(self, ledger, add_app):
        app = add_app()
        for i in range(60):
            ledger.record_click(app.id, Attribution(anonymous_id=f"anon-{i}"))

        clicks = ledger.list_clicks_for_review()
        assert len(clicks) == 50
        assert clicks[0].clicked_at >= clicks[-1].clicked_at

    @pytest.mark.parametrize("limit, expected", [(-1, 1), (0, 1), (10, 10), (500, 50)])
    def test_requested_page_size_is_clamped(self, ledger, add_app, limit, expected):
        app = add_app()
        for i in range(60):
            ledger.record_click(app.id, Attribution(user_id=USER_ID))

        assert len(ledger.list_clicks_for_review(limit)) == expected
        assert len(ledger.list_clicks_for_actor(USER_ID, limit)) == expected


class TestReviewPreconditions:
    def test_non_admin_cannot_review(self, ledger, lifecycle, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        with pytest.raises(AuthorizationError):
            lifecycle.review_click(click.id, "confirmed", NON_ADMIN)
        assert ledger.get_click(click.id).status == ClickStatus.PENDING

    def test_missing_reviewer(self, lifecycle):
        with pytest.raises(AuthorizationError):
            lifecycle.review_click("click", "confirmed", None)

    def test_missing_fields(self, lifecycle):
        with pytest.raises(ValidationError, match="Missing required fields"):
            lifecycle.review_click(None, "confirmed", ADMIN)
        with pytest.raises(ValidationError, match="Missing required fields"):
            lifecycle.review_click("click", "", ADMIN)

    def test_invalid_status(self, ledger, lifecycle, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        with pytest.raises(ValidationError, match="Invalid status"):
            lifecycle.review_click(click.id, "approved", ADMIN)

    def test_unknown_click(self, lifecycle):
        with pytest.raises(ClickNotFoundError):
            lifecycle.review_click("missing", "confirmed", ADMIN)


class TestTransitions:
    def test_anonymous_click_confirmed_end_to_end(self, ledger, lifecycle, add_app):
        """Anonymous visitor clicks a ₹200 app with default rates and an admin confirms it."""
        app = add_app(bonus_amount=200)
        click = ledger.record_click(app.id, Attribution(anonymous_id="anon-1"))
        assert click.status == ClickStatus.PENDING

        result = lifecycle.review_click(click.id, "confirmed", ADMIN)

        assert result.changed
        assert result.payout_id is None
        assert result.click.status == ClickStatus.CONFIRMED
        assert result.click.commission_amount == Decimal("60")
        assert result.click.confirmed_at is not None

    def test_reject_keeps_confirmed_at_null(self, ledger, lifecycle, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        result = lifecycle.review_click(click.id, "rejected", ADMIN)

        assert result.click.status == ClickStatus.REJECTED
        assert result.click.confirmed_at is None
        assert result.click.commission_amount is None

    def test_reject_after_confirm_keeps_commission_for_audit(self, confirmed_click, lifecycle, balances, add_app):
        app = add_app()
        confirmed = confirmed_click(app)

        result = lifecycle.review_click(confirmed.click.id, "rejected", ADMIN)

        assert result.click.commission_amount == Decimal("60")
        assert result.click.confirmed_at is None
        assert balances.get_profile(USER_ID).confirmed_earnings == Decimal("0")

    def test_reopen_clears_confirmed_at(self, confirmed_click, lifecycle, balances, add_app):
        app = add_app()
        confirmed = confirmed_click(app)

        result = lifecycle.review_click(confirmed.click.id, "pending", ADMIN)

        assert result.click.status == ClickStatus.PENDING
        assert result.click.confirmed_at is None
        assert result.click.commission_amount == Decimal("60")
        profile = balances.get_profile(USER_ID)
        assert profile.confirmed_earnings == Decimal("0")
        assert profile.pending_earnings == Decimal("60")

    def test_reconfirm_is_idempotent(self, confirmed_click, lifecycle, balances, add_app):
        app = add_app()
        confirmed = confirmed_click(app)
        before = balances.get_profile(USER_ID).confirmed_earnings

        again = lifecycle.review_click(confirmed.click.id, "confirmed", ADMIN)

        assert not again.changed
        assert again.click.commission_amount == confirmed.click.commission_amount
        assert again.click.confirmed_at == confirmed.click.confirmed_at
        assert balances.get_profile(USER_ID).confirmed_earnings == before == Decimal("60")

    def test_concurrent_confirmations_change_once(self, ledger, lifecycle, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(
                lambda _: lifecycle.review_click(click.id, "confirmed", ADMIN), range(8)
            ))

        assert sum(r.changed for r in results) == 1

    def test_lost_compare_and_set_is_a_conflict(self, ledger, lifecycle, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        with patch.object(lifecycle.storage, "update", return_value=None):
            with pytest.raises(StatusConflictError):
                lifecycle.review_click(click.id, "confirmed", ADMIN)

    def test_storage_failure_carries_reference(self, ledger, lifecycle, add_app):
        app = add_app()
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        with patch.object(lifecycle.storage, "update", side_effect=StorageError("disk full")):
            with pytest.raises(StorageFailure) as excinfo:
                lifecycle.review_click(click.id, "confirmed", ADMIN)
        assert excinfo.value.reference


class TestBalances:
    def test_balances_derived_from_clicks(self, ledger, lifecycle, balances, add_app):
        app = add_app(bonus_amount=200)
        confirmed = ledger.record_click(app.id, Attribution(user_id=USER_ID))
        rejected = ledger.record_click(app.id, Attribution(user_id=USER_ID))
        ledger.record_click(app.id, Attribution(user_id=USER_ID), is_my_referral=True)

        lifecycle.review_click(confirmed.id, "confirmed", ADMIN)
        lifecycle.review_click(rejected.id, "rejected", ADMIN)

        profile = balances.get_profile(USER_ID)
        assert profile.total_clicks == 3
        assert profile.confirmed_earnings == Decimal("60")
        assert profile.total_earnings == Decimal("60")
        assert profile.pending_earnings == Decimal("100")

    def test_rejected_never_counts(self, ledger, lifecycle, balances, add_app):
        app = add_app(bonus_amount=1000)
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))
        lifecycle.review_click(click.id, "rejected", ADMIN)

        profile = balances.get_profile(USER_ID)
        assert profile.confirmed_earnings == Decimal("0")
        assert profile.pending_earnings == Decimal("0")


class TestPayoutEligibility:
    def test_below_threshold(self, confirmed_click, payouts, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        confirmed_click(add_app(bonus_amount=200))

        assert payouts.evaluate_payout_eligibility(USER_ID) is None

    def test_no_destination(self, confirmed_click, payouts, add_app, add_profile):
        add_profile(upi_id=None)
        result = confirmed_click(add_app(bonus_amount=1000))

        assert result.payout_id is None
        assert payouts.evaluate_payout_eligibility(USER_ID) is None

    def test_confirmation_creates_payout(self, confirmed_click, payouts, balances, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        result = confirmed_click(add_app(bonus_amount=1000))

        assert result.payout_id is not None
        payout = payouts.get_payout(result.payout_id)
        assert payout.amount == Decimal("300")
        assert payout.upi_id == "earner@paytm"
        assert payout.status == PayoutStatus.PENDING
        assert balances.get_profile(USER_ID).confirmed_earnings == Decimal("0")
        assert balances.get_profile(USER_ID).total_earnings == Decimal("300")

    def test_no_duplicate_payout_for_same_balance(self, confirmed_click, payouts, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        confirmed_click(add_app(bonus_amount=1000))

        assert payouts.evaluate_payout_eligibility(USER_ID) is None
        assert len(payouts.list_payouts(USER_ID)) == 1

    def test_destination_added_later(self, confirmed_click, payouts, balances, storage, add_app, add_profile):
        """₹40 confirmed, no UPI; a ₹70 confirmation reaches ₹110 but waits for a destination."""
        add_profile(upi_id=None)
        confirmed_click(add_app(bonus_amount=80), is_my_referral=True)
        assert balances.get_profile(USER_ID).confirmed_earnings == Decimal("40")

        result = confirmed_click(add_app(bonus_amount=200, commission_rate="0.35"))
        assert result.payout_id is None
        assert balances.get_profile(USER_ID).confirmed_earnings == Decimal("110")

        storage.update("profiles", USER_ID, {"upi_id": "earner@okaxis"})
        payout_id = payouts.evaluate_payout_eligibility(USER_ID)

        payout = payouts.get_payout(payout_id)
        assert payout.amount == Decimal("110")
        assert payout.upi_id == "earner@okaxis"

    def test_failed_payout_returns_balance(self, confirmed_click, payouts, balances, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        result = confirmed_click(add_app(bonus_amount=1000))

        payouts.update_payout_status(result.payout_id, PayoutStatus.FAILED, ADMIN)

        assert balances.get_profile(USER_ID).confirmed_earnings == Decimal("300")

    def test_rejection_after_payout_is_recovered_from_later_earnings(
        self, confirmed_click, lifecycle, payouts, balances, add_app, add_profile,
    ):
        """A paid-out click that is later rejected leaves a deficit the next confirmations cover first."""
        add_profile(upi_id="earner@paytm")
        first = confirmed_click(add_app(bonus_amount=1000))
        lifecycle.review_click(first.click.id, "rejected", ADMIN)

        profile = balances.get_profile(USER_ID)
        assert profile.total_earnings == Decimal("0")
        assert profile.confirmed_earnings == Decimal("-300")

        assert confirmed_click(add_app(bonus_amount=1000)).payout_id is None
        assert balances.get_profile(USER_ID).confirmed_earnings == Decimal("0")

        third = confirmed_click(add_app(bonus_amount=1000))
        assert payouts.get_payout(third.payout_id).amount == Decimal("300")
        assert len(payouts.list_payouts(USER_ID)) == 2

    def test_paid_payout_is_terminal(self, confirmed_click, payouts, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        result = confirmed_click(add_app(bonus_amount=1000))
        payouts.update_payout_status(result.payout_id, PayoutStatus.PAID, ADMIN)

        with pytest.raises(StatusConflictError):
            payouts.update_payout_status(result.payout_id, PayoutStatus.FAILED, ADMIN)

    def test_payout_status_requires_admin(self, confirmed_click, payouts, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        result = confirmed_click(add_app(bonus_amount=1000))

        with pytest.raises(AuthorizationError):
            payouts.update_payout_status(result.payout_id, PayoutStatus.PAID, NON_ADMIN)

    def test_payout_failure_does_not_undo_confirmation(self, ledger, lifecycle, add_app, add_profile):
        add_profile(upi_id="earner@paytm")
        app = add_app(bonus_amount=1000)
        click = ledger.record_click(app.id, Attribution(user_id=USER_ID))

        original_insert = lifecycle.storage.insert

        def failing_insert(table, row):
            if table == "payouts":
                raise StorageError("payouts unavailable")
            return original_insert(table, row)

        with patch.object(lifecycle.storage, "insert", side_effect=failing_insert):
            result = lifecycle.review_click(click.id, "confirmed", ADMIN)

        assert result.click.status == ClickStatus.CONFIRMED
        assert result.payout_id is None
