"""
Referral Rewards Service

This package provides:
- Click attribution (signed-in user or durable anonymous id, UTM campaign)
- The click ledger: one pending click per referral-link activation
- Commission calculation per app and referral channel
- Review lifecycle: pending → confirmed / rejected, admin or rule driven
- Payout requests once the confirmed balance reaches the threshold
- UPI payout destination validation with per-user rate limiting
"""

from .models import (
    App,
    Click,
    ClickStatus,
    Payout,
    PayoutStatus,
    Profile,
)
from .commission import compute_commission
from .service import ClickLedger, RewardLifecycleManager
from .payouts import BalanceService, PayoutIssuer

__all__ = [
    "App",
    "Click",
    "ClickStatus",
    "Payout",
    "PayoutStatus",
    "Profile",
    "compute_commission",
    "ClickLedger",
    "RewardLifecycleManager",
    "BalanceService",
    "PayoutIssuer",
]
