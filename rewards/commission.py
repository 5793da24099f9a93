from decimal import ROUND_HALF_UP, Decimal

from .config import settings
from .models import App, Click


CENTS = Decimal("0.01")


def commission_rate(app: App, is_my_referral: bool) -> Decimal:
    # Unset and zero rates both fall back to the channel default
    if is_my_referral:
        rate = app.my_commission_rate or settings.DEFAULT_MY_COMMISSION_RATE
    else:
        rate = app.commission_rate or settings.DEFAULT_COMMISSION_RATE
    return Decimal(str(rate))


def compute_amount(app: App, is_my_referral: bool = False) -> Decimal:
    bonus = Decimal(app.bonus_amount)
    return (bonus * commission_rate(app, is_my_referral)).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_commission(app: App, click: Click) -> Decimal:
    """Reward for a single click: the app's bonus times the channel's rate."""
    return compute_amount(app, click.is_my_referral)
