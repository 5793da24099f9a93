from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request

from rules.llm_parser import LLMParser
from rules.rule_engine import create_sample_rules

from .attribution import AttributionResolver
from .auth import IdentityService
from .auto_review import AutoReviewer
from .catalog import CatalogService, SubmissionService
from .config import settings
from .exceptions import AuthorizationError
from .models import Reviewer
from .payouts import BalanceService, PayoutIssuer
from .service import ClickLedger, RewardLifecycleManager
from .storage import InMemoryStorage
from .upi import PayoutDestinationService, RateLimiter


@dataclass
class Services:
    storage: InMemoryStorage
    identity: IdentityService
    attribution: AttributionResolver
    ledger: ClickLedger
    balances: BalanceService
    payouts: PayoutIssuer
    lifecycle: RewardLifecycleManager
    auto_reviewer: AutoReviewer
    destinations: PayoutDestinationService
    catalog: CatalogService
    submissions: SubmissionService
    rule_parser: LLMParser


def build_services(
    storage: Optional[InMemoryStorage] = None,
    rate_limiter: Optional[RateLimiter] = None,
    rule_parser: Optional[LLMParser] = None,
) -> Services:
    """Wire every service once per process around a shared store and rate limiter.

    A store built here gets the demo rows and starter review rules when
    ``SEED_DEMO_DATA`` is on; a store passed in is used as is.
    """
    seed = storage is None and settings.SEED_DEMO_DATA
    storage = storage or InMemoryStorage(seed=seed)
    balances = BalanceService(storage)
    payouts = PayoutIssuer(storage, balances)
    lifecycle = RewardLifecycleManager(storage, payouts)
    auto_reviewer = AutoReviewer(storage, lifecycle)
    if seed:
        for rule in create_sample_rules():
            auto_reviewer.add_rule(rule)

    return Services(
        storage=storage,
        identity=IdentityService(storage),
        attribution=AttributionResolver(),
        ledger=ClickLedger(storage),
        balances=balances,
        payouts=payouts,
        lifecycle=lifecycle,
        auto_reviewer=auto_reviewer,
        destinations=PayoutDestinationService(storage, rate_limiter),
        catalog=CatalogService(storage),
        submissions=SubmissionService(storage),
        rule_parser=rule_parser or LLMParser(api_key=settings.GROQ_API_KEY, model=settings.GROQ_MODEL),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> str:
    return services.identity.authenticate(authorization)


def get_optional_user_id(
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
) -> Optional[str]:
    if not authorization:
        return None
    return services.identity.resolve_token(authorization.replace("Bearer ", "", 1).strip())


def get_reviewer(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Reviewer:
    return services.identity.reviewer_for(user_id)


def require_admin(reviewer: Reviewer = Depends(get_reviewer)) -> Reviewer:
    if not reviewer.is_admin:
        raise AuthorizationError("Admin access required")
    return reviewer
