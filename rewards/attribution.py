import logging
from typing import Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel

from .models import Attribution


logger = logging.getLogger(__name__)

UTM_DEFAULTS = {
    "utm_source": "organic",
    "utm_medium": "web",
    "utm_campaign": "referral",
}


class AttributionResult(BaseModel):
    attribution: Attribution
    # Set only when a fresh anonymous id was minted and must be persisted
    new_anonymous_id: Optional[str] = None


class AttributionResolver:
    def resolve(
        self,
        user_id: Optional[str],
        query_params: Optional[Mapping[str, str]] = None,
        anonymous_token: Optional[str] = None,
    ) -> AttributionResult:
        params = query_params or {}
        utm = {
            key: (params.get(key) or "").strip() or default
            for key, default in UTM_DEFAULTS.items()
        }

        if user_id:
            return AttributionResult(attribution=Attribution(user_id=user_id, **utm))

        anonymous_id = (anonymous_token or "").strip()
        new_anonymous_id = None
        if not anonymous_id:
            anonymous_id = new_anonymous_id = str(uuid4())
            logger.debug(f"Minted anonymous id {anonymous_id}")

        return AttributionResult(
            attribution=Attribution(anonymous_id=anonymous_id, **utm),
            new_anonymous_id=new_anonymous_id,
        )
