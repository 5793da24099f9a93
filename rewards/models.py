from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, PlainSerializer, model_validator


# Money and rates stay Decimal in Python and go out as JSON numbers
DecimalAsFloat = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ClickStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class AppCategory(str, Enum):
    PAYMENTS = "payments"
    GAMING = "gaming"
    SHOPPING = "shopping"
    OTHER = "other"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Reviewer(BaseModel):
    user_id: str
    is_admin: bool = False


class Attribution(BaseModel):
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    utm_source: str = "organic"
    utm_medium: str = "web"
    utm_campaign: str = "referral"

    @model_validator(mode="after")
    def _single_actor(self) -> "Attribution":
        if (self.user_id is None) == (self.anonymous_id is None):
            raise ValueError("exactly one of user_id or anonymous_id must be set")
        return self


class App(BaseModel):
    id: str
    name: str
    description: str = ""
    category: AppCategory = AppCategory.OTHER
    bonus_amount: int = Field(..., gt=0)
    commission_rate: Optional[DecimalAsFloat] = Field(default=None, ge=0, le=1)
    my_commission_rate: Optional[DecimalAsFloat] = Field(default=None, ge=0, le=1)
    payout_time: str = ""
    task_description: str = ""
    referral_link: str
    image_url: Optional[str] = None
    is_featured: bool = False
    sort_order: int = 0
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AppCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=10, max_length=500)
    category: AppCategory = AppCategory.PAYMENTS
    bonus_amount: int = Field(..., gt=0, le=100000)
    payout_time: str = Field(..., min_length=1, max_length=100)
    commission_rate: Decimal = Field(default=Decimal("0.30"), ge=0, le=1)
    my_commission_rate: Decimal = Field(default=Decimal("0.50"), ge=0, le=1)
    sort_order: int = Field(default=0, ge=0)
    task_description: str = Field(..., min_length=5, max_length=500)
    referral_link: AnyHttpUrl
    image_url: Optional[AnyHttpUrl] = None
    is_featured: bool = False

    model_config = ConfigDict(str_strip_whitespace=True, json_schema_extra={
        "example": {
            "name": "PayPal",
            "description": "Send money and get a signup bonus",
            "category": "payments",
            "bonus_amount": 200,
            "payout_time": "24-48 hours",
            "commission_rate": 0.30,
            "task_description": "Sign up and add a bank account",
            "referral_link": "https://example.com/ref/abc",
        }
    })

    @model_validator(mode="after")
    def _check_link_length(self) -> "AppCreate":
        if len(str(self.referral_link)) > 500:
            raise ValueError("URL must be less than 500 characters")
        return self


class Click(BaseModel):
    id: str
    app_id: str
    user_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    utm_source: str
    utm_medium: str
    utm_campaign: str
    is_my_referral: bool = False
    status: ClickStatus = ClickStatus.PENDING
    clicked_at: datetime
    confirmed_at: Optional[datetime] = None
    commission_amount: Optional[DecimalAsFloat] = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Click":
        if (self.user_id is None) == (self.anonymous_id is None):
            raise ValueError("exactly one of user_id or anonymous_id must be set")
        if (self.confirmed_at is not None) != (self.status == ClickStatus.CONFIRMED):
            raise ValueError("confirmed_at must be set if and only if status is confirmed")
        return self

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


class Profile(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    upi_id: Optional[str] = None
    total_clicks: int = 0
    pending_earnings: DecimalAsFloat = Decimal("0.00")
    confirmed_earnings: DecimalAsFloat = Decimal("0.00")
    total_earnings: DecimalAsFloat = Decimal("0.00")


class Payout(BaseModel):
    id: str
    user_id: str
    amount: DecimalAsFloat
    upi_id: str
    status: PayoutStatus = PayoutStatus.PENDING
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReferralSubmission(BaseModel):
    id: str
    user_id: str
    app_name: str
    category: AppCategory
    referral_link: str
    bonus_amount: int
    description: str = ""
    status: SubmissionStatus = SubmissionStatus.PENDING
    created_at: datetime


class SubmissionCreate(BaseModel):
    app_name: str = Field(..., min_length=1, max_length=100)
    category: AppCategory = AppCategory.OTHER
    referral_link: AnyHttpUrl
    bonus_amount: int = Field(..., gt=0)
    description: str = Field(default="", max_length=500)

    model_config = ConfigDict(str_strip_whitespace=True)


class ReviewResult(BaseModel):
    click: Click
    payout_id: Optional[str] = None
    changed: bool = True


# Request / response bodies of the two privileged endpoints use camelCase
# wire names.

class ReviewClickRequest(BaseModel):
    click_id: Optional[str] = Field(default=None, alias="clickId")
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ReviewClickResponse(BaseModel):
    message: str
    click: Click
    payout_id: Optional[str] = Field(default=None, serialization_alias="payoutId")


class UpdateUpiRequest(BaseModel):
    # Left untyped so a non-string body is reported as a 400 by the service
    upi_id: Any = Field(default=None, alias="upiId")

    model_config = ConfigDict(populate_by_name=True)


class UpdateUpiResponse(BaseModel):
    message: str
    upi_id: str = Field(..., serialization_alias="upiId")


class PayoutCheckResponse(BaseModel):
    payout_id: Optional[str] = Field(default=None, serialization_alias="payoutId")


class PayoutStatusRequest(BaseModel):
    status: PayoutStatus


class SubmissionStatusRequest(BaseModel):
    status: SubmissionStatus
