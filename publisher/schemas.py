import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from publisher.platforms.base import LaunchSpec, PublishTarget
from publisher.services.delivery import DeliveryState, PublishState


class CampaignCreate(BaseModel):
    name: str = Field(min_length=1)


class CampaignOut(BaseModel):
    id: uuid.UUID
    user_id: str
    name: str
    status: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CampaignRequest(BaseModel):
    campaign_id: uuid.UUID


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class ExchangeRequest(CampaignRequest):
    access_token: str = Field(min_length=1)


class InstagramOut(BaseModel):
    id: str
    username: str | None = None

    class Config:
        from_attributes = True


class BusinessOut(BaseModel):
    id: str
    name: str | None = None

    class Config:
        from_attributes = True


class PageOut(BaseModel):
    id: str
    name: str | None = None
    category: str | None = None
    instagram_business_account: InstagramOut | None = None

    class Config:
        from_attributes = True


class AdAccountOut(BaseModel):
    id: str
    name: str | None = None
    account_status: int | str | None = None
    currency: str | None = None

    class Config:
        from_attributes = True


class ConnectOut(BaseModel):
    connected: bool
    fb_user_id: str | None = None
    token_expires_at: datetime | None = None
    pages: list[PageOut] = Field(default_factory=list)
    ad_accounts: list[AdAccountOut] = Field(default_factory=list)


class SelectionRequest(CampaignRequest):
    business_id: str | None = None
    page_id: str | None = None
    ad_account_id: str | None = None


class SelectionOut(BaseModel):
    connected: bool
    token_expires_at: datetime | None = None
    business: dict[str, Any] | None = None
    page: dict[str, Any] | None = None
    instagram: dict[str, Any] | None = None
    ad_account: dict[str, Any] | None = None
    payment_connected: bool = False


# ---------------------------------------------------------------------------
# Lead forms
# ---------------------------------------------------------------------------


class LeadFormOut(BaseModel):
    id: str
    name: str | None = None
    status: str | None = None
    created_time: str | None = None

    class Config:
        from_attributes = True


class LeadFormCreateRequest(CampaignRequest):
    name: str = Field(min_length=1)
    privacy_policy_url: str
    privacy_policy_link_text: str = "Privacy Policy"
    questions: list[dict[str, Any]] | None = None
    thank_you_page: dict[str, Any] | None = None


class LeadFormCreated(BaseModel):
    id: str


class LeadFieldOut(BaseModel):
    name: str
    values: list[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class LeadOut(BaseModel):
    id: str
    created_time: str | None = None
    ad_id: str | None = None
    form_id: str | None = None
    field_data: list[LeadFieldOut] = Field(default_factory=list)

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Preflight checks
# ---------------------------------------------------------------------------


class ValidateRequest(CampaignRequest):
    business_id: str | None = None
    page_id: str | None = None
    ad_account_id: str | None = None


class AdminVerifyRequest(CampaignRequest):
    business_id: str | None = None
    ad_account_id: str | None = None


class AdminVerifyOut(BaseModel):
    admin_connected: bool
    business_role: str
    ad_account_role: str
    errors: list[str] = Field(default_factory=list)
    checked_at: datetime


class PaymentMarkRequest(CampaignRequest):
    ad_account_id: str
    connected: bool = True


class PaymentStatusOut(BaseModel):
    connected: bool


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class LaunchRequest(CampaignRequest):
    spec: LaunchSpec


class PublishRequest(CampaignRequest):
    target_type: PublishTarget = PublishTarget.AD
    target_id: str = Field(min_length=1)


class DeliveryOut(BaseModel):
    delivery: dict[str, str]
    stage: PublishState

    @classmethod
    def from_state(cls, state: DeliveryState) -> "DeliveryOut":
        return cls(delivery=state.to_record(), stage=state.stage)


class OkOut(BaseModel):
    ok: bool = True
