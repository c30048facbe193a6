"""Typed shapes decoded at the Graph API boundary, plus pipeline inputs.

Graph responses are validated into these models as soon as they arrive, so the
services never poke at raw JSON.  Unknown fields are ignored.
"""

from __future__ import annotations

import enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")

# Meta minimum ad set daily budget in account currency units
META_MIN_ADSET_DAILY_BUDGET = 1.0


class Goal(str, enum.Enum):
    LEADS = "leads"
    CALLS = "calls"
    WEBSITE = "website"


class PublishTarget(str, enum.Enum):
    CAMPAIGN = "campaign"
    AD = "ad"


class AccountStatus(int, enum.Enum):
    ACTIVE = 1
    DISABLED = 2
    UNSETTLED = 3
    PENDING_RISK_REVIEW = 7
    PENDING_SETTLEMENT = 8
    IN_GRACE_PERIOD = 9
    PENDING_CLOSURE = 100
    CLOSED = 101
    ANY_ACTIVE = 201
    ANY_CLOSED = 202


class GraphModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Error shape
# ---------------------------------------------------------------------------


class GraphErrorBody(GraphModel):
    message: str = "Unknown Graph API error"
    type: str | None = None
    code: int | None = None
    error_subcode: int | None = None
    fbtrace_id: str | None = None


class GraphErrorEnvelope(GraphModel):
    error: GraphErrorBody


# ---------------------------------------------------------------------------
# Success shapes
# ---------------------------------------------------------------------------


class GraphList(GraphModel, Generic[T]):
    data: list[T] = Field(default_factory=list)


class GraphRef(GraphModel):
    id: str
    name: str | None = None


class GraphCreated(GraphModel):
    id: str


class GraphSuccess(GraphModel):
    success: bool = False


class TokenExchangeResponse(GraphModel):
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None


class GraphUser(GraphModel):
    id: str
    name: str | None = None


class InstagramAccount(GraphModel):
    id: str
    username: str | None = None


class GraphBusiness(GraphModel):
    id: str
    name: str | None = None
    permitted_roles: list[str] = Field(default_factory=list)


class GraphPage(GraphModel):
    id: str
    name: str | None = None
    category: str | None = None
    access_token: str | None = None
    instagram_business_account: InstagramAccount | None = None


class GraphAdAccount(GraphModel):
    id: str
    name: str | None = None
    account_status: int | str | None = None
    currency: str | None = None
    business: GraphRef | None = None
    owner: str | None = None
    capabilities: list[str] = Field(default_factory=list)
    disable_reason: int | str | None = None
    funding_source_details: dict[str, Any] | None = None
    funding_source: str | int | None = None
    tos_accepted: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise_owner(cls, data: Any) -> Any:
        # owner comes back as a bare id or as {"id": ...} depending on the token
        if isinstance(data, dict) and isinstance(data.get("owner"), dict):
            data = {**data, "owner": data["owner"].get("id")}
        return data


class GraphAssignedUser(GraphModel):
    id: str
    name: str | None = None
    tasks: list[str] = Field(default_factory=list)


class GraphLeadForm(GraphModel):
    id: str
    name: str | None = None
    status: str | None = None
    created_time: str | None = None


class GraphLeadField(GraphModel):
    name: str
    values: list[str] = Field(default_factory=list)


class GraphLead(GraphModel):
    id: str
    created_time: str | None = None
    ad_id: str | None = None
    form_id: str | None = None
    field_data: list[GraphLeadField] = Field(default_factory=list)


class GraphImage(GraphModel):
    hash: str
    url: str | None = None


class GraphImageUpload(GraphModel):
    images: dict[str, GraphImage] = Field(default_factory=dict)

    @property
    def first_hash(self) -> str | None:
        for image in self.images.values():
            return image.hash
        return None


# ---------------------------------------------------------------------------
# Pipeline input
# ---------------------------------------------------------------------------


class LaunchSpec(BaseModel):
    """Finished assets handed over by the creative subsystem plus budget.

    An image (``image_url`` or ``image_hash``) is only needed while the
    delivery record holds no image hash yet.
    """

    goal: Goal = Goal.LEADS
    campaign_name: str = "Lead Ads Campaign"
    ad_set_name: str = "Lead Ads Ad Set"
    ad_name: str = "Lead Ad"
    daily_budget: float = 10.0
    image_url: str | None = None
    image_hash: str | None = None
    message: str = "Learn more"
    headline: str | None = None
    description: str = ""
    lead_form_id: str | None = None
    phone_number: str | None = None
    link_url: str | None = None
    call_to_action: str = "LEARN_MORE"
    targeting: dict[str, Any] = Field(default_factory=dict)
    special_ad_categories: list[str] = Field(default_factory=list)
    start_time: str | None = None
    end_time: str | None = None

    @model_validator(mode="after")
    def _check_goal_inputs(self) -> "LaunchSpec":
        if self.daily_budget < META_MIN_ADSET_DAILY_BUDGET:
            raise ValueError(
                f"daily_budget {self.daily_budget:.2f} is below Meta minimum of "
                f"{META_MIN_ADSET_DAILY_BUDGET:.2f}"
            )
        if self.goal == Goal.LEADS and not self.lead_form_id:
            raise ValueError("lead_form_id is required for the leads goal")
        if self.goal == Goal.CALLS and not self.phone_number:
            raise ValueError("phone_number is required for the calls goal")
        if self.goal == Goal.WEBSITE and not self.link_url:
            raise ValueError("link_url is required for the website goal")
        return self
