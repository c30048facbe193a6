"""Meta Ads (Facebook/Instagram) platform adapter.

Catalogue of the Graph endpoints the publishing funnel needs: token exchange,
asset discovery, permission lookups and the Campaign → AdSet → AdCreative → Ad
hierarchy.  Every response is decoded into the typed models from
:mod:`publisher.platforms.base` before it leaves this module.
"""

from __future__ import annotations

import json
from typing import Any

from facebook_business.adobjects.ad import Ad
from facebook_business.adobjects.adcreative import AdCreative
from facebook_business.adobjects.adset import AdSet
from facebook_business.adobjects.campaign import Campaign

from publisher.platforms.base import (
    Goal,
    GraphAdAccount,
    GraphAssignedUser,
    GraphBusiness,
    GraphCreated,
    GraphImageUpload,
    GraphLead,
    GraphLeadForm,
    GraphList,
    GraphPage,
    GraphRef,
    GraphSuccess,
    GraphUser,
    LaunchSpec,
    TokenExchangeResponse,
)
from publisher.platforms.exceptions import RemoteAPIError
from publisher.platforms.graph import GraphClient

# ---------------------------------------------------------------------------
# Goal mapping: funnel goal → Meta objective / ad set delivery settings
# Uses the v21.0+ OUTCOME_* objectives
# ---------------------------------------------------------------------------

OBJECTIVE_MAP: dict[Goal, str] = {
    Goal.LEADS: "OUTCOME_LEADS",
    Goal.CALLS: "OUTCOME_LEADS",
    Goal.WEBSITE: "OUTCOME_TRAFFIC",
}

OPTIMIZATION_GOAL_MAP: dict[Goal, str] = {
    Goal.LEADS: "LEAD_GENERATION",
    Goal.CALLS: "LEAD_GENERATION",
    Goal.WEBSITE: "LANDING_PAGE_VIEWS",
}

DESTINATION_TYPE_MAP: dict[Goal, str] = {
    Goal.LEADS: "ON_AD",
    Goal.CALLS: "CALL",
    Goal.WEBSITE: "WEBSITE",
}

PAGE_FIELDS = ("id", "name", "category", "access_token", "instagram_business_account{id,username}")
AD_ACCOUNT_FIELDS = ("id", "name", "account_status", "currency")

# Placeholder link Meta accepts for creatives whose action stays on Facebook
ON_PLATFORM_LINK = "http://fb.me/"

# Ad set targeting is mandatory; used when the audience step supplied none
DEFAULT_TARGETING: dict[str, Any] = {"geo_locations": {"countries": ["US"]}}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_ad_account_id(ad_account_id: str) -> str:
    """Return the ``act_``-prefixed form of an ad account id."""
    raw = ad_account_id.strip()
    return raw if raw.startswith("act_") else f"act_{raw}"


def _dollars_to_cents(dollars: float) -> int:
    """Convert dollar amount to cents (Meta API budget unit)."""
    return int(round(dollars * 100))


def ads_manager_url(campaign_id: str, ad_account_id: str) -> str:
    """Build a direct link to the campaign in Meta Ads Manager."""
    account_num = normalize_ad_account_id(ad_account_id).replace("act_", "")
    return f"https://www.facebook.com/adsmanager/manage/campaigns?act={account_num}&campaign_ids={campaign_id}"


def _call_to_action(spec: LaunchSpec) -> dict[str, Any]:
    if spec.goal == Goal.LEADS:
        return {"type": "SIGN_UP", "value": {"lead_gen_form_id": spec.lead_form_id}}
    if spec.goal == Goal.CALLS:
        return {"type": "CALL_NOW", "value": {"phone_number": spec.phone_number}}
    cta = spec.call_to_action.strip().upper().replace(" ", "_") or "LEARN_MORE"
    return {"type": cta}


def _created_id(body: dict[str, Any], what: str) -> str:
    if not body.get("id"):
        raise RemoteAPIError(f"Meta returned no id for the new {what}")
    return GraphCreated.model_validate(body).id


# ---------------------------------------------------------------------------
# MetaAdsAdapter
# ---------------------------------------------------------------------------


class MetaAdsAdapter:
    """Meta Marketing API adapter bound to one access token."""

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    # ------------------------------------------------------------------
    # OAuth / identity
    # ------------------------------------------------------------------

    async def exchange_token(
        self, short_lived_token: str, *, app_id: str, app_secret: str
    ) -> TokenExchangeResponse:
        body = await self._graph.get(
            "oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": app_id,
                "client_secret": app_secret,
                "fb_exchange_token": short_lived_token,
            },
        )
        return TokenExchangeResponse.model_validate(body)

    async def get_me(self) -> GraphUser:
        return GraphUser.model_validate(await self._graph.get("me", fields=("id", "name")))

    # ------------------------------------------------------------------
    # Asset discovery
    # ------------------------------------------------------------------

    async def list_businesses(self) -> list[GraphBusiness]:
        body = await self._graph.get(
            "me/businesses", fields=("id", "name", "permitted_roles"), params={"limit": 200}
        )
        return GraphList[GraphBusiness].model_validate(body).data

    async def get_business(self, business_id: str) -> GraphRef:
        return GraphRef.model_validate(await self._graph.get(business_id, fields=("id", "name")))

    async def list_pages(self) -> list[GraphPage]:
        body = await self._graph.get("me/accounts", fields=PAGE_FIELDS, params={"limit": 500})
        return GraphList[GraphPage].model_validate(body).data

    async def list_ad_accounts(self) -> list[GraphAdAccount]:
        body = await self._graph.get(
            "me/adaccounts", fields=AD_ACCOUNT_FIELDS, params={"limit": 500}
        )
        return GraphList[GraphAdAccount].model_validate(body).data

    async def list_owned_ad_accounts(self, business_id: str) -> list[GraphAdAccount]:
        body = await self._graph.get(
            f"{business_id}/owned_ad_accounts", fields=AD_ACCOUNT_FIELDS, params={"limit": 500}
        )
        return GraphList[GraphAdAccount].model_validate(body).data

    async def list_page_ad_accounts(self, page_id: str) -> list[GraphAdAccount]:
        """Ad accounts the platform has authorised to advertise for ``page_id``."""
        body = await self._graph.get(
            f"{page_id}/adaccounts",
            fields=("id", "name", "account_status"),
            params={"limit": 500},
        )
        return GraphList[GraphAdAccount].model_validate(body).data

    async def get_ad_account(self, ad_account_id: str, fields: tuple[str, ...]) -> GraphAdAccount:
        body = await self._graph.get(normalize_ad_account_id(ad_account_id), fields=fields)
        return GraphAdAccount.model_validate(body)

    async def list_ad_account_users(
        self, ad_account_id: str, business_id: str
    ) -> list[GraphAssignedUser]:
        body = await self._graph.get(
            f"{normalize_ad_account_id(ad_account_id)}/assigned_users",
            fields=("id", "name", "tasks"),
            params={"business": business_id, "limit": 500},
        )
        return GraphList[GraphAssignedUser].model_validate(body).data

    # ------------------------------------------------------------------
    # Lead forms (called with a page access token)
    # ------------------------------------------------------------------

    async def list_lead_forms(self, page_id: str) -> list[GraphLeadForm]:
        body = await self._graph.get(
            f"{page_id}/leadgen_forms",
            fields=("id", "name", "status", "created_time"),
            params={"limit": 100},
        )
        return GraphList[GraphLeadForm].model_validate(body).data

    async def list_leads(self, form_id: str, *, limit: int = 25) -> list[GraphLead]:
        body = await self._graph.get(
            f"{form_id}/leads",
            fields=("id", "created_time", "ad_id", "form_id", "field_data"),
            params={"limit": limit},
        )
        return GraphList[GraphLead].model_validate(body).data

    async def create_lead_form(
        self,
        page_id: str,
        *,
        name: str,
        privacy_policy: dict[str, str],
        questions: list[dict[str, Any]] | None = None,
        thank_you_page: dict[str, Any] | None = None,
    ) -> str:
        data: dict[str, Any] = {"name": name, "privacy_policy": json.dumps(privacy_policy)}
        if questions:
            data["questions"] = json.dumps(questions)
        if thank_you_page:
            data["thank_you_page"] = json.dumps(thank_you_page)
        return _created_id(await self._graph.post(f"{page_id}/leadgen_forms", data), "lead form")

    # ------------------------------------------------------------------
    # Resource hierarchy
    # ------------------------------------------------------------------

    async def upload_image(self, ad_account_id: str, image_url: str) -> str:
        """Let Meta fetch ``image_url`` into the account's image library; returns the hash."""
        body = await self._graph.post(
            f"{normalize_ad_account_id(ad_account_id)}/adimages", {"url": image_url}
        )
        image_hash = GraphImageUpload.model_validate(body).first_hash
        if not image_hash:
            raise RemoteAPIError("Meta image upload returned no image hash")
        return image_hash

    async def create_campaign(self, ad_account_id: str, spec: LaunchSpec) -> str:
        params: dict[str, Any] = {
            Campaign.Field.name: spec.campaign_name,
            Campaign.Field.objective: OBJECTIVE_MAP[spec.goal],
            Campaign.Field.status: Campaign.Status.paused,
            Campaign.Field.buying_type: "AUCTION",
            Campaign.Field.special_ad_categories: spec.special_ad_categories,
        }
        body = await self._graph.post(f"{normalize_ad_account_id(ad_account_id)}/campaigns", params)
        return _created_id(body, "campaign")

    async def create_ad_set(
        self, ad_account_id: str, spec: LaunchSpec, *, campaign_id: str, page_id: str
    ) -> str:
        params: dict[str, Any] = {
            AdSet.Field.name: spec.ad_set_name,
            AdSet.Field.campaign_id: campaign_id,
            AdSet.Field.daily_budget: _dollars_to_cents(spec.daily_budget),
            AdSet.Field.billing_event: "IMPRESSIONS",
            AdSet.Field.optimization_goal: OPTIMIZATION_GOAL_MAP[spec.goal],
            AdSet.Field.destination_type: DESTINATION_TYPE_MAP[spec.goal],
            AdSet.Field.promoted_object: {"page_id": page_id},
            AdSet.Field.targeting: spec.targeting or DEFAULT_TARGETING,
            AdSet.Field.status: AdSet.Status.paused,
        }
        if spec.start_time:
            params[AdSet.Field.start_time] = spec.start_time
        if spec.end_time:
            params[AdSet.Field.end_time] = spec.end_time

        body = await self._graph.post(f"{normalize_ad_account_id(ad_account_id)}/adsets", params)
        return _created_id(body, "ad set")

    async def create_ad_creative(
        self, ad_account_id: str, spec: LaunchSpec, *, page_id: str, image_hash: str
    ) -> str:
        link_data: dict[str, Any] = {
            "image_hash": image_hash,
            "message": spec.message,
            "description": spec.description,
            "link": spec.link_url if spec.goal == Goal.WEBSITE else ON_PLATFORM_LINK,
            "call_to_action": _call_to_action(spec),
        }
        if spec.headline:
            link_data["name"] = spec.headline

        params: dict[str, Any] = {
            AdCreative.Field.name: f"{spec.ad_name} - Creative",
            AdCreative.Field.object_story_spec: {"page_id": page_id, "link_data": link_data},
        }
        body = await self._graph.post(
            f"{normalize_ad_account_id(ad_account_id)}/adcreatives", params
        )
        return _created_id(body, "ad creative")

    async def create_ad(
        self, ad_account_id: str, spec: LaunchSpec, *, adset_id: str, creative_id: str
    ) -> str:
        params: dict[str, Any] = {
            Ad.Field.name: spec.ad_name,
            Ad.Field.adset_id: adset_id,
            Ad.Field.creative: {"creative_id": creative_id},
            Ad.Field.status: Ad.Status.paused,
        }
        body = await self._graph.post(f"{normalize_ad_account_id(ad_account_id)}/ads", params)
        return _created_id(body, "ad")

    async def set_status(self, object_id: str, status: str) -> bool:
        body = await self._graph.post(object_id, {"status": status})
        return GraphSuccess.model_validate(body).success
