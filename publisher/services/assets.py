"""Asset pickers, lead forms and the selection write for a connected campaign."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.models import MetaConnection
from publisher.platforms.base import (
    GraphAdAccount,
    GraphBusiness,
    GraphLead,
    GraphLeadForm,
    GraphPage,
)
from publisher.platforms.exceptions import CompatibilityError, RemoteAPIError
from publisher.platforms.meta_ads import MetaAdsAdapter, normalize_ad_account_id
from publisher.services.connections import ConnectionStore
from publisher.services.delivery import DeliveryStateStore
from publisher.services.locks import KeyedLock, campaign_locks
from publisher.services.tokens import AdapterFactory, require_token

logger = logging.getLogger(__name__)


class SelectionInput(BaseModel):
    business_id: str | None = None
    page_id: str | None = None
    ad_account_id: str | None = None


class LeadFormInput(BaseModel):
    name: str
    privacy_policy_url: str
    privacy_policy_link_text: str = "Privacy Policy"
    questions: list[dict[str, Any]] = Field(
        default_factory=lambda: [{"type": "FULL_NAME"}, {"type": "EMAIL"}, {"type": "PHONE"}]
    )
    thank_you_page: dict[str, Any] | None = None


class AssetCatalog:
    """Read-only pickers backed by the campaign's stored user token."""

    def __init__(self, adapter: MetaAdsAdapter) -> None:
        self.adapter = adapter

    async def businesses(self) -> list[GraphBusiness]:
        return await self.adapter.list_businesses()

    async def pages(self) -> list[GraphPage]:
        return await self.adapter.list_pages()

    async def ad_accounts(self) -> list[GraphAdAccount]:
        return await self.adapter.list_ad_accounts()

    async def business_ad_accounts(self, business_id: str) -> list[GraphAdAccount]:
        return await self.adapter.list_owned_ad_accounts(business_id)


class SelectionService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        adapter_factory: AdapterFactory,
        locks: KeyedLock = campaign_locks,
    ) -> None:
        self.connections = ConnectionStore(db)
        self.delivery = DeliveryStateStore(db)
        self._adapter_factory = adapter_factory
        self._locks = locks

    async def _resolve_business(self, adapter: MetaAdsAdapter, business_id: str) -> dict[str, Any]:
        try:
            business = await adapter.get_business(business_id)
        except RemoteAPIError as exc:
            logger.warning("Business %s lookup failed: %s", business_id, exc.message)
            return {"selected_business_id": business_id, "selected_business_name": None}
        return {"selected_business_id": business_id, "selected_business_name": business.name}

    async def _resolve_page(self, adapter: MetaAdsAdapter, page_id: str) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "selected_page_id": page_id,
            "selected_page_name": None,
            "selected_page_access_token": None,
            "selected_ig_user_id": None,
            "selected_ig_username": None,
        }
        try:
            pages = await adapter.list_pages()
        except RemoteAPIError as exc:
            logger.warning("Page %s lookup failed: %s", page_id, exc.message)
            return fields

        page = next((p for p in pages if p.id == page_id), None)
        if page is None:
            raise CompatibilityError(
                "The selected page is not managed by the connected user",
                details={"page_id": page_id},
            )
        fields["selected_page_name"] = page.name
        fields["selected_page_access_token"] = page.access_token
        if page.instagram_business_account is not None:
            fields["selected_ig_user_id"] = page.instagram_business_account.id
            fields["selected_ig_username"] = page.instagram_business_account.username
        return fields

    async def _resolve_ad_account(self, adapter: MetaAdsAdapter, ad_account_id: str) -> dict[str, Any]:
        account_id = normalize_ad_account_id(ad_account_id)
        try:
            account = await adapter.get_ad_account(account_id, ("id", "name"))
        except RemoteAPIError as exc:
            logger.warning("Ad account %s lookup failed: %s", account_id, exc.message)
            return {"selected_ad_account_id": account_id, "selected_ad_account_name": None}
        return {"selected_ad_account_id": account_id, "selected_ad_account_name": account.name}

    async def update(self, campaign_id: uuid.UUID, selection: SelectionInput) -> MetaConnection:
        """Partial write: only the provided ids (and their resolved names) change."""
        async with self._locks.hold(campaign_id):
            connection = await self.connections.get(campaign_id)
            adapter = self._adapter_factory(require_token(connection))

            fields: dict[str, Any] = {}
            if selection.business_id is not None:
                fields.update(await self._resolve_business(adapter, selection.business_id))
            if selection.page_id is not None:
                fields.update(await self._resolve_page(adapter, selection.page_id))
            if selection.ad_account_id is not None:
                fields.update(await self._resolve_ad_account(adapter, selection.ad_account_id))

            connection = await self.connections.update_selection(campaign_id, fields)
            await self.delivery.set_status(
                campaign_id,
                "connected" if connection.selected_ad_account_id else "selected_assets",
                businessId=connection.selected_business_id,
                pageId=connection.selected_page_id,
                igUserId=connection.selected_ig_user_id,
                adAccountId=connection.selected_ad_account_id,
            )
            return connection


class LeadFormService:
    """Instant forms of the selected page; calls use the page access token."""

    def __init__(self, connection: MetaConnection | None, *, adapter_factory: AdapterFactory) -> None:
        self.connection = connection
        self._adapter_factory = adapter_factory

    async def _page_adapter(self) -> tuple[MetaAdsAdapter, str]:
        user_token = require_token(self.connection)
        page_id = self.connection.selected_page_id
        if not page_id:
            raise CompatibilityError("Select a Facebook page before managing lead forms")

        page_token = self.connection.selected_page_access_token
        if not page_token:
            pages = await self._adapter_factory(user_token).list_pages()
            page = next((p for p in pages if p.id == page_id), None)
            page_token = page.access_token if page else None
        if not page_token:
            raise CompatibilityError(
                "No page access token for the selected page", details={"page_id": page_id}
            )
        return self._adapter_factory(page_token), page_id

    async def list_forms(self) -> list[GraphLeadForm]:
        adapter, page_id = await self._page_adapter()
        return await adapter.list_lead_forms(page_id)

    async def list_leads(self, form_id: str) -> list[GraphLead]:
        adapter, _ = await self._page_adapter()
        return await adapter.list_leads(form_id)

    async def create_form(self, form: LeadFormInput) -> str:
        adapter, page_id = await self._page_adapter()
        form_id = await adapter.create_lead_form(
            page_id,
            name=form.name,
            privacy_policy={"url": form.privacy_policy_url, "link_text": form.privacy_policy_link_text},
            questions=form.questions,
            thank_you_page=form.thank_you_page,
        )
        logger.info("Created lead form %s on page %s", form_id, page_id)
        return form_id
