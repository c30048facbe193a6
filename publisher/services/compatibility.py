"""Structural checks on the selected Business / Page / Ad Account combination."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from publisher.platforms.exceptions import RemoteAPIError
from publisher.platforms.meta_ads import MetaAdsAdapter, normalize_ad_account_id

logger = logging.getLogger(__name__)


class ValidationResult(BaseModel):
    ok: bool
    reason: str | None = None


class CompatibilityValidator:
    def __init__(self, adapter: MetaAdsAdapter) -> None:
        self.adapter = adapter

    async def ad_account_belongs_to_business(self, ad_account_id: str, business_id: str) -> bool:
        account = await self.adapter.get_ad_account(ad_account_id, ("id", "business{id,name}"))
        return account.business is not None and account.business.id == business_id

    async def ad_account_can_advertise_for_page(
        self, page_id: str, ad_account_id: str
    ) -> ValidationResult:
        accounts = await self.adapter.list_page_ad_accounts(page_id)
        wanted = normalize_ad_account_id(ad_account_id)
        if any(normalize_ad_account_id(account.id) == wanted for account in accounts):
            return ValidationResult(ok=True)
        return ValidationResult(
            ok=False, reason="The selected ad account cannot advertise for this page"
        )

    async def validate(
        self, *, business_id: str | None, page_id: str, ad_account_id: str
    ) -> ValidationResult:
        """Run both checks; remote failures come back as ``ok=False`` with the Graph message."""
        try:
            if business_id and not await self.ad_account_belongs_to_business(
                ad_account_id, business_id
            ):
                return ValidationResult(
                    ok=False, reason="The selected ad account does not belong to this business"
                )
            return await self.ad_account_can_advertise_for_page(page_id, ad_account_id)
        except RemoteAPIError as exc:
            logger.info("Compatibility check failed remotely: %s", exc.message)
            return ValidationResult(ok=False, reason=exc.message)
