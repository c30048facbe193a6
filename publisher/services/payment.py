"""Payment preflight for the selected ad account and the payment flag."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.platforms.base import AccountStatus
from publisher.platforms.exceptions import PaymentIneligible, RemoteAPIError
from publisher.platforms.meta_ads import MetaAdsAdapter, normalize_ad_account_id
from publisher.services.connections import ConnectionStore
from publisher.services.locks import KeyedLock, campaign_locks
from publisher.services.tokens import AdapterFactory, require_token

logger = logging.getLogger(__name__)

SPEND_CAPABILITIES: frozenset[str] = frozenset({"CAN_USE_SPENDING_LIMIT", "CAN_CREATE_AND_EDIT_ADS"})

ACCOUNT_STATUS_FIELDS = (
    "account_status",
    "disable_reason",
    "capabilities",
    "funding_source",
    "funding_source_details",
    "business",
    "tos_accepted",
    "owner",
    "currency",
)


class PaymentEligibility(BaseModel):
    eligible: bool
    status: int | str | None = None
    capabilities: list[str] = Field(default_factory=list)
    disable_reason: int | str | None = None
    reason: str | None = None


class AccountStatusReport(BaseModel):
    """Raw ad account state shown before payment setup."""

    is_active: bool
    status: int | str | None = None
    disable_reason: int | str | None = None
    has_funding: bool = False
    tos_accepted: dict[str, Any] | None = None
    has_business: bool = False
    has_owner: bool = False
    capabilities: list[str] = Field(default_factory=list)
    currency: str | None = None
    error: str | None = None


def evaluate_eligibility(
    status: int | str | None, capabilities: list[str]
) -> tuple[bool, str | None]:
    """Heuristic: active (or unknown) status plus a spend capability when any are listed."""
    status_ok = not isinstance(status, int) or status == AccountStatus.ACTIVE
    if not status_ok:
        return False, f"Ad account is not active (status {status})"
    if capabilities and not SPEND_CAPABILITIES.intersection(capabilities):
        return False, "Ad account lacks spending capabilities"
    return True, None


class PaymentEligibilityChecker:
    def __init__(self, adapter: MetaAdsAdapter) -> None:
        self.adapter = adapter

    async def check_eligibility(self, ad_account_id: str) -> PaymentEligibility:
        try:
            account = await self.adapter.get_ad_account(
                ad_account_id, ("account_status", "capabilities", "disable_reason")
            )
        except RemoteAPIError as exc:
            logger.info("Payment eligibility lookup failed for %s: %s", ad_account_id, exc.message)
            return PaymentEligibility(eligible=False, reason=exc.message)

        eligible, reason = evaluate_eligibility(account.account_status, account.capabilities)
        return PaymentEligibility(
            eligible=eligible,
            status=account.account_status,
            capabilities=account.capabilities,
            disable_reason=account.disable_reason,
            reason=reason,
        )

    async def require_eligible(self, ad_account_id: str) -> PaymentEligibility:
        result = await self.check_eligibility(ad_account_id)
        if not result.eligible:
            raise PaymentIneligible(
                result.reason or "Ad account is not eligible for payment",
                details=result.model_dump(),
            )
        return result

    async def account_status(self, ad_account_id: str) -> AccountStatusReport:
        try:
            account = await self.adapter.get_ad_account(ad_account_id, ACCOUNT_STATUS_FIELDS)
        except RemoteAPIError as exc:
            logger.info("Account status lookup failed for %s: %s", ad_account_id, exc.message)
            return AccountStatusReport(is_active=False, error=exc.message)

        return AccountStatusReport(
            is_active=account.account_status == AccountStatus.ACTIVE,
            status=account.account_status,
            disable_reason=account.disable_reason,
            has_funding=bool(account.funding_source or account.funding_source_details),
            tos_accepted=account.tos_accepted,
            has_business=account.business is not None,
            has_owner=bool(account.owner),
            capabilities=account.capabilities,
            currency=account.currency,
        )

    async def check_funding(self, ad_account_id: str) -> bool:
        account = await self.adapter.get_ad_account(ad_account_id, ("funding_source_details",))
        return bool(account.funding_source_details)


async def mark_payment_connected(
    connections: ConnectionStore,
    campaign_id: uuid.UUID,
    *,
    ad_account_id: str,
    connected: bool,
) -> None:
    """Persist the user-reported payment flag for the campaign's selected account."""
    connection = await connections.require(campaign_id)
    selected = connection.selected_ad_account_id
    if selected and normalize_ad_account_id(selected) != normalize_ad_account_id(ad_account_id):
        raise PaymentIneligible(
            "Ad account does not match the campaign selection",
            details={"selected_ad_account_id": selected, "ad_account_id": ad_account_id},
        )
    await connections.set_payment_connected(campaign_id, connected)


class PaymentFlagService:
    """Writes of the payment flag, serialized with connect/disconnect per campaign."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        adapter_factory: AdapterFactory,
        locks: KeyedLock = campaign_locks,
    ) -> None:
        self.connections = ConnectionStore(db)
        self._adapter_factory = adapter_factory
        self._locks = locks

    async def mark(self, campaign_id: uuid.UUID, *, ad_account_id: str, connected: bool) -> None:
        async with self._locks.hold(campaign_id):
            if connected:
                token = require_token(await self.connections.get(campaign_id))
                checker = PaymentEligibilityChecker(self._adapter_factory(token))
                await checker.require_eligible(ad_account_id)
            await mark_payment_connected(
                self.connections, campaign_id, ad_account_id=ad_account_id, connected=connected
            )

    async def sync_funding(self, campaign_id: uuid.UUID, ad_account_id: str | None = None) -> bool:
        """Look for a funding source; a funded account marks payment connected."""
        async with self._locks.hold(campaign_id):
            connection = await self.connections.get(campaign_id)
            token = require_token(connection)
            account_id = ad_account_id or connection.selected_ad_account_id
            if not account_id:
                return False

            checker = PaymentEligibilityChecker(self._adapter_factory(token))
            funded = await checker.check_funding(account_id)
            if funded:
                await self.connections.set_payment_connected(campaign_id, True)
            return funded
