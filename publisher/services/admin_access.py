"""Determine the caller's role on the selected Business and Ad Account."""

from __future__ import annotations

import asyncio
import logging
from typing import Literal

from pydantic import BaseModel, Field

from publisher.platforms.exceptions import RemoteAPIError, TokenRequired
from publisher.platforms.meta_ads import MetaAdsAdapter

logger = logging.getLogger(__name__)

Role = Literal["owner", "admin", "advertiser", "none"]

ADMIN_ROLES: frozenset[str] = frozenset({"owner", "admin"})


class AdminAccess(BaseModel):
    admin_connected: bool
    business_role: Role = "none"
    ad_account_role: Role = "none"
    fb_user_id: str | None = None
    errors: list[str] = Field(default_factory=list)


def business_role_from(permitted_roles: list[str]) -> Role:
    roles = {role.upper() for role in permitted_roles}
    if "ADMIN" in roles:
        return "admin"
    if roles:
        return "advertiser"
    return "none"


def ad_account_role_from(tasks: list[str]) -> Role:
    tasks_upper = {task.upper() for task in tasks}
    if "MANAGE" in tasks_upper:
        return "admin"
    if "ADVERTISE" in tasks_upper:
        return "advertiser"
    return "none"


class AdminAccessVerifier:
    def __init__(self, adapter: MetaAdsAdapter) -> None:
        self.adapter = adapter

    async def _business_role(self, business_id: str) -> Role:
        for business in await self.adapter.list_businesses():
            if business.id == business_id:
                return business_role_from(business.permitted_roles)
        return "none"

    async def _ad_account_role(
        self, fb_user_id: str, ad_account_id: str, business_id: str
    ) -> Role:
        account = await self.adapter.get_ad_account(ad_account_id, ("id", "owner"))
        if account.owner and account.owner == fb_user_id:
            return "owner"
        for user in await self.adapter.list_ad_account_users(ad_account_id, business_id):
            if user.id == fb_user_id:
                return ad_account_role_from(user.tasks)
        return "none"

    async def verify(
        self,
        token: str | None,
        *,
        fb_user_id: str | None,
        business_id: str,
        ad_account_id: str,
    ) -> AdminAccess:
        """Query both relations concurrently; a failed lookup yields role ``none``."""
        if not token:
            raise TokenRequired(
                "Connect Meta before verifying admin access",
                details={"requires_reauth": True},
            )

        if not fb_user_id:
            try:
                fb_user_id = (await self.adapter.get_me()).id
            except RemoteAPIError as exc:
                logger.info("Admin lookup for identity failed: %s", exc.message)
                return AdminAccess(admin_connected=False, errors=[f"identity: {exc.message}"])

        business_result, account_result = await asyncio.gather(
            self._business_role(business_id),
            self._ad_account_role(fb_user_id, ad_account_id, business_id),
            return_exceptions=True,
        )

        errors: list[str] = []
        roles: list[Role] = []
        for label, result in (("business", business_result), ("ad_account", account_result)):
            if isinstance(result, RemoteAPIError):
                logger.info("Admin lookup for %s failed: %s", label, result.message)
                errors.append(f"{label}: {result.message}")
                roles.append("none")
            elif isinstance(result, BaseException):
                raise result
            else:
                roles.append(result)

        business_role, ad_account_role = roles
        return AdminAccess(
            admin_connected=business_role in ADMIN_ROLES and ad_account_role in ADMIN_ROLES,
            business_role=business_role,
            ad_account_role=ad_account_role,
            fb_user_id=fb_user_id,
            errors=errors,
        )
