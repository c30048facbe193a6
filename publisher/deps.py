import uuid

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.async_db import get_async_db
from publisher.models import Campaign
from publisher.platforms.exceptions import Forbidden, Unauthorized
from publisher.platforms.factory import get_platform_adapter
from publisher.services.tokens import AdapterFactory


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller id set by the upstream auth gateway."""
    if not x_user_id:
        raise Unauthorized("Missing caller identity")
    return x_user_id


def get_adapter_factory() -> AdapterFactory:
    """Graph adapter factory. Overridden in tests."""
    return get_platform_adapter


async def get_owned_campaign(
    campaign_id: uuid.UUID,
    user_id: str,
    db: AsyncSession,
) -> Campaign:
    campaign = await db.get(Campaign, campaign_id)
    if campaign is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    if campaign.user_id != user_id:
        raise Forbidden("Campaign belongs to another user")
    return campaign


async def owned_campaign_from_query(
    campaign_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
) -> Campaign:
    return await get_owned_campaign(campaign_id, user_id, db)
