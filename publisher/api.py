import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.async_db import get_async_db
from publisher.deps import get_current_user_id, get_owned_campaign
from publisher.models import Campaign, CampaignState, MetaConnection
from publisher.schemas import CampaignCreate, CampaignOut
from publisher.services.locks import campaign_locks

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


@router.post("", response_model=CampaignOut, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    campaign = Campaign(user_id=user_id, name=payload.name, status="draft")
    db.add(campaign)
    await db.commit()
    await db.refresh(campaign)
    return campaign


@router.get("/{campaign_id}", response_model=CampaignOut)
async def get_campaign(
    campaign_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    return await get_owned_campaign(campaign_id, user_id, db)


@router.delete("/{campaign_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_campaign(
    campaign_id: uuid.UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
):
    """Delete the campaign together with its Meta connection and state."""
    await get_owned_campaign(campaign_id, user_id, db)
    async with campaign_locks.hold(campaign_id):
        await db.execute(delete(MetaConnection).where(MetaConnection.campaign_id == campaign_id))
        await db.execute(delete(CampaignState).where(CampaignState.campaign_id == campaign_id))
        await db.execute(delete(Campaign).where(Campaign.id == campaign_id))
        await db.commit()
