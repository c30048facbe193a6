"""Persisted identifiers of the remote objects created for a campaign.

The record lives under ``campaign_states.meta_connect_data.delivery_data`` with
camelCase keys.  Writes are shallow merges: a key is only ever added or
overwritten, never removed, except by an explicit :meth:`DeliveryStateStore.reset`.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.models import CampaignState

DELIVERY_KEY = "delivery_data"


class PublishState(str, enum.Enum):
    NO_CAMPAIGN = "NoCampaign"
    CAMPAIGN_CREATED = "CampaignCreated"
    AD_SET_CREATED = "AdSetCreated"
    CREATIVE_CREATED = "CreativeCreated"
    AD_CREATED = "AdCreated"
    PUBLISHED = "Published"


class DeliveryState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    campaign_id: str | None = Field(default=None, alias="campaignId")
    ad_set_id: str | None = Field(default=None, alias="adSetId")
    creative_id: str | None = Field(default=None, alias="creativeId")
    ad_id: str | None = Field(default=None, alias="adId")
    image_hash: str | None = Field(default=None, alias="imageHash")
    published_at: str | None = Field(default=None, alias="publishedAt")

    # Creation order of the remote hierarchy
    CHAIN: ClassVar[tuple[str, ...]] = ("campaign_id", "ad_set_id", "creative_id", "ad_id")

    def ordering_gap(self) -> str | None:
        """Name of the first unset field that a later, set field depends on."""
        missing: str | None = None
        for name in self.CHAIN:
            if getattr(self, name) is None:
                missing = missing or name
            elif missing is not None:
                return missing
        return None

    @property
    def stage(self) -> PublishState:
        if self.published_at:
            return PublishState.PUBLISHED
        if self.ad_id:
            return PublishState.AD_CREATED
        if self.creative_id:
            return PublishState.CREATIVE_CREATED
        if self.ad_set_id:
            return PublishState.AD_SET_CREATED
        if self.campaign_id:
            return PublishState.CAMPAIGN_CREATED
        return PublishState.NO_CAMPAIGN

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeliveryStateStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _state_row(self, campaign_id: uuid.UUID, *, create: bool = False) -> CampaignState | None:
        result = await self.db.execute(
            select(CampaignState).where(CampaignState.campaign_id == campaign_id)
        )
        row = result.scalars().first()
        if row is None and create:
            row = CampaignState(campaign_id=campaign_id, meta_connect_data={})
            self.db.add(row)
        return row

    async def meta_connect_data(self, campaign_id: uuid.UUID) -> dict[str, Any]:
        row = await self._state_row(campaign_id)
        return dict(row.meta_connect_data or {}) if row else {}

    async def get(self, campaign_id: uuid.UUID) -> DeliveryState:
        data = await self.meta_connect_data(campaign_id)
        return DeliveryState.model_validate(data.get(DELIVERY_KEY) or {})

    async def merge(self, local_campaign_id: uuid.UUID, /, **fields: str | None) -> DeliveryState:
        """Shallow-merge ``fields`` into the record of ``local_campaign_id`` and commit.

        The key is positional-only so ``campaign_id`` (the remote campaign id)
        can be passed as a field.  ``None`` values are ignored, so a merge can
        never clear a stored id.
        """
        updates = DeliveryState(**{k: v for k, v in fields.items() if v is not None}).to_record()
        row = await self._state_row(local_campaign_id, create=True)
        data = dict(row.meta_connect_data or {})
        data[DELIVERY_KEY] = {**(data.get(DELIVERY_KEY) or {}), **updates}
        # Reassign so the JSON column is flagged dirty
        row.meta_connect_data = data
        await self.db.commit()
        return DeliveryState.model_validate(data[DELIVERY_KEY])

    async def reset(self, campaign_id: uuid.UUID) -> None:
        row = await self._state_row(campaign_id)
        if row is None:
            return
        data = dict(row.meta_connect_data or {})
        data[DELIVERY_KEY] = {}
        row.meta_connect_data = data
        await self.db.commit()

    async def set_status(self, campaign_id: uuid.UUID, status: str, **extra: Any) -> None:
        """Record the connection status; ``delivery_data`` is left untouched."""
        row = await self._state_row(campaign_id, create=True)
        data = dict(row.meta_connect_data or {})
        data.update(extra)
        data["status"] = status
        row.meta_connect_data = data
        await self.db.commit()
