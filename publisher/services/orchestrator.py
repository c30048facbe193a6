"""Resumable creation of the Campaign → AdSet → AdCreative → Ad hierarchy.

Each created id is merged into the delivery record and committed before the
next step starts, so a failed launch can be re-run and continues where it
stopped without creating duplicates.  Objects are created paused; going live is
the separate :meth:`ResourceOrchestrator.publish` action.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.models import Campaign, MetaConnection
from publisher.platforms.base import LaunchSpec, PublishTarget
from publisher.platforms.exceptions import (
    CompatibilityError,
    InvalidLaunchSpec,
    InvalidPublishTarget,
    PipelineStepFailed,
    PlatformError,
    TokenExpired,
)
from publisher.platforms.meta_ads import ads_manager_url
from publisher.services.connections import ConnectionStore
from publisher.services.delivery import (
    DeliveryState,
    DeliveryStateStore,
    PublishState,
    utcnow_iso,
)
from publisher.services.locks import KeyedLock, campaign_locks
from publisher.services.tokens import AdapterFactory, require_token

logger = logging.getLogger(__name__)

ACTIVE = "ACTIVE"

STEP_FOR_FIELD = {
    "campaign_id": "campaign",
    "ad_set_id": "ad_set",
    "creative_id": "creative",
    "ad_id": "ad",
}


class LaunchResult(BaseModel):
    delivery: DeliveryState
    stage: PublishState
    ads_manager_url: str | None = None


class PublishResult(BaseModel):
    success: bool
    target_type: PublishTarget
    target_id: str
    stage: PublishState


class ResourceOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        *,
        adapter_factory: AdapterFactory,
        locks: KeyedLock = campaign_locks,
    ) -> None:
        self.db = db
        self.connections = ConnectionStore(db)
        self.delivery = DeliveryStateStore(db)
        self._adapter_factory = adapter_factory
        self._locks = locks

    async def _ready_connection(self, campaign_id: uuid.UUID) -> tuple[MetaConnection, str]:
        connection = await self.connections.get(campaign_id)
        token = require_token(connection)
        if not connection.selected_page_id or not connection.selected_ad_account_id:
            raise CompatibilityError(
                "Select a Facebook page and an ad account before launching",
                details={
                    "page_id": connection.selected_page_id,
                    "ad_account_id": connection.selected_ad_account_id,
                },
            )
        return connection, token

    async def _run_step(
        self,
        campaign_id: uuid.UUID,
        step: str,
        field: str,
        create: Callable[[], Awaitable[str]],
    ) -> DeliveryState:
        try:
            created_id = await create()
        except TokenExpired:
            raise
        except PlatformError as exc:
            logger.warning("Launch step %s failed for campaign %s: %s", step, campaign_id, exc.message)
            raise PipelineStepFailed(step, exc) from exc

        try:
            state = await self.delivery.merge(campaign_id, **{field: created_id})
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error(
                "Launch step %s for campaign %s created %s but could not record it",
                step,
                campaign_id,
                created_id,
                exc_info=True,
            )
            raise PipelineStepFailed(
                step, f"created {created_id} but could not record it"
            ) from exc
        logger.info("Launch step %s done for campaign %s: %s", step, campaign_id, created_id)
        return state

    async def launch(self, campaign_id: uuid.UUID, spec: LaunchSpec) -> LaunchResult:
        async with self._locks.hold(campaign_id):
            connection, token = await self._ready_connection(campaign_id)
            adapter = self._adapter_factory(token)
            account_id = connection.selected_ad_account_id
            page_id = connection.selected_page_id

            state = await self.delivery.get(campaign_id)
            gap = state.ordering_gap()
            if gap is not None:
                raise PipelineStepFailed(
                    STEP_FOR_FIELD[gap],
                    f"delivery record is missing {gap} but has later ids; reset it first",
                )

            if state.image_hash:
                if spec.image_hash and spec.image_hash != state.image_hash:
                    logger.warning(
                        "Campaign %s already uses image %s; ignoring supplied image %s",
                        campaign_id,
                        state.image_hash,
                        spec.image_hash,
                    )
            elif not state.creative_id:
                if spec.image_hash:
                    state = await self.delivery.merge(campaign_id, image_hash=spec.image_hash)
                elif spec.image_url:
                    state = await self._run_step(
                        campaign_id,
                        "image",
                        "image_hash",
                        lambda: adapter.upload_image(account_id, spec.image_url),
                    )
                else:
                    raise InvalidLaunchSpec("image_url or image_hash is required")

            if not state.campaign_id:
                state = await self._run_step(
                    campaign_id,
                    "campaign",
                    "campaign_id",
                    lambda: adapter.create_campaign(account_id, spec),
                )

            if not state.ad_set_id:
                state = await self._run_step(
                    campaign_id,
                    "ad_set",
                    "ad_set_id",
                    lambda: adapter.create_ad_set(
                        account_id, spec, campaign_id=state.campaign_id, page_id=page_id
                    ),
                )

            if not state.creative_id:
                state = await self._run_step(
                    campaign_id,
                    "creative",
                    "creative_id",
                    lambda: adapter.create_ad_creative(
                        account_id, spec, page_id=page_id, image_hash=state.image_hash
                    ),
                )

            if not state.ad_id:
                state = await self._run_step(
                    campaign_id,
                    "ad",
                    "ad_id",
                    lambda: adapter.create_ad(
                        account_id, spec, adset_id=state.ad_set_id, creative_id=state.creative_id
                    ),
                )

            return LaunchResult(
                delivery=state,
                stage=state.stage,
                ads_manager_url=ads_manager_url(state.campaign_id, account_id),
            )

    async def publish(
        self, campaign_id: uuid.UUID, target_type: PublishTarget, target_id: str
    ) -> PublishResult:
        """Flip a paused object created by :meth:`launch` to ACTIVE."""
        async with self._locks.hold(campaign_id):
            connection = await self.connections.get(campaign_id)
            token = require_token(connection)

            state = await self.delivery.get(campaign_id)
            recorded = state.campaign_id if target_type == PublishTarget.CAMPAIGN else state.ad_id
            if not recorded or recorded != target_id:
                raise InvalidPublishTarget(
                    f"{target_type.value} {target_id} was not created for this campaign",
                    details={"target_type": target_type.value, "target_id": target_id},
                )

            success = await self._adapter_factory(token).set_status(target_id, ACTIVE)

            campaign = await self.db.get(Campaign, campaign_id)
            if success and campaign is not None:
                campaign.status = "active"
            if success and target_type == PublishTarget.AD:
                state = await self.delivery.merge(campaign_id, published_at=utcnow_iso())
            else:
                await self.db.commit()

            logger.info("Published %s %s for campaign %s", target_type.value, target_id, campaign_id)
            return PublishResult(
                success=success, target_type=target_type, target_id=target_id, stage=state.stage
            )

    async def state(self, campaign_id: uuid.UUID) -> PublishState:
        return (await self.delivery.get(campaign_id)).stage

    async def reset(self, campaign_id: uuid.UUID) -> None:
        async with self._locks.hold(campaign_id):
            await self.delivery.reset(campaign_id)
            logger.info("Delivery record reset for campaign %s", campaign_id)
