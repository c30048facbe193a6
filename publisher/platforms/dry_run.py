from __future__ import annotations

import logging
import uuid
from typing import Any

from publisher.platforms.base import LaunchSpec
from publisher.platforms.meta_ads import MetaAdsAdapter

logger = logging.getLogger(__name__)


def _fake_id(kind: str) -> str:
    return f"dry-run-{kind}-{uuid.uuid4().hex[:8]}"


class DryRunMetaAdsAdapter(MetaAdsAdapter):
    """Performs real reads but fabricates ids for every write.

    Used for development and for walking the publishing funnel end to end
    without creating remote objects or spending budget.
    """

    async def upload_image(self, ad_account_id: str, image_url: str) -> str:
        logger.info("[dry-run] upload image %s to %s", image_url, ad_account_id)
        return uuid.uuid4().hex

    async def create_campaign(self, ad_account_id: str, spec: LaunchSpec) -> str:
        logger.info("[dry-run] create campaign %r in %s", spec.campaign_name, ad_account_id)
        return _fake_id("campaign")

    async def create_ad_set(
        self, ad_account_id: str, spec: LaunchSpec, *, campaign_id: str, page_id: str
    ) -> str:
        logger.info("[dry-run] create ad set %r under %s", spec.ad_set_name, campaign_id)
        return _fake_id("adset")

    async def create_ad_creative(
        self, ad_account_id: str, spec: LaunchSpec, *, page_id: str, image_hash: str
    ) -> str:
        logger.info("[dry-run] create creative for page %s", page_id)
        return _fake_id("creative")

    async def create_ad(
        self, ad_account_id: str, spec: LaunchSpec, *, adset_id: str, creative_id: str
    ) -> str:
        logger.info("[dry-run] create ad %r under %s", spec.ad_name, adset_id)
        return _fake_id("ad")

    async def create_lead_form(self, page_id: str, *, name: str, **kwargs: Any) -> str:
        logger.info("[dry-run] create lead form %r on page %s", name, page_id)
        return _fake_id("leadform")

    async def set_status(self, object_id: str, status: str) -> bool:
        logger.info("[dry-run] set %s status=%s", object_id, status)
        return True
