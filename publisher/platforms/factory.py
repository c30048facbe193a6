from __future__ import annotations

from publisher.platforms.dry_run import DryRunMetaAdsAdapter
from publisher.platforms.graph import GraphClient
from publisher.platforms.meta_ads import MetaAdsAdapter
from publisher.settings import settings


def get_platform_adapter(
    access_token: str | None, *, dry_run: bool | None = None
) -> MetaAdsAdapter:
    """Return a Meta adapter bound to ``access_token``.

    When dry_run is true (default: ``USE_DRY_RUN_EXECUTION``), writes are
    simulated by :class:`DryRunMetaAdsAdapter`; reads still reach the Graph API.
    """
    graph = GraphClient(
        access_token,
        app_id=settings.META_APP_ID,
        app_secret=settings.META_APP_SECRET,
        api_version=settings.META_GRAPH_VERSION,
        timeout=settings.META_REQUEST_TIMEOUT_SECONDS,
    )
    if dry_run is None:
        dry_run = settings.USE_DRY_RUN_EXECUTION
    if dry_run:
        return DryRunMetaAdsAdapter(graph)
    return MetaAdsAdapter(graph)
