from publisher.platforms.base import Goal, LaunchSpec, PublishTarget
from publisher.platforms.dry_run import DryRunMetaAdsAdapter
from publisher.platforms.exceptions import (
    CompatibilityError,
    CredentialsMissing,
    ExchangeRejected,
    Forbidden,
    InvalidLaunchSpec,
    InvalidPublishTarget,
    PaymentIneligible,
    PipelineStepFailed,
    PlatformError,
    RemoteAPIError,
    TokenExpired,
    TokenMissing,
    TokenRequired,
    Unauthorized,
)
from publisher.platforms.factory import get_platform_adapter
from publisher.platforms.graph import GraphClient
from publisher.platforms.meta_ads import MetaAdsAdapter

__all__ = [
    "CompatibilityError",
    "CredentialsMissing",
    "DryRunMetaAdsAdapter",
    "ExchangeRejected",
    "Forbidden",
    "Goal",
    "GraphClient",
    "InvalidLaunchSpec",
    "InvalidPublishTarget",
    "LaunchSpec",
    "MetaAdsAdapter",
    "PaymentIneligible",
    "PipelineStepFailed",
    "PlatformError",
    "PublishTarget",
    "RemoteAPIError",
    "TokenExpired",
    "TokenMissing",
    "TokenRequired",
    "Unauthorized",
    "get_platform_adapter",
]
