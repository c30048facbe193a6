"""Lifecycle of the delegated Meta user token: exchange, persist, expire, disconnect."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.models import MetaConnection
from publisher.platforms.exceptions import (
    CredentialsMissing,
    ExchangeRejected,
    RemoteAPIError,
    TokenExpired,
    TokenMissing,
)
from publisher.platforms.factory import get_platform_adapter
from publisher.platforms.meta_ads import MetaAdsAdapter
from publisher.services.connections import ConnectionStore
from publisher.services.delivery import DeliveryStateStore, utcnow_iso
from publisher.services.locks import KeyedLock, campaign_locks
from publisher.settings import settings
from publisher.utils.redaction import redact_token

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str | None], MetaAdsAdapter]


@dataclass(frozen=True)
class ExchangedToken:
    long_lived_token: str
    expires_at: datetime


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def require_token(connection: MetaConnection | None) -> str:
    """Return the stored token or raise; tokens are never refreshed implicitly."""
    if connection is None or not connection.long_lived_user_token:
        raise TokenMissing(
            "Meta is not connected for this campaign",
            details={"requires_reauth": True},
        )
    expires_at = connection.token_expires_at
    if expires_at is None or _as_utc(expires_at) <= datetime.now(timezone.utc):
        raise TokenExpired(
            "Meta token expired; reconnect to continue",
            details={"requires_reauth": True},
        )
    return connection.long_lived_user_token


class TokenLifecycleManager:
    def __init__(
        self,
        db: AsyncSession,
        *,
        adapter_factory: AdapterFactory = get_platform_adapter,
        locks: KeyedLock = campaign_locks,
    ) -> None:
        self.db = db
        self.connections = ConnectionStore(db)
        self.delivery = DeliveryStateStore(db)
        self._adapter_factory = adapter_factory
        self._locks = locks

    async def exchange(self, short_lived_token: str) -> ExchangedToken:
        if not settings.META_APP_ID or not settings.META_APP_SECRET:
            logger.error("META_APP_ID / META_APP_SECRET are not configured")
            raise CredentialsMissing("Meta app credentials are not configured")

        adapter = self._adapter_factory(None)
        try:
            response = await adapter.exchange_token(
                short_lived_token,
                app_id=settings.META_APP_ID,
                app_secret=settings.META_APP_SECRET,
            )
        except (RemoteAPIError, TokenExpired) as exc:
            logger.warning(
                "Token exchange rejected for %s: %s", redact_token(short_lived_token), exc.message
            )
            raise ExchangeRejected(exc.message, details=exc.details) from exc

        if not response.access_token:
            raise ExchangeRejected("Meta returned no access token")

        if response.expires_in:
            ttl = timedelta(seconds=response.expires_in)
        else:
            ttl = timedelta(days=settings.META_DEFAULT_TOKEN_TTL_DAYS)
        return ExchangedToken(
            long_lived_token=response.access_token,
            expires_at=datetime.now(timezone.utc) + ttl,
        )

    async def persist(
        self,
        campaign_id: uuid.UUID,
        *,
        user_id: str,
        fb_user_id: str,
        long_lived_token: str,
        expires_at: datetime,
    ) -> MetaConnection:
        return await self.connections.upsert_token(
            campaign_id,
            user_id=user_id,
            fb_user_id=fb_user_id,
            token=long_lived_token,
            expires_at=expires_at,
        )

    async def connect(
        self, campaign_id: uuid.UUID, *, user_id: str, short_lived_token: str
    ) -> MetaConnection:
        """Exchange, identify the Meta user and store the long-lived token."""
        async with self._locks.hold(campaign_id):
            exchanged = await self.exchange(short_lived_token)
            me = await self._adapter_factory(exchanged.long_lived_token).get_me()
            connection = await self.persist(
                campaign_id,
                user_id=user_id,
                fb_user_id=me.id,
                long_lived_token=exchanged.long_lived_token,
                expires_at=exchanged.expires_at,
            )
            await self.delivery.set_status(campaign_id, "connected", connected_at=utcnow_iso())
            logger.info(
                "Meta connected campaign=%s fb_user=%s token=%s",
                campaign_id,
                me.id,
                redact_token(exchanged.long_lived_token),
            )
            return connection

    async def disconnect(self, campaign_id: uuid.UUID) -> None:
        """Forget the token and selections; the delivery record is kept."""
        async with self._locks.hold(campaign_id):
            cleared = await self.connections.clear(campaign_id)
            try:
                await self.delivery.set_status(
                    campaign_id, "disconnected", disconnected_at=utcnow_iso()
                )
            except SQLAlchemyError:
                await self.db.rollback()
                logger.warning(
                    "Could not mark campaign %s disconnected", campaign_id, exc_info=True
                )
            logger.info("Meta disconnected campaign=%s (row cleared=%s)", campaign_id, cleared)

    async def disconnect_platform_user(self, fb_user_id: str) -> list[uuid.UUID]:
        campaign_ids = await self.connections.campaigns_for_fb_user(fb_user_id)
        for campaign_id in campaign_ids:
            await self.disconnect(campaign_id)
        return campaign_ids
