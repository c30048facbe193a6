"""Persistence of the per-campaign Meta connection (token + asset selections)."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from publisher.models import CONNECTION_CLEARABLE_FIELDS, MetaConnection
from publisher.platforms.exceptions import TokenMissing

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

SELECTION_FIELDS: tuple[str, ...] = (
    "selected_business_id",
    "selected_business_name",
    "selected_page_id",
    "selected_page_name",
    "selected_page_access_token",
    "selected_ig_user_id",
    "selected_ig_username",
    "selected_ad_account_id",
    "selected_ad_account_name",
)


class ConnectionStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, campaign_id: uuid.UUID) -> MetaConnection | None:
        result = await self.db.execute(
            select(MetaConnection)
            .where(MetaConnection.campaign_id == campaign_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def require(self, campaign_id: uuid.UUID) -> MetaConnection:
        connection = await self.get(campaign_id)
        if connection is None:
            raise TokenMissing(
                "Meta is not connected for this campaign",
                details={"requires_reauth": True},
            )
        return connection

    async def upsert_token(
        self,
        campaign_id: uuid.UUID,
        *,
        user_id: str,
        fb_user_id: str,
        token: str,
        expires_at: datetime,
    ) -> MetaConnection:
        """Insert or overwrite the token row for ``campaign_id``.

        Relies on the unique constraint on ``campaign_id`` so two concurrent
        connects end with exactly one row.  Existing selections are kept.
        """
        values = {
            "campaign_id": campaign_id,
            "user_id": user_id,
            "fb_user_id": fb_user_id,
            "long_lived_user_token": token,
            "token_expires_at": expires_at,
        }
        insert = _INSERT_BY_DIALECT[self.db.get_bind().dialect.name]
        stmt = insert(MetaConnection).values(id=uuid.uuid4(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[MetaConnection.campaign_id],
            set_={
                "user_id": user_id,
                "fb_user_id": fb_user_id,
                "long_lived_user_token": token,
                "token_expires_at": expires_at,
                "updated_at": func.now(),
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

        return await self.get(campaign_id)

    async def update_selection(
        self, campaign_id: uuid.UUID, fields: dict[str, Any]
    ) -> MetaConnection:
        """Apply a partial selection update; keys not in ``fields`` are untouched."""
        unknown = set(fields) - set(SELECTION_FIELDS)
        if unknown:
            raise ValueError(f"Not selection fields: {sorted(unknown)}")

        connection = await self.require(campaign_id)
        for key, value in fields.items():
            setattr(connection, key, value)
        await self.db.commit()
        await self.db.refresh(connection)
        return connection

    async def set_payment_connected(self, campaign_id: uuid.UUID, connected: bool) -> None:
        connection = await self.require(campaign_id)
        connection.ad_account_payment_connected = connected
        await self.db.commit()

    async def clear(self, campaign_id: uuid.UUID) -> bool:
        """Null the token, expiry and every selection in a single UPDATE.

        Returns ``False`` when there was no row to clear.  Idempotent.
        """
        values: dict[str, Any] = {name: None for name in CONNECTION_CLEARABLE_FIELDS}
        values["ad_account_payment_connected"] = False
        values["updated_at"] = func.now()
        result = await self.db.execute(
            update(MetaConnection)
            .where(MetaConnection.campaign_id == campaign_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        return result.rowcount > 0

    async def campaigns_for_fb_user(self, fb_user_id: str) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(MetaConnection.campaign_id).where(
                MetaConnection.fb_user_id == fb_user_id,
                MetaConnection.long_lived_user_token.is_not(None),
            )
        )
        return list(result.scalars().all())


def selection_summary(connection: MetaConnection | None) -> dict[str, Any]:
    """Public projection of a connection; never includes tokens."""
    if connection is None:
        return {
            "connected": False,
            "token_expires_at": None,
            "business": None,
            "page": None,
            "instagram": None,
            "ad_account": None,
            "payment_connected": False,
        }

    def _ref(ref_id: str | None, label: str | None, key: str = "name") -> dict[str, Any] | None:
        return {"id": ref_id, key: label} if ref_id else None

    return {
        "connected": bool(connection.long_lived_user_token),
        "token_expires_at": connection.token_expires_at,
        "business": _ref(connection.selected_business_id, connection.selected_business_name),
        "page": _ref(connection.selected_page_id, connection.selected_page_name),
        "instagram": _ref(
            connection.selected_ig_user_id, connection.selected_ig_username, key="username"
        ),
        "ad_account": _ref(
            connection.selected_ad_account_id, connection.selected_ad_account_name
        ),
        "payment_connected": connection.ad_account_payment_connected,
    }
