import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from publisher.db import Base


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    connection: Mapped["MetaConnection | None"] = relationship(
        back_populates="campaign", cascade="all, delete-orphan", passive_deletes=True
    )
    state: Mapped["CampaignState | None"] = relationship(
        back_populates="campaign", cascade="all, delete-orphan", passive_deletes=True
    )


class CampaignState(Base):
    """Generic per-step state container; Meta data lives under ``meta_connect_data``."""

    __tablename__ = "campaign_states"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    meta_connect_data: Mapped[dict | None] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    campaign: Mapped[Campaign] = relationship(back_populates="state")


class MetaConnection(Base):
    """Delegated token and asset selections for one campaign."""

    __tablename__ = "campaign_meta_connections"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    fb_user_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    long_lived_user_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    selected_business_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_business_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_page_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_page_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_page_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_ig_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_ig_username: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_ad_account_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_ad_account_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    ad_account_payment_connected: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    campaign: Mapped[Campaign] = relationship(back_populates="connection")


# Every column that disconnect must clear, in one statement.
CONNECTION_CLEARABLE_FIELDS: tuple[str, ...] = (
    "fb_user_id",
    "long_lived_user_token",
    "token_expires_at",
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
