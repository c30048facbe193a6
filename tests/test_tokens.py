"""Token lifecycle: exchange, persist, connect, expiry, disconnect."""

from datetime import datetime, timedelta, timezone

import pytest

from publisher.platforms.exceptions import (
    CredentialsMissing,
    ExchangeRejected,
    RemoteAPIError,
    TokenExpired,
    TokenMissing,
)
from publisher.services.connections import ConnectionStore
from publisher.services.delivery import DeliveryStateStore
from publisher.services.tokens import TokenLifecycleManager, require_token
from publisher.settings import settings
from tests.conftest import FB_USER_ID, USER_ID, make_campaign, make_connection


@pytest.fixture
def manager(db_session, adapter_factory):
    return TokenLifecycleManager(db_session, adapter_factory=adapter_factory)


@pytest.mark.asyncio
async def test_exchange_without_credentials_makes_no_call(manager, graph, monkeypatch):
    monkeypatch.setattr(settings, "META_APP_ID", "")
    monkeypatch.setattr(settings, "META_APP_SECRET", "")

    with pytest.raises(CredentialsMissing):
        await manager.exchange("short")

    assert graph.calls == []


@pytest.mark.asyncio
async def test_exchange_uses_expires_in(manager, graph, meta_credentials):
    graph.on("GET", "oauth/access_token", {"access_token": "long", "expires_in": 3600})

    before = datetime.now(timezone.utc)
    exchanged = await manager.exchange("short")

    assert exchanged.long_lived_token == "long"
    assert before + timedelta(seconds=3590) < exchanged.expires_at
    assert exchanged.expires_at < before + timedelta(seconds=3700)


@pytest.mark.asyncio
async def test_exchange_defaults_ttl_when_expiry_missing(manager, graph, meta_credentials):
    graph.on("GET", "oauth/access_token", {"access_token": "long"})

    exchanged = await manager.exchange("short")

    remaining = exchanged.expires_at - datetime.now(timezone.utc)
    assert timedelta(days=59) < remaining <= timedelta(days=60)


@pytest.mark.asyncio
async def test_exchange_rejected_by_platform(manager, graph, meta_credentials):
    graph.on("GET", "oauth/access_token", RemoteAPIError("Invalid OAuth token", code=190))

    with pytest.raises(ExchangeRejected, match="Invalid OAuth token"):
        await manager.exchange("bad")


@pytest.mark.asyncio
async def test_exchange_without_access_token(manager, graph, meta_credentials):
    graph.on("GET", "oauth/access_token", {"token_type": "bearer"})

    with pytest.raises(ExchangeRejected):
        await manager.exchange("short")


@pytest.mark.asyncio
async def test_connect_persists_and_marks_connected(
    manager, graph, adapter_factory, db_session, campaign, meta_credentials
):
    graph.on("GET", "oauth/access_token", {"access_token": "long-1", "expires_in": 5000})
    graph.on("GET", "me", {"id": FB_USER_ID})

    connection = await manager.connect(campaign.id, user_id=USER_ID, short_lived_token="short")

    assert connection.long_lived_user_token == "long-1"
    assert connection.fb_user_id == FB_USER_ID
    assert adapter_factory.tokens == [None, "long-1"]
    data = await DeliveryStateStore(db_session).meta_connect_data(campaign.id)
    assert data["status"] == "connected"


@pytest.mark.asyncio
async def test_connect_overwrites_prior_token_and_keeps_selection(
    manager, graph, db_session, campaign, meta_credentials
):
    await make_connection(db_session, campaign.id, token="old-token")
    graph.on("GET", "oauth/access_token", {"access_token": "new-token", "expires_in": 5000})
    graph.on("GET", "me", {"id": FB_USER_ID})

    await manager.connect(campaign.id, user_id=USER_ID, short_lived_token="short")

    connection = await ConnectionStore(db_session).get(campaign.id)
    assert connection.long_lived_user_token == "new-token"
    assert connection.selected_page_id == "page-1"


def test_require_token_missing():
    with pytest.raises(TokenMissing):
        require_token(None)


@pytest.mark.asyncio
async def test_require_token_expired(db_session, campaign):
    connection = await make_connection(
        db_session, campaign.id, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )

    with pytest.raises(TokenExpired) as exc_info:
        require_token(connection)
    assert exc_info.value.details["requires_reauth"] is True


@pytest.mark.asyncio
async def test_require_token_accepts_naive_utc(connection):
    connection.token_expires_at = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)

    assert require_token(connection) == connection.long_lived_user_token


@pytest.mark.asyncio
async def test_disconnect_clears_everything_but_keeps_delivery(
    manager, db_session, campaign, connection
):
    store = DeliveryStateStore(db_session)
    await store.merge(campaign.id, campaign_id="cmp_1", ad_set_id="as_1")
    await ConnectionStore(db_session).set_payment_connected(campaign.id, True)

    await manager.disconnect(campaign.id)

    cleared = await ConnectionStore(db_session).get(campaign.id)
    await db_session.refresh(cleared)
    assert cleared.long_lived_user_token is None
    assert cleared.token_expires_at is None
    assert cleared.fb_user_id is None
    assert cleared.selected_business_id is None
    assert cleared.selected_page_id is None
    assert cleared.selected_page_access_token is None
    assert cleared.selected_ad_account_id is None
    assert cleared.ad_account_payment_connected is False

    delivery = await store.get(campaign.id)
    assert delivery.campaign_id == "cmp_1"
    assert delivery.ad_set_id == "as_1"
    assert (await store.meta_connect_data(campaign.id))["status"] == "disconnected"


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(manager, db_session, campaign):
    await manager.disconnect(campaign.id)
    await manager.disconnect(campaign.id)

    assert await ConnectionStore(db_session).get(campaign.id) is None


@pytest.mark.asyncio
async def test_disconnect_platform_user(manager, db_session, campaign, connection):
    other = await make_campaign(db_session)
    await make_connection(db_session, other.id)
    stranger = await make_campaign(db_session)
    await make_connection(db_session, stranger.id)
    stranger_conn = await ConnectionStore(db_session).get(stranger.id)
    stranger_conn.fb_user_id = "fb-someone-else"
    await db_session.commit()

    disconnected = await manager.disconnect_platform_user(FB_USER_ID)

    assert set(disconnected) == {campaign.id, other.id}
    kept = await ConnectionStore(db_session).get(stranger.id)
    await db_session.refresh(kept)
    assert kept.long_lived_user_token is not None
