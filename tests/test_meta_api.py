"""HTTP surface: campaigns and the Meta publishing funnel."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from publisher.async_db import get_async_db
from publisher.db import Base
from publisher.deps import get_adapter_factory
from publisher.main import app
from publisher.platforms.exceptions import RemoteAPIError
from publisher.settings import settings
from tests.conftest import FB_USER_ID, USER_ID, FakeAdapterFactory, FakeGraph, setup_async_test_db
from tests.test_deauthorize import make_signed_request

HEADERS = {"X-User-Id": USER_ID}

LAUNCH_SPEC = {
    "goal": "leads",
    "image_url": "https://cdn.example.com/ad.png",
    "lead_form_id": "form-1",
    "daily_budget": 15,
}


# ---------------------------------------------------------------------------
# Fixture: async HTTP client backed by in-memory SQLite and a fake Graph
# ---------------------------------------------------------------------------


@pytest.fixture
def api_graph():
    return FakeGraph()


@pytest.fixture
async def async_client(api_graph):
    engine, SessionFactory = setup_async_test_db()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_async_db():
        async with SessionFactory() as session:
            yield session

    factory = FakeAdapterFactory(api_graph)
    app.dependency_overrides[get_async_db] = override_get_async_db
    app.dependency_overrides[get_adapter_factory] = lambda: factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_async_db, None)
    app.dependency_overrides.pop(get_adapter_factory, None)
    await engine.dispose()


async def _create_campaign(client: AsyncClient, headers=HEADERS) -> str:
    response = await client.post("/api/campaigns", json={"name": "Spring promo"}, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


async def _connect(client: AsyncClient, graph: FakeGraph, campaign_id: str):
    graph.on("GET", "oauth/access_token", {"access_token": "EAAB-long-1", "expires_in": 5184000})
    graph.on("GET", "me", {"id": FB_USER_ID})
    graph.on(
        "GET",
        "me/accounts",
        {
            "data": [
                {
                    "id": "page-1",
                    "name": "Bakery",
                    "access_token": "page-token-1",
                    "instagram_business_account": {"id": "ig-1", "username": "bakery"},
                }
            ]
        },
    )
    graph.on("GET", "me/adaccounts", {"data": [{"id": "act_1001", "name": "Main", "account_status": 1}]})
    return await client.post(
        "/api/meta/auth/exchange",
        json={"campaign_id": campaign_id, "access_token": "short-lived"},
        headers=HEADERS,
    )


async def _select(client: AsyncClient, graph: FakeGraph, campaign_id: str):
    graph.on("GET", "biz-1", {"id": "biz-1", "name": "Bakery Inc"})
    graph.on("GET", "act_1001", {"id": "act_1001", "name": "Main"})
    return await client.post(
        "/api/meta/selection",
        json={
            "campaign_id": campaign_id,
            "business_id": "biz-1",
            "page_id": "page-1",
            "ad_account_id": "1001",
        },
        headers=HEADERS,
    )


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_campaign_crud(async_client: AsyncClient):
    campaign_id = await _create_campaign(async_client)

    response = await async_client.get(f"/api/campaigns/{campaign_id}", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["status"] == "draft"

    response = await async_client.delete(f"/api/campaigns/{campaign_id}", headers=HEADERS)
    assert response.status_code == 204

    response = await async_client.get(f"/api/campaigns/{campaign_id}", headers=HEADERS)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_missing_caller_is_unauthorized(async_client: AsyncClient):
    response = await async_client.post("/api/campaigns", json={"name": "x"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_other_users_campaign_is_forbidden(async_client: AsyncClient, api_graph):
    campaign_id = await _create_campaign(async_client)

    response = await async_client.get(
        "/api/meta/selection",
        params={"campaign_id": campaign_id},
        headers={"X-User-Id": "intruder"},
    )

    assert response.status_code == 403
    assert api_graph.calls == []


@pytest.mark.asyncio
async def test_unknown_campaign(async_client: AsyncClient):
    response = await async_client.get(f"/api/campaigns/{uuid.uuid4()}", headers=HEADERS)
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_exchange_connects_and_lists_assets(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)

    response = await _connect(async_client, api_graph, campaign_id)

    assert response.status_code == 200
    body = response.json()
    assert body["connected"] is True
    assert body["fb_user_id"] == FB_USER_ID
    assert body["pages"][0]["instagram_business_account"]["username"] == "bakery"
    assert "access_token" not in body["pages"][0]
    assert body["ad_accounts"][0]["id"] == "act_1001"


@pytest.mark.asyncio
async def test_exchange_without_app_credentials(async_client, api_graph, monkeypatch):
    monkeypatch.setattr(settings, "META_APP_ID", "")
    campaign_id = await _create_campaign(async_client)

    response = await async_client.post(
        "/api/meta/auth/exchange",
        json={"campaign_id": campaign_id, "access_token": "short"},
        headers=HEADERS,
    )

    assert response.status_code == 500
    assert "secret" not in response.text.lower()
    assert api_graph.calls == []


@pytest.mark.asyncio
async def test_exchange_rejected(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    api_graph.on("GET", "oauth/access_token", RemoteAPIError("Invalid OAuth access token", code=190))

    response = await async_client.post(
        "/api/meta/auth/exchange",
        json={"campaign_id": campaign_id, "access_token": "bad"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "ExchangeRejected"


@pytest.mark.asyncio
async def test_selection_round_trip(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)

    response = await _select(async_client, api_graph, campaign_id)
    assert response.status_code == 200

    response = await async_client.get(
        "/api/meta/selection", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    body = response.json()
    assert body["connected"] is True
    assert body["business"] == {"id": "biz-1", "name": "Bakery Inc"}
    assert body["page"] == {"id": "page-1", "name": "Bakery"}
    assert body["instagram"] == {"id": "ig-1", "username": "bakery"}
    assert body["ad_account"] == {"id": "act_1001", "name": "Main"}
    assert body["payment_connected"] is False
    assert "page-token-1" not in response.text


@pytest.mark.asyncio
async def test_pickers_require_connection(async_client):
    campaign_id = await _create_campaign(async_client)

    response = await async_client.get(
        "/api/meta/pages", params={"campaign_id": campaign_id}, headers=HEADERS
    )

    assert response.status_code == 401
    assert response.json()["requires_reauth"] is True


@pytest.mark.asyncio
async def test_business_ad_accounts_picker(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    api_graph.on("GET", "biz-1/owned_ad_accounts", {"data": [{"id": "act_1001", "name": "Main"}]})

    response = await async_client.get(
        "/api/meta/businesses/biz-1/adaccounts", params={"campaign_id": campaign_id}, headers=HEADERS
    )

    assert response.status_code == 200
    assert [a["id"] for a in response.json()] == ["act_1001"]


@pytest.mark.asyncio
async def test_disconnect_then_pickers_need_reauth(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)

    response = await async_client.post(
        "/api/meta/disconnect", json={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.status_code == 200

    response = await async_client.get(
        "/api/meta/selection", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json()["connected"] is False
    assert response.json()["page"] is None


@pytest.mark.asyncio
async def test_deauthorize_callback(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    signed = make_signed_request(
        {"algorithm": "HMAC-SHA256", "user_id": FB_USER_ID}, secret="app-secret-xyz"
    )

    response = await async_client.post("/api/meta/deauthorize", data={"signed_request": signed})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "disconnected": 1}
    response = await async_client.get(
        "/api/meta/selection", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json()["connected"] is False


@pytest.mark.asyncio
async def test_deauthorize_rejects_bad_signature(async_client, meta_credentials):
    response = await async_client.post("/api/meta/deauthorize", data={"signed_request": "x.y"})
    assert response.status_code == 400

    response = await async_client.get("/api/meta/deauthorize")
    assert response.json() == {"ok": True}


# ---------------------------------------------------------------------------
# Preflight
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_validate_and_payment_flow(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)

    api_graph.on(
        "GET",
        "act_1001",
        {
            "id": "act_1001",
            "name": "Main",
            "business": {"id": "biz-1"},
            "account_status": 1,
            "capabilities": [],
        },
    )
    api_graph.on("GET", "page-1/adaccounts", {"data": [{"id": "act_1001"}]})

    response = await async_client.post(
        "/api/meta/adaccount/validate", json={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json() == {"ok": True, "reason": None}

    response = await async_client.get(
        "/api/meta/payment/eligibility", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json()["eligible"] is True

    response = await async_client.post(
        "/api/meta/payment/mark",
        json={"campaign_id": campaign_id, "ad_account_id": "act_1001"},
        headers=HEADERS,
    )
    assert response.status_code == 200

    response = await async_client.get(
        "/api/meta/selection", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json()["payment_connected"] is True


@pytest.mark.asyncio
async def test_payment_mark_blocked_for_disabled_account(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    api_graph.on("GET", "act_1001", {"id": "act_1001", "account_status": 2})

    response = await async_client.post(
        "/api/meta/payment/mark",
        json={"campaign_id": campaign_id, "ad_account_id": "act_1001"},
        headers=HEADERS,
    )

    assert response.status_code == 409
    assert response.json()["error"]["type"] == "PaymentIneligible"


@pytest.mark.asyncio
async def test_payment_status_marks_funded_account(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    api_graph.on("GET", "act_1001", {"id": "act_1001", "funding_source_details": {"id": "fs-1"}})

    response = await async_client.get(
        "/api/meta/payment/status", params={"campaign_id": campaign_id}, headers=HEADERS
    )

    assert response.json() == {"connected": True}


@pytest.mark.asyncio
async def test_admin_verify(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    api_graph.on("GET", "me/businesses", {"data": [{"id": "biz-1", "permitted_roles": ["ADMIN"]}]})
    api_graph.on("GET", "act_1001", {"id": "act_1001", "owner": FB_USER_ID})

    response = await async_client.post(
        "/api/meta/admin/verify", json={"campaign_id": campaign_id}, headers=HEADERS
    )

    body = response.json()
    assert response.status_code == 200
    assert body["admin_connected"] is True
    assert body["business_role"] == "admin"
    assert body["ad_account_role"] == "owner"
    assert body["checked_at"]


@pytest.mark.asyncio
async def test_lead_forms_use_page_token(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    api_graph.on("GET", "page-1/leadgen_forms", {"data": [{"id": "form-1", "name": "Consult"}]})
    api_graph.on("POST", "page-1/leadgen_forms", {"id": "form-2"})
    factory = app.dependency_overrides[get_adapter_factory]()

    response = await async_client.get(
        "/api/meta/forms", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json()[0]["id"] == "form-1"
    assert factory.tokens[-1] == "page-token-1"

    response = await async_client.post(
        "/api/meta/forms",
        json={
            "campaign_id": campaign_id,
            "name": "New form",
            "privacy_policy_url": "https://example.com/privacy",
        },
        headers=HEADERS,
    )
    assert response.json() == {"id": "form-2"}


@pytest.mark.asyncio
async def test_form_leads_use_page_token(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    api_graph.on(
        "GET",
        "form-1/leads",
        {"data": [{"id": "lead-1", "field_data": [{"name": "email", "values": ["a@example.com"]}]}]},
    )
    factory = app.dependency_overrides[get_adapter_factory]()

    response = await async_client.get(
        "/api/meta/forms/form-1/leads", params={"campaign_id": campaign_id}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.json()[0]["field_data"] == [{"name": "email", "values": ["a@example.com"]}]
    assert factory.tokens[-1] == "page-token-1"


@pytest.mark.asyncio
async def test_ad_account_status(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    api_graph.on("GET", "act_1001", {"id": "act_1001", "account_status": 2, "disable_reason": 1})

    response = await async_client.get(
        "/api/meta/adaccount/status", params={"campaign_id": campaign_id}, headers=HEADERS
    )

    body = response.json()
    assert body["is_active"] is False
    assert body["status"] == 2
    assert body["disable_reason"] == 1
    assert body["has_funding"] is False


# ---------------------------------------------------------------------------
# Launch & publish
# ---------------------------------------------------------------------------


def _route_launch(graph: FakeGraph):
    graph.on("POST", "act_1001/adimages", {"images": {"ad.png": {"hash": "h-1"}}})
    graph.on("POST", "act_1001/campaigns", {"id": "cmp_1"})
    graph.on("POST", "act_1001/adsets", {"id": "as_1"})
    graph.on("POST", "act_1001/adcreatives", {"id": "cr_1"})
    graph.on("POST", "act_1001/ads", {"id": "ad_1"})
    graph.on("POST", "ad_1", {"success": True})


@pytest.mark.asyncio
async def test_launch_publish_and_reset(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    _route_launch(api_graph)

    response = await async_client.post(
        "/api/meta/ads/launch",
        json={"campaign_id": campaign_id, "spec": LAUNCH_SPEC},
        headers=HEADERS,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["stage"] == "AdCreated"
    assert body["delivery"]["adId"] == "ad_1"
    assert body["delivery"]["campaignId"] == "cmp_1"

    response = await async_client.post(
        "/api/meta/ads/publish",
        json={"campaign_id": campaign_id, "target_type": "ad", "target_id": "ad_1"},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["stage"] == "Published"

    response = await async_client.get(f"/api/campaigns/{campaign_id}", headers=HEADERS)
    assert response.json()["status"] == "active"

    response = await async_client.post(
        "/api/meta/delivery/reset", json={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json() == {"delivery": {}, "stage": "NoCampaign"}


@pytest.mark.asyncio
async def test_launch_step_failure_is_502_and_resumable(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)
    await _select(async_client, api_graph, campaign_id)
    _route_launch(api_graph)
    api_graph.on("POST", "act_1001/adsets", RemoteAPIError("Budget too low", code=100))

    response = await async_client.post(
        "/api/meta/ads/launch",
        json={"campaign_id": campaign_id, "spec": LAUNCH_SPEC},
        headers=HEADERS,
    )
    assert response.status_code == 502
    assert response.json()["error"]["details"]["step"] == "ad_set"

    response = await async_client.get(
        "/api/meta/delivery", params={"campaign_id": campaign_id}, headers=HEADERS
    )
    assert response.json() == {
        "delivery": {"imageHash": "h-1", "campaignId": "cmp_1"},
        "stage": "CampaignCreated",
    }


@pytest.mark.asyncio
async def test_publish_unknown_target_is_409(async_client, api_graph, meta_credentials):
    campaign_id = await _create_campaign(async_client)
    await _connect(async_client, api_graph, campaign_id)

    response = await async_client.post(
        "/api/meta/ads/publish",
        json={"campaign_id": campaign_id, "target_type": "ad", "target_id": "ad_999"},
        headers=HEADERS,
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_launch_spec_is_validated(async_client):
    campaign_id = await _create_campaign(async_client)

    response = await async_client.post(
        "/api/meta/ads/launch",
        json={"campaign_id": campaign_id, "spec": {**LAUNCH_SPEC, "lead_form_id": None}},
        headers=HEADERS,
    )

    assert response.status_code == 422
