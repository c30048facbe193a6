import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Form
from sqlalchemy.ext.asyncio import AsyncSession

from publisher.async_db import get_async_db
from publisher.deps import (
    get_adapter_factory,
    get_current_user_id,
    get_owned_campaign,
    owned_campaign_from_query,
)
from publisher.models import Campaign
from publisher.platforms.exceptions import CompatibilityError
from publisher.schemas import (
    AdAccountOut,
    AdminVerifyOut,
    AdminVerifyRequest,
    BusinessOut,
    CampaignRequest,
    ConnectOut,
    DeliveryOut,
    ExchangeRequest,
    LaunchRequest,
    LeadFormCreated,
    LeadFormCreateRequest,
    LeadFormOut,
    LeadOut,
    OkOut,
    PageOut,
    PaymentMarkRequest,
    PaymentStatusOut,
    PublishRequest,
    SelectionOut,
    SelectionRequest,
    ValidateRequest,
)
from publisher.services.admin_access import AdminAccessVerifier
from publisher.services.assets import (
    AssetCatalog,
    LeadFormInput,
    LeadFormService,
    SelectionInput,
    SelectionService,
)
from publisher.services.compatibility import CompatibilityValidator, ValidationResult
from publisher.services.connections import ConnectionStore, selection_summary
from publisher.services.deauthorize import parse_signed_request
from publisher.services.delivery import DeliveryStateStore
from publisher.services.orchestrator import LaunchResult, PublishResult, ResourceOrchestrator
from publisher.services.payment import (
    AccountStatusReport,
    PaymentEligibility,
    PaymentEligibilityChecker,
    PaymentFlagService,
)
from publisher.services.tokens import AdapterFactory, TokenLifecycleManager, require_token
from publisher.settings import settings

logger = logging.getLogger(__name__)

meta_router = APIRouter(prefix="/api/meta", tags=["meta"])


async def _owned(payload: CampaignRequest, user_id: str, db: AsyncSession) -> Campaign:
    return await get_owned_campaign(payload.campaign_id, user_id, db)


async def _token_for(db: AsyncSession, campaign: Campaign) -> str:
    return require_token(await ConnectionStore(db).get(campaign.id))


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


@meta_router.post("/auth/exchange", response_model=ConnectOut)
async def exchange_token(
    payload: ExchangeRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Swap the short-lived login token for a stored long-lived one and list assets."""
    campaign = await _owned(payload, user_id, db)
    manager = TokenLifecycleManager(db, adapter_factory=adapter_factory)
    connection = await manager.connect(
        campaign.id, user_id=user_id, short_lived_token=payload.access_token
    )

    catalog = AssetCatalog(adapter_factory(connection.long_lived_user_token))
    return ConnectOut(
        connected=True,
        fb_user_id=connection.fb_user_id,
        token_expires_at=connection.token_expires_at,
        pages=[PageOut.model_validate(page) for page in await catalog.pages()],
        ad_accounts=[AdAccountOut.model_validate(acct) for acct in await catalog.ad_accounts()],
    )


@meta_router.post("/disconnect", response_model=OkOut)
async def disconnect(
    payload: CampaignRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    campaign = await _owned(payload, user_id, db)
    await TokenLifecycleManager(db, adapter_factory=adapter_factory).disconnect(campaign.id)
    return OkOut()


@meta_router.get("/deauthorize", response_model=OkOut)
async def deauthorize_ping():
    return OkOut()


@meta_router.post("/deauthorize")
async def deauthorize(
    signed_request: str = Form(...),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Meta calls this when a user removes the app; forget their tokens."""
    payload = parse_signed_request(signed_request, settings.META_APP_SECRET)
    fb_user_id = str(payload["user_id"])
    manager = TokenLifecycleManager(db, adapter_factory=adapter_factory)
    campaign_ids = await manager.disconnect_platform_user(fb_user_id)
    logger.info("Deauthorized fb_user=%s; disconnected %d campaign(s)", fb_user_id, len(campaign_ids))
    return {"ok": True, "disconnected": len(campaign_ids)}


# ---------------------------------------------------------------------------
# Selection & pickers
# ---------------------------------------------------------------------------


@meta_router.get("/selection", response_model=SelectionOut)
async def get_selection(
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
):
    return selection_summary(await ConnectionStore(db).get(campaign.id))


@meta_router.post("/selection", response_model=SelectionOut)
async def save_selection(
    payload: SelectionRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    campaign = await _owned(payload, user_id, db)
    service = SelectionService(db, adapter_factory=adapter_factory)
    connection = await service.update(
        campaign.id,
        SelectionInput(
            business_id=payload.business_id,
            page_id=payload.page_id,
            ad_account_id=payload.ad_account_id,
        ),
    )
    return selection_summary(connection)


@meta_router.get("/businesses", response_model=list[BusinessOut])
async def list_businesses(
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    return await AssetCatalog(adapter_factory(await _token_for(db, campaign))).businesses()


@meta_router.get("/pages", response_model=list[PageOut])
async def list_pages(
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    return await AssetCatalog(adapter_factory(await _token_for(db, campaign))).pages()


@meta_router.get("/adaccounts", response_model=list[AdAccountOut])
async def list_ad_accounts(
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    return await AssetCatalog(adapter_factory(await _token_for(db, campaign))).ad_accounts()


@meta_router.get("/businesses/{business_id}/adaccounts", response_model=list[AdAccountOut])
async def list_business_ad_accounts(
    business_id: str,
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    catalog = AssetCatalog(adapter_factory(await _token_for(db, campaign)))
    return await catalog.business_ad_accounts(business_id)


# ---------------------------------------------------------------------------
# Lead forms
# ---------------------------------------------------------------------------


@meta_router.get("/forms", response_model=list[LeadFormOut])
async def list_lead_forms(
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    connection = await ConnectionStore(db).get(campaign.id)
    return await LeadFormService(connection, adapter_factory=adapter_factory).list_forms()


@meta_router.get("/forms/{form_id}/leads", response_model=list[LeadOut])
async def list_leads(
    form_id: str,
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Most recent leads submitted through ``form_id``; read with the page token."""
    connection = await ConnectionStore(db).get(campaign.id)
    return await LeadFormService(connection, adapter_factory=adapter_factory).list_leads(form_id)


@meta_router.post("/forms", response_model=LeadFormCreated)
async def create_lead_form(
    payload: LeadFormCreateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    campaign = await _owned(payload, user_id, db)
    connection = await ConnectionStore(db).get(campaign.id)
    form = LeadFormInput(
        name=payload.name,
        privacy_policy_url=payload.privacy_policy_url,
        privacy_policy_link_text=payload.privacy_policy_link_text,
        thank_you_page=payload.thank_you_page,
    )
    if payload.questions:
        form.questions = payload.questions
    form_id = await LeadFormService(connection, adapter_factory=adapter_factory).create_form(form)
    return LeadFormCreated(id=form_id)


# ---------------------------------------------------------------------------
# Preflight checks
# ---------------------------------------------------------------------------


@meta_router.post("/adaccount/validate", response_model=ValidationResult)
async def validate_ad_account(
    payload: ValidateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Check the Business / Page / Ad Account combination (defaults to the saved selection)."""
    campaign = await _owned(payload, user_id, db)
    connection = await ConnectionStore(db).get(campaign.id)
    token = require_token(connection)

    page_id = payload.page_id or connection.selected_page_id
    ad_account_id = payload.ad_account_id or connection.selected_ad_account_id
    if not page_id or not ad_account_id:
        return ValidationResult(ok=False, reason="Select a page and an ad account first")

    validator = CompatibilityValidator(adapter_factory(token))
    return await validator.validate(
        business_id=payload.business_id or connection.selected_business_id,
        page_id=page_id,
        ad_account_id=ad_account_id,
    )


@meta_router.get("/adaccount/status", response_model=AccountStatusReport)
async def ad_account_status(
    ad_account_id: str | None = None,
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    connection = await ConnectionStore(db).get(campaign.id)
    token = require_token(connection)
    account_id = ad_account_id or connection.selected_ad_account_id
    if not account_id:
        return AccountStatusReport(is_active=False, error="No ad account selected")
    return await PaymentEligibilityChecker(adapter_factory(token)).account_status(account_id)


@meta_router.post("/admin/verify", response_model=AdminVerifyOut)
async def verify_admin(
    payload: AdminVerifyRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    campaign = await _owned(payload, user_id, db)
    connection = await ConnectionStore(db).get(campaign.id)
    token = require_token(connection)

    business_id = payload.business_id or connection.selected_business_id
    ad_account_id = payload.ad_account_id or connection.selected_ad_account_id
    if not business_id or not ad_account_id:
        raise CompatibilityError("Select a business and an ad account before verifying access")

    access = await AdminAccessVerifier(adapter_factory(token)).verify(
        token,
        fb_user_id=connection.fb_user_id,
        business_id=business_id,
        ad_account_id=ad_account_id,
    )
    return AdminVerifyOut(
        admin_connected=access.admin_connected,
        business_role=access.business_role,
        ad_account_role=access.ad_account_role,
        errors=access.errors,
        checked_at=datetime.now(timezone.utc),
    )


@meta_router.get("/payment/eligibility", response_model=PaymentEligibility)
async def payment_eligibility(
    ad_account_id: str | None = None,
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    connection = await ConnectionStore(db).get(campaign.id)
    token = require_token(connection)
    account_id = ad_account_id or connection.selected_ad_account_id
    if not account_id:
        return PaymentEligibility(eligible=False, reason="No ad account selected")
    return await PaymentEligibilityChecker(adapter_factory(token)).check_eligibility(account_id)


@meta_router.get("/payment/status", response_model=PaymentStatusOut)
async def payment_status(
    ad_account_id: str | None = None,
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Look for a funding source on the account; a funded account marks payment connected."""
    service = PaymentFlagService(db, adapter_factory=adapter_factory)
    return PaymentStatusOut(connected=await service.sync_funding(campaign.id, ad_account_id))


@meta_router.post("/payment/mark", response_model=OkOut)
async def mark_payment(
    payload: PaymentMarkRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    campaign = await _owned(payload, user_id, db)
    await PaymentFlagService(db, adapter_factory=adapter_factory).mark(
        campaign.id, ad_account_id=payload.ad_account_id, connected=payload.connected
    )
    return OkOut()


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


@meta_router.post("/ads/launch", response_model=LaunchResult)
async def launch(
    payload: LaunchRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Create (or resume creating) the paused Campaign → AdSet → Creative → Ad chain."""
    campaign = await _owned(payload, user_id, db)
    orchestrator = ResourceOrchestrator(db, adapter_factory=adapter_factory)
    return await orchestrator.launch(campaign.id, payload.spec)


@meta_router.post("/ads/publish", response_model=PublishResult)
async def publish(
    payload: PublishRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    campaign = await _owned(payload, user_id, db)
    orchestrator = ResourceOrchestrator(db, adapter_factory=adapter_factory)
    return await orchestrator.publish(campaign.id, payload.target_type, payload.target_id)


@meta_router.get("/delivery", response_model=DeliveryOut)
async def get_delivery(
    campaign: Campaign = Depends(owned_campaign_from_query),
    db: AsyncSession = Depends(get_async_db),
):
    return DeliveryOut.from_state(await DeliveryStateStore(db).get(campaign.id))


@meta_router.post("/delivery/reset", response_model=DeliveryOut)
async def reset_delivery(
    payload: CampaignRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_async_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Forget the created object ids so the next launch starts from scratch."""
    campaign = await _owned(payload, user_id, db)
    await ResourceOrchestrator(db, adapter_factory=adapter_factory).reset(campaign.id)
    return DeliveryOut.from_state(await DeliveryStateStore(db).get(campaign.id))
