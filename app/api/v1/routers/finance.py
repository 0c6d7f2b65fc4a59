from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.finance_application import FinanceApplication
from app.models.user import User
from app.schemas.finance import (
    EstimatedPricingRequest,
    EstimatedPricingResponse,
    FinanceApplicationDTO,
    FinanceApplyRequest,
    FinanceStatusResponse,
    LenderInfo,
    PaymentScheduleResponse,
    QuoteCreateRequest,
    QuoteListResponse,
    QuoteRecord,
    QuoteVoidResponse,
    SigningLinkResponse,
    StipulationsResponse,
)
from app.services import authz, finance_applications, proposals
from app.services.finance import factory

router = APIRouter(prefix="/finance/lightreach", tags=["finance"])
lenders_router = APIRouter(prefix="/finance", tags=["finance"])


def _ensure_access(user: User, ctx: deps.TenantContext, application: FinanceApplication | None) -> FinanceApplication:
    if application is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Finance application not found")
    if application.proposal is None or not authz.can_access_proposal(user, ctx, application.proposal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this application")
    return application


async def _application_for_user(
    db: AsyncSession, ctx: deps.TenantContext, user: User, application_id: UUID
) -> FinanceApplication:
    application = await finance_applications.get_application(db, application_id)
    return _ensure_access(user, ctx, application)


async def _application_for_account(
    db: AsyncSession, ctx: deps.TenantContext, user: User, account_id: str
) -> FinanceApplication:
    application = await finance_applications.get_application_by_account(db, account_id)
    return _ensure_access(user, ctx, application)


@router.post(
    "/apply",
    response_model=FinanceApplicationDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a LightReach comfort-plan credit application",
)
async def apply(
    payload: FinanceApplyRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> FinanceApplicationDTO:
    proposal = await proposals.get_proposal(db, payload.proposal_id)
    if proposal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    if not authz.can_access_proposal(current_user, ctx, proposal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to finance this proposal")
    application = await finance_applications.submit_application(db, ctx, current_user, proposal, payload)
    return FinanceApplicationDTO.model_validate(application)


@router.get(
    "/status/{application_id}",
    response_model=FinanceStatusResponse,
    summary="Application status, served from cache when fresh",
)
async def get_status(
    application_id: UUID,
    refresh: bool = Query(default=False),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> FinanceStatusResponse:
    application = await _application_for_user(db, ctx, current_user, application_id)
    result = await finance_applications.refresh_status(db, application, force=refresh)
    base = FinanceApplicationDTO.model_validate(result.application)
    return FinanceStatusResponse(
        **base.model_dump(),
        cached=result.cached,
        cache_age=result.cache_age,
        warning=result.warning,
    )


@router.get(
    "/payment-schedule/{application_id}",
    response_model=PaymentScheduleResponse,
    summary="Representative payment schedule for an approved application",
)
async def get_payment_schedule(
    application_id: UUID,
    refresh: bool = Query(default=False),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentScheduleResponse:
    application = await _application_for_user(db, ctx, current_user, application_id)
    schedule, cached = await finance_applications.get_payment_schedule(db, application, refresh=refresh)
    return PaymentScheduleResponse(application_id=application.id, schedule=schedule, cached=cached)


@router.get(
    "/stipulations/{application_id}",
    response_model=StipulationsResponse,
    summary="Outstanding lender stipulations",
)
async def get_stipulations(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> StipulationsResponse:
    application = await _application_for_user(db, ctx, current_user, application_id)
    stipulations = await finance_applications.get_stipulations(db, application)
    return StipulationsResponse(application_id=application.id, stipulations=stipulations)


@router.post(
    "/signing-link/{application_id}",
    response_model=SigningLinkResponse,
    summary="Contract signing link for the customer",
)
async def create_signing_link(
    application_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> SigningLinkResponse:
    application = await _application_for_user(db, ctx, current_user, application_id)
    link = await finance_applications.get_signing_link(application)
    return SigningLinkResponse(application_id=application.id, signing_link=link)


@router.get("/quote/{account_id}", response_model=QuoteListResponse, summary="List quotes for a lender account")
async def list_quotes(
    account_id: str,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> QuoteListResponse:
    application = await _application_for_account(db, ctx, current_user, account_id)
    quotes = await finance_applications.list_quotes(application)
    return QuoteListResponse(account_id=account_id, quotes=quotes)


@router.post(
    "/quote/{account_id}",
    response_model=QuoteRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Create a quote for a lender account",
)
async def create_quote(
    account_id: str,
    payload: QuoteCreateRequest,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> QuoteRecord:
    application = await _application_for_account(db, ctx, current_user, account_id)
    return await finance_applications.create_quote(db, ctx, current_user, application, payload)


@router.delete("/quote/{account_id}", response_model=QuoteVoidResponse, summary="Void a quote")
async def void_quote(
    account_id: str,
    quote_id: str = Query(..., alias="quoteId", min_length=1),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> QuoteVoidResponse:
    application = await _application_for_account(db, ctx, current_user, account_id)
    quote = await finance_applications.void_quote(db, ctx, current_user, application, quote_id)
    return QuoteVoidResponse(account_id=account_id, quote=quote)


@router.post(
    "/estimated-pricing",
    response_model=EstimatedPricingResponse,
    summary="Estimated comfort-plan products before an account exists",
)
async def estimated_pricing(
    payload: EstimatedPricingRequest,
    current_user: User = Depends(deps.require_authenticated_user),
) -> EstimatedPricingResponse:
    system_design = (
        payload.system_design.model_dump(mode="json", by_alias=True, exclude_none=True)
        if payload.system_design
        else None
    )
    products = await finance_applications.get_estimated_pricing(
        payload.system_price, state=payload.state, system_design=system_design
    )
    return EstimatedPricingResponse(products=products)


@lenders_router.get("/lenders", response_model=list[LenderInfo], summary="Supported lenders")
async def list_lenders(
    current_user: User = Depends(deps.require_authenticated_user),
) -> list[LenderInfo]:
    return factory.get_available_lenders()
