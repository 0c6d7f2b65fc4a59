"""Apply, status and contract orchestration around the lender providers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api import deps
from app.core.context import set_lender_id
from app.core.settings import settings
from app.models.finance_application import FinanceApplication
from app.models.proposal import Proposal
from app.models.user import User
from app.schemas.finance import (
    ACTIVE_APPLICATION_STATUSES,
    FinanceApplicationData,
    FinanceApplicationStatus,
    FinanceApplyRequest,
    HVACSystemDesign,
    PaymentSchedule,
    PricingProduct,
    QuoteCreateRequest,
    QuoteRecord,
    SigningLink,
    StipulationRecord,
)
from app.services import audit, proposals
from app.services.finance import factory
from app.services.finance.errors import (
    DuplicateApplicationError,
    FinanceError,
    FinanceNotFoundError,
    FinanceValidationError,
    log_finance_error,
)
from app.services.finance.lightreach import LENDER_ID as LIGHTREACH
from app.services.finance.pricing import build_payment_schedule, estimate_products
from app.services.finance.provider import FinanceProvider
from app.services.finance.response_data import merge_response_data
from app.services.finance.test_mode import build_mock_quote, mock_signing_link

logger = logging.getLogger(__name__)

STALE_STATUS_WARNING = "Unable to reach the lender; showing the last known status"
SCHEDULE_STATUSES = ("approved", "conditional")
# Proposal customer keys that differ from applicant attribute names.
_CUSTOMER_FIELDS = {"firstName": "first_name", "lastName": "last_name"}


@dataclass
class StatusResult:
    application: FinanceApplication
    cached: bool
    cache_age: int | None = None
    warning: str | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _age_seconds(application: FinanceApplication, now: datetime) -> int | None:
    updated = _as_aware(application.updated_at or application.created_at)
    if updated is None:
        return None
    return max(int((now - updated).total_seconds()), 0)


def _is_offline(application: FinanceApplication) -> bool:
    """Test-mode accounts and applications the lender never acknowledged."""
    external_id = application.external_application_id
    return not external_id or FinanceProvider.is_test_id(external_id)


def _provider_for(application: FinanceApplication, provider: FinanceProvider | None) -> FinanceProvider:
    set_lender_id(application.lender_id)
    return provider or factory.create_provider(application.lender_id)


async def get_application(db: AsyncSession, application_id) -> FinanceApplication | None:
    stmt = (
        select(FinanceApplication)
        .options(selectinload(FinanceApplication.proposal))
        .where(FinanceApplication.id == application_id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_application_by_account(
    db: AsyncSession, account_id: str, lender_id: str = LIGHTREACH
) -> FinanceApplication | None:
    stmt = (
        select(FinanceApplication)
        .options(selectinload(FinanceApplication.proposal))
        .where(
            FinanceApplication.lender_id == lender_id,
            FinanceApplication.external_application_id == account_id,
        )
        .order_by(FinanceApplication.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_for_proposal(db: AsyncSession, proposal_id) -> list[FinanceApplication]:
    stmt = (
        select(FinanceApplication)
        .where(FinanceApplication.proposal_id == proposal_id)
        .order_by(FinanceApplication.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_active_application(
    db: AsyncSession,
    proposal_id,
    lender_id: str,
    *,
    now: datetime | None = None,
) -> FinanceApplication | None:
    """Most recent PENDING/SUBMITTED application inside the duplicate window."""
    now = now or _utcnow()
    cutoff = now - timedelta(days=settings.finance_duplicate_window_days)
    stmt = (
        select(FinanceApplication)
        .where(
            FinanceApplication.proposal_id == proposal_id,
            FinanceApplication.lender_id == lender_id,
            FinanceApplication.status.in_([status.value for status in ACTIVE_APPLICATION_STATUSES]),
        )
        .order_by(FinanceApplication.created_at.desc())
    )
    result = await db.execute(stmt)
    for application in result.scalars().all():
        created = _as_aware(application.created_at)
        if created is None or created > cutoff:
            return application
    return None


def _resolve_system_design(request: FinanceApplyRequest, proposal: Proposal) -> HVACSystemDesign | None:
    if request.application_data.system_design is not None:
        return request.application_data.system_design
    derived = proposals.build_system_design(proposal)
    if derived is not None:
        return HVACSystemDesign.model_validate(derived)
    if not proposals.is_comfort_plan_selected(proposal):
        return None
    raise FinanceValidationError(
        "HVAC system design is required: add equipment and conditioned square footage to the proposal",
        "systemDesign",
        code="SYSTEM_DESIGN_REQUIRED",
    )


def _prefill_from_proposal(data: FinanceApplicationData, proposal: Proposal) -> dict[str, Any]:
    """Applicant fields left blank in the request, taken from the proposal's customer block."""
    customer = proposals.extract_customer_data(proposal)
    update: dict[str, Any] = {}
    for key, value in customer.items():
        attr = _CUSTOMER_FIELDS.get(key, key)
        if value and not getattr(data, attr):
            update[attr] = value
    if data.system_price is None:
        price = proposals.get_system_price(proposal)
        if price > 0:
            update["system_price"] = price
    return update


async def submit_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    user: User,
    proposal: Proposal,
    request: FinanceApplyRequest,
    *,
    lender_id: str = LIGHTREACH,
    provider: FinanceProvider | None = None,
) -> FinanceApplication:
    """Submit a credit application for ``proposal`` and persist the outcome.

    Raises DuplicateApplicationError while a PENDING/SUBMITTED application
    for the same proposal and lender is younger than the duplicate window.
    Lender and validation failures propagate as FinanceError subclasses.
    """
    existing = await find_active_application(db, proposal.id, lender_id)
    if existing is not None:
        raise DuplicateApplicationError(str(existing.id))

    data = request.application_data.model_copy(
        update={
            **_prefill_from_proposal(request.application_data, proposal),
            "system_design": _resolve_system_design(request, proposal),
            "external_reference": request.application_data.external_reference or str(proposal.id),
        }
    )
    set_lender_id(lender_id)
    provider = provider or factory.create_provider(lender_id)
    response = await provider.create_application(data)

    now = _utcnow()
    update: dict[str, Any] = response.model_dump(mode="json", exclude_none=True)
    update.pop("application_id", None)
    update["last_synced_at"] = now
    application = FinanceApplication(
        proposal_id=proposal.id,
        lender_id=lender_id,
        status=FinanceApplicationStatus.from_lender(response.status).value,
        external_application_id=response.application_id,
        application_data=data.model_dump(mode="json", by_alias=True, exclude_none=True),
        response_data=merge_response_data({}, update),
        created_at=now,
        updated_at=now,
    )
    db.add(application)
    await db.flush()
    audit.record_audit_log(
        db,
        ctx,
        actor_id=user.id,
        action="finance_application.submitted",
        resource_type="finance_application",
        resource_id=str(application.id),
        new_value={
            "proposal_id": str(proposal.id),
            "lender_id": lender_id,
            "status": application.status,
            "external_application_id": application.external_application_id,
        },
    )
    await db.commit()
    await db.refresh(application)
    logger.info(
        "Finance application submitted proposal=%s lender=%s status=%s",
        proposal.id,
        lender_id,
        application.status,
    )
    return application


async def _fetch_schedule(
    provider: FinanceProvider, application: FinanceApplication
) -> PaymentSchedule | None:
    system_design = (application.application_data or {}).get("systemDesign")
    try:
        return await provider.get_payment_schedule(
            application.external_application_id, system_design=system_design
        )
    except FinanceError as exc:
        log_finance_error(exc, "payment-schedule")
        return None


async def refresh_status(
    db: AsyncSession,
    application: FinanceApplication,
    *,
    force: bool = False,
    provider: FinanceProvider | None = None,
    now: datetime | None = None,
) -> StatusResult:
    """Return the application status, asking the lender only when the cache is stale.

    A lender outage falls back to the stored record with a warning. A lender
    404 is not an outage and propagates.
    """
    now = now or _utcnow()
    age = _age_seconds(application, now)
    if not force and age is not None and age < settings.finance_status_cache_seconds:
        return StatusResult(application, cached=True, cache_age=age)

    if _is_offline(application):
        if application.response_data:
            return StatusResult(application, cached=True, cache_age=age)
        raise FinanceValidationError(
            "Application has no lender account to query",
            "externalApplicationId",
            code="NO_EXTERNAL_APPLICATION",
        )

    provider = _provider_for(application, provider)
    try:
        response = await provider.get_application_status(application.external_application_id)
    except FinanceNotFoundError:
        raise
    except FinanceError as exc:
        log_finance_error(exc, "status-refresh")
        if application.response_data:
            return StatusResult(application, cached=True, cache_age=age, warning=STALE_STATUS_WARNING)
        raise

    update: dict[str, Any] = response.model_dump(mode="json", exclude_none=True)
    update.pop("application_id", None)
    update["last_synced_at"] = now
    if response.status in SCHEDULE_STATUSES:
        schedule = await _fetch_schedule(provider, application)
        if schedule is not None:
            update["payment_schedule"] = schedule

    previous = application.status
    application.status = FinanceApplicationStatus.from_lender(response.status).value
    application.response_data = merge_response_data(application.response_data, update)
    application.updated_at = now
    db.add(application)
    await db.commit()
    await db.refresh(application)
    if previous != application.status:
        logger.info(
            "Finance application %s status %s -> %s", application.id, previous, application.status
        )
    return StatusResult(application, cached=False, cache_age=0)


async def get_payment_schedule(
    db: AsyncSession,
    application: FinanceApplication,
    *,
    refresh: bool = False,
    provider: FinanceProvider | None = None,
) -> tuple[PaymentSchedule | None, bool]:
    """Stored schedule unless ``refresh``; returns ``(schedule, cached)``."""
    stored = (application.response_data or {}).get("payment_schedule")
    if stored and not refresh:
        return PaymentSchedule.model_validate(stored), True

    if _is_offline(application):
        total_cost = (application.response_data or {}).get("total_cost") or (
            application.application_data or {}
        ).get("systemPrice")
        if not total_cost:
            return None, False
        schedule = build_payment_schedule(float(total_cost))
    else:
        schedule = await _provider_for(application, provider).get_payment_schedule(
            application.external_application_id,
            system_design=(application.application_data or {}).get("systemDesign"),
        )
        if schedule is None:
            return None, False

    application.response_data = merge_response_data(
        application.response_data, {"payment_schedule": schedule}
    )
    db.add(application)
    await db.commit()
    return schedule, False


async def get_stipulations(
    db: AsyncSession,
    application: FinanceApplication,
    *,
    provider: FinanceProvider | None = None,
) -> list[StipulationRecord]:
    if _is_offline(application):
        stored = (application.response_data or {}).get("stipulations") or []
        return [StipulationRecord.model_validate(item) for item in stored]

    stipulations = await _provider_for(application, provider).get_stipulations(
        application.external_application_id
    )
    if stipulations:
        application.response_data = merge_response_data(
            application.response_data, {"stipulations": stipulations}
        )
        db.add(application)
        await db.commit()
    return stipulations


async def get_signing_link(
    application: FinanceApplication,
    *,
    provider: FinanceProvider | None = None,
) -> SigningLink:
    if _is_offline(application):
        return mock_signing_link(application.external_application_id or str(application.id))
    return await _provider_for(application, provider).get_signing_link(application.external_application_id)


def _stored_quotes(application: FinanceApplication) -> list[QuoteRecord]:
    stored = (application.response_data or {}).get("quotes") or []
    return [QuoteRecord.model_validate(item) for item in stored]


async def list_quotes(
    application: FinanceApplication,
    *,
    provider: FinanceProvider | None = None,
) -> list[QuoteRecord]:
    if _is_offline(application):
        return _stored_quotes(application)
    return await _provider_for(application, provider).get_quotes(application.external_application_id)


async def create_quote(
    db: AsyncSession,
    ctx: deps.TenantContext,
    user: User,
    application: FinanceApplication,
    payload: QuoteCreateRequest,
    *,
    provider: FinanceProvider | None = None,
) -> QuoteRecord:
    account_id = application.external_application_id
    if _is_offline(application):
        quote = build_mock_quote(
            account_id or str(application.id),
            payload.product_id,
            payload.total_financed_amount,
            sequence=len(_stored_quotes(application)) + 1,
        )
    else:
        quote = await _provider_for(application, provider).create_quote(
            account_id,
            product_id=payload.product_id,
            total_financed_amount=payload.total_financed_amount,
            external_reference=payload.external_reference or str(application.proposal_id),
        )
    if quote.created_at is None:
        quote.created_at = _utcnow()

    application.response_data = merge_response_data(
        application.response_data, {"quotes": [quote], "quote_id": quote.id}
    )
    db.add(application)
    audit.record_audit_log(
        db,
        ctx,
        actor_id=user.id,
        action="finance_quote.created",
        resource_type="finance_application",
        resource_id=str(application.id),
        new_value={"quote_id": quote.id, "product_id": quote.product_id},
    )
    await db.commit()
    return quote


async def void_quote(
    db: AsyncSession,
    ctx: deps.TenantContext,
    user: User,
    application: FinanceApplication,
    quote_id: str,
    *,
    provider: FinanceProvider | None = None,
) -> QuoteRecord:
    stored = {quote.id: quote for quote in _stored_quotes(application)}
    if _is_offline(application):
        if quote_id not in stored:
            raise FinanceNotFoundError(
                "Quote not found", application.lender_id, details={"quote_id": quote_id}
            )
    else:
        await _provider_for(application, provider).void_quote(application.external_application_id, quote_id)

    voided = QuoteRecord(id=quote_id, status="voided", voided_at=_utcnow())
    application.response_data = merge_response_data(application.response_data, {"quotes": [voided]})
    db.add(application)
    audit.record_audit_log(
        db,
        ctx,
        actor_id=user.id,
        action="finance_quote.voided",
        resource_type="finance_application",
        resource_id=str(application.id),
        new_value={"quote_id": quote_id},
    )
    await db.commit()
    merged = next(
        (item for item in application.response_data.get("quotes", []) if item.get("id") == quote_id),
        None,
    )
    return QuoteRecord.model_validate(merged) if merged else voided


async def get_estimated_pricing(
    amount: float,
    *,
    state: str | None = None,
    system_design: dict | None = None,
    lender_id: str = LIGHTREACH,
    provider: FinanceProvider | None = None,
) -> list[PricingProduct]:
    set_lender_id(lender_id)
    provider = provider or factory.create_provider(lender_id)
    try:
        return await provider.get_estimated_pricing(amount, state=state, system_design=system_design)
    except FinanceError as exc:
        # The estimator is advisory; fall back to the published comfort-plan factors.
        log_finance_error(exc, "estimated-pricing")
        return estimate_products(amount)
