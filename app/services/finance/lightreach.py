"""LightReach (Palmetto Finance) comfort-plan lender client."""

from __future__ import annotations

import logging
import re
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from app.core.context import set_lender_id
from app.core.settings import Settings
from app.schemas.finance import (
    FinanceApplicationData,
    FinanceApplicationResponse,
    LenderStatus,
    PaymentSchedule,
    PaymentScheduleYear,
    PricingProduct,
    QuoteRecord,
    SigningLink,
    StipulationRecord,
)
from app.schemas.lightreach import (
    LightReachAccountResponse,
    LightReachPricingProduct,
    LightReachQuote,
    LightReachSigningLink,
    LightReachStipulation,
)
from app.services.finance.errors import (
    FinanceAPIError,
    FinanceError,
    FinanceNotFoundError,
    FinanceValidationError,
    log_finance_error,
    redact_sensitive_data,
)
from app.services.finance.http_retry import request_with_retry
from app.services.finance.provider import FinanceProvider
from app.services.finance.token_manager import TokenManager

logger = logging.getLogger(__name__)

LENDER_ID = "lightreach"
ModelT = TypeVar("ModelT", bound=BaseModel)

# Lender status text (lowercased) to the closed local vocabulary.
LIGHTREACH_STATUS_MAP: dict[str, LenderStatus] = {
    "pending": "pending",
    "submitted": "submitted",
    "approved": "approved",
    "denied": "denied",
    "declined": "denied",
    "conditional": "conditional",
    "approvedwithstipulations": "conditional",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "expired": "cancelled",
    "creditfrozen": "pending",
    "credit_approved": "approved",
    "credit_denied": "denied",
    "contract_pending": "conditional",
    "funded": "approved",
    "1 - created": "submitted",
    "2 - credit application submitted": "submitted",
    "3 - credit approved": "approved",
    "3 - credit approved with stipulations": "conditional",
    "3 - credit declined": "denied",
    "3 - credit frozen": "pending",
    "4 - contract created": "conditional",
    "5 - contract sent": "conditional",
    "6 - contract countersigned": "approved",
    "7 - contract signed": "approved",
    "8 - contract approved": "approved",
    "10 - cancelled": "cancelled",
    "11 - expired": "cancelled",
}

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_STATE_PATTERN = re.compile(r"^[A-Za-z]{2}$")
_ZIP_PATTERN = re.compile(r"^\d{5}(-?\d{4})?$")


def map_lender_status(raw_status: str | None) -> LenderStatus:
    """Unrecognized lender statuses fall back to ``pending``."""
    if not raw_status:
        return "pending"
    mapped = LIGHTREACH_STATUS_MAP.get(str(raw_status).strip().lower())
    if mapped is None:
        logger.warning("Unmapped lender status %r; treating as pending", raw_status)
        return "pending"
    return mapped


def _digits(value: str | None) -> str:
    return re.sub(r"\D", "", value or "")


def validate_application_data(data: FinanceApplicationData) -> None:
    for attr, field in (
        ("first_name", "firstName"),
        ("last_name", "lastName"),
        ("address", "address"),
        ("city", "city"),
    ):
        if not (getattr(data, attr) or "").strip():
            raise FinanceValidationError(f"{field} is required", field)
    if not data.email or not _EMAIL_PATTERN.match(data.email.strip()):
        raise FinanceValidationError("A valid email address is required", "email")
    if len(_digits(data.phone)) < 10:
        raise FinanceValidationError("Phone number must contain at least 10 digits", "phone")
    if not data.state or not _STATE_PATTERN.match(data.state.strip()):
        raise FinanceValidationError("State must be a 2-letter code", "state")
    if not data.zip or not _ZIP_PATTERN.match(data.zip.strip()):
        raise FinanceValidationError("ZIP code must be 5 or 9 digits", "zip")
    if data.system_price is None or data.system_price <= 0:
        raise FinanceValidationError("System price must be greater than zero", "systemPrice")


def build_account_payload(data: FinanceApplicationData) -> dict[str, Any]:
    applicant: dict[str, Any] = {
        "firstName": data.first_name.strip(),
        "lastName": data.last_name.strip(),
        "email": data.email.strip().lower(),
        "phoneNumber": _digits(data.phone),
    }
    if data.ssn:
        applicant["ssn"] = _digits(data.ssn)
    if data.date_of_birth:
        applicant["dateOfBirth"] = data.date_of_birth
    if data.annual_income is not None:
        applicant["annualIncome"] = data.annual_income

    payload: dict[str, Any] = {
        "programType": "hvac",
        "friendlyName": f"{applicant['firstName']} {applicant['lastName']}",
        "totalSystemCost": data.system_price,
        "applicant": applicant,
        "address": {
            "address1": data.address.strip(),
            "address2": (data.address2 or "").strip() or None,
            "city": data.city.strip(),
            "state": data.state.strip().upper(),
            "zip": data.zip.strip(),
        },
    }
    sales_rep = {
        "salesRepName": data.sales_rep_name,
        "salesRepEmail": data.sales_rep_email,
        "salesRepPhoneNumber": _digits(data.sales_rep_phone_number) or None,
    }
    payload.update({key: value for key, value in sales_rep.items() if value})
    if data.system_design is not None:
        payload["systemDesign"] = data.system_design.model_dump(by_alias=True, exclude_none=True)
    if data.external_reference:
        payload["externalReference"] = data.external_reference
    if data.external_reference_ids:
        payload["externalReferenceIds"] = [ref.model_dump() for ref in data.external_reference_ids]
    elif data.external_reference:
        payload["externalReferenceIds"] = [{"type": "proposal", "id": data.external_reference}]
    return payload


def _pricing_product(product: LightReachPricingProduct) -> PricingProduct:
    return PricingProduct(
        product_id=product.product_id,
        term_years=product.term,
        escalation_rate=product.escalation_rate,
        total_amount_paid=product.total_amount_paid,
        years=[
            PaymentScheduleYear(year=row.year, monthly_payment=row.monthly_payment, yearly_cost=row.yearly_cost)
            for row in product.monthly_payments
        ],
    )


def _quote_record(quote: LightReachQuote) -> QuoteRecord:
    return QuoteRecord(
        id=quote.id,
        status=(quote.status or "active").lower(),
        product_id=quote.product_id,
        total_financed_amount=quote.total_financed_amount,
        monthly_payment=quote.monthly_payment,
        term_years=quote.term,
        escalation_rate=quote.escalation_rate,
        created_at=quote.created_at,
    )


class LightReachClient(FinanceProvider):
    """HTTP client for the Palmetto Finance API.

    Owns its ``httpx.AsyncClient`` and bearer token cache, so separate
    instances never share state.
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth_url: str,
        username: str | None,
        password: str | None,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(headers={"Accept": "application/json"})
        self.tokens = TokenManager(
            self._client,
            auth_url=auth_url,
            username=username,
            password=password,
            provider=LENDER_ID,
            max_retries=max_retries,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> "LightReachClient":
        return cls(
            base_url=settings.lightreach_base_url,
            auth_url=settings.lightreach_auth_url,
            username=settings.lightreach_username,
            password=settings.lightreach_password,
            http_client=http_client,
            max_retries=settings.lightreach_max_retries,
            timeout=settings.lightreach_timeout_seconds,
        )

    @property
    def lender_id(self) -> str:
        return LENDER_ID

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -- transport ---------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        set_lender_id(LENDER_ID)
        url = f"{self.base_url}{path}"
        try:
            response = await self._authorized_request(method, url, json=json, params=params)
            if response.status_code == 401:
                # Token revoked upstream before its advertised expiry.
                self.tokens.invalidate()
                response = await self._authorized_request(method, url, json=json, params=params)
            if response.status_code == 404:
                raise FinanceNotFoundError(
                    f"LightReach resource not found ({action})",
                    LENDER_ID,
                    details={"action": action, "url": url},
                )
            if not response.is_success:
                raise FinanceAPIError(
                    self._error_message(response, action),
                    LENDER_ID,
                    response.status_code,
                    details={"action": action, "body": redact_sensitive_data(self._error_body(response))},
                )
            return response
        except FinanceError as exc:
            log_finance_error(exc, action)
            raise

    async def _authorized_request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self.tokens.get_token()
        return await request_with_retry(
            self._client,
            method,
            url,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            max_retries=self.max_retries,
            timeout=self.timeout,
            provider=LENDER_ID,
            **kwargs,
        )

    @staticmethod
    def _error_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text[:500]

    def _error_message(self, response: httpx.Response, action: str) -> str:
        body = self._error_body(response)
        if isinstance(body, dict):
            for key in ("message", "error", "detail"):
                value = body.get(key)
                if isinstance(value, str) and value:
                    return value
        return f"LightReach {action} failed with status {response.status_code}"

    def _parse(self, response: httpx.Response, model: type[ModelT], action: str) -> ModelT:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            error = FinanceAPIError(
                f"LightReach returned an invalid {action} response",
                LENDER_ID,
                500,
                details={"action": action, "error": str(exc)[:500]},
            )
            log_finance_error(error, action)
            raise error from exc

    def _parse_list(
        self,
        response: httpx.Response,
        model: type[ModelT],
        action: str,
        *,
        keys: tuple[str, ...] = ("data", "items", "results"),
    ) -> list[ModelT]:
        try:
            body = response.json()
            if isinstance(body, dict):
                body = next((body[key] for key in keys if isinstance(body.get(key), list)), body)
            return TypeAdapter(list[model]).validate_python(body)
        except (ValueError, ValidationError) as exc:
            error = FinanceAPIError(
                f"LightReach returned an invalid {action} response",
                LENDER_ID,
                500,
                details={"action": action, "error": str(exc)[:500]},
            )
            log_finance_error(error, action)
            raise error from exc

    # -- applications ------------------------------------------------------

    async def create_application(self, data: FinanceApplicationData) -> FinanceApplicationResponse:
        validate_application_data(data)
        payload = build_account_payload(data)
        logger.info(
            "Creating LightReach account payload=%s",
            redact_sensitive_data({k: v for k, v in payload.items() if k != "systemDesign"}),
        )
        response = await self._send("POST", "/api/v2/accounts", action="create-account", json=payload)
        account = self._parse(response, LightReachAccountResponse, "create-account")
        return self._normalize_account(account, fallback_total=data.system_price)

    async def get_application_status(self, application_id: str) -> FinanceApplicationResponse:
        response = await self._send("GET", f"/api/accounts/{application_id}", action="get-account")
        account = self._parse(response, LightReachAccountResponse, "get-account")
        return self._normalize_account(account)

    def _normalize_account(
        self, account: LightReachAccountResponse, *, fallback_total: float | None = None
    ) -> FinanceApplicationResponse:
        return FinanceApplicationResponse(
            application_id=account.id,
            status=map_lender_status(account.status),
            lender_status=account.status,
            monthly_payment=account.monthly_payment,
            total_cost=account.total_cost if account.total_cost is not None else fallback_total,
            message=account.message,
            program_type=account.program_type,
        )

    # -- pricing -----------------------------------------------------------

    async def get_pricing(
        self,
        account_id: str,
        amount: float,
        system_design: dict | None = None,
    ) -> list[PricingProduct]:
        body: dict[str, Any] = {"totalFinancedAmount": amount}
        if system_design:
            body["systemDesign"] = system_design
        response = await self._send(
            "POST", f"/api/v2/accounts/{account_id}/pricing/hvac", action="get-pricing", json=body
        )
        products = self._parse_list(response, LightReachPricingProduct, "get-pricing", keys=("products", "data"))
        return [_pricing_product(product) for product in products]

    async def get_payment_schedule(
        self,
        application_id: str,
        *,
        system_design: dict | None = None,
    ) -> PaymentSchedule | None:
        account = await self.get_application_status(application_id)
        if not account.total_cost:
            error = FinanceAPIError(
                "LightReach account has no total system cost",
                LENDER_ID,
                500,
                details={"action": "get-payment-schedule", "account_id": application_id},
            )
            log_finance_error(error, "get-payment-schedule")
            raise error
        products = await self.get_pricing(application_id, account.total_cost, system_design)
        if not products:
            return None
        first = products[0]
        return PaymentSchedule(**first.model_dump())

    async def get_estimated_pricing(
        self,
        amount: float,
        *,
        state: str | None = None,
        system_design: dict | None = None,
    ) -> list[PricingProduct]:
        body: dict[str, Any] = {"totalFinancedAmount": amount, "programType": "hvac"}
        if state:
            body["state"] = state.upper()
        if system_design:
            body["systemDesign"] = system_design
        response = await self._send("POST", "/api/v2/pricing/hvac/estimate", action="estimate-pricing", json=body)
        products = self._parse_list(response, LightReachPricingProduct, "estimate-pricing", keys=("products", "data"))
        return [_pricing_product(product) for product in products]

    # -- contract ----------------------------------------------------------

    async def get_stipulations(self, account_id: str) -> list[StipulationRecord]:
        response = await self._send("GET", f"/api/accounts/{account_id}/stipulations", action="get-stipulations")
        stipulations = self._parse_list(response, LightReachStipulation, "get-stipulations", keys=("stipulations", "data"))
        return [
            StipulationRecord(
                id=item.id,
                type=item.type,
                status=(item.status or "pending").lower(),
                description=item.description,
            )
            for item in stipulations
        ]

    async def get_signing_link(self, account_id: str) -> SigningLink:
        response = await self._send(
            "POST", f"/api/accounts/{account_id}/contracts/current/signing-link", action="get-signing-link"
        )
        link = self._parse(response, LightReachSigningLink, "get-signing-link")
        return SigningLink(url=link.url, expires_at=link.expires_at)

    # -- quotes ------------------------------------------------------------

    async def get_quotes(self, account_id: str) -> list[QuoteRecord]:
        response = await self._send("GET", f"/api/v2/accounts/{account_id}/quote", action="get-quotes")
        quotes = self._parse_list(response, LightReachQuote, "get-quotes", keys=("quotes", "data"))
        return [_quote_record(quote) for quote in quotes]

    async def create_quote(
        self,
        account_id: str,
        *,
        product_id: str,
        total_financed_amount: float,
        external_reference: str | None = None,
    ) -> QuoteRecord:
        body: dict[str, Any] = {"productId": product_id, "totalFinancedAmount": total_financed_amount}
        if external_reference:
            body["externalReference"] = external_reference
        response = await self._send("POST", f"/api/v2/accounts/{account_id}/quote", action="create-quote", json=body)
        return _quote_record(self._parse(response, LightReachQuote, "create-quote"))

    async def void_quote(self, account_id: str, quote_id: str) -> None:
        await self._send("POST", f"/api/v2/accounts/{account_id}/quote/{quote_id}/void", action="void-quote")
