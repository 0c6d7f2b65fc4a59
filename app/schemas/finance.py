from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.services.finance.errors import redact_sensitive_data


class FinanceApplicationStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    CONDITIONAL = "CONDITIONAL"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_lender(cls, value: str) -> "FinanceApplicationStatus":
        return cls(str(value).upper())


ACTIVE_APPLICATION_STATUSES = (FinanceApplicationStatus.PENDING, FinanceApplicationStatus.SUBMITTED)

LenderStatus = Literal["pending", "submitted", "approved", "denied", "conditional", "cancelled"]


class _CamelModel(BaseModel):
    """Accepts the frontend's camelCase keys as well as snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class HVACEquipment(_CamelModel):
    type: str
    manufacturer: str | None = None
    model: str | None = None
    quantity: int = 1
    tonnage: float | None = None
    efficiency_rating: str | None = None


class HVACSystemDesign(_CamelModel):
    equipment: list[HVACEquipment] = Field(min_length=1)
    conditioned_space_sq_ft: int = Field(gt=0)


class ExternalReferenceId(_CamelModel):
    type: str
    id: str


class FinanceApplicationData(_CamelModel):
    """Applicant payload as submitted. Field checks happen in the lender client."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    address2: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    system_price: float | None = None
    ssn: str | None = None
    date_of_birth: str | None = None
    annual_income: float | None = None
    sales_rep_name: str | None = None
    sales_rep_email: str | None = None
    sales_rep_phone_number: str | None = None
    external_reference: str | None = None
    external_reference_ids: list[ExternalReferenceId] | None = None
    system_design: HVACSystemDesign | None = None


class FinanceApplicationResponse(BaseModel):
    """Normalized result of a lender create/status call."""

    model_config = ConfigDict(extra="allow")

    application_id: str = Field(min_length=1)
    status: LenderStatus
    monthly_payment: float | None = None
    total_cost: float | None = None
    apr: float | None = None
    term: int | None = None
    message: str | None = None
    lender_status: str | None = None


class PaymentScheduleYear(BaseModel):
    year: int
    monthly_payment: float
    yearly_cost: float | None = None


class PaymentSchedule(BaseModel):
    model_config = ConfigDict(extra="allow")

    product_id: str | None = None
    term_years: int
    escalation_rate: float = 0.0
    total_amount_paid: float | None = None
    years: list[PaymentScheduleYear] = Field(default_factory=list)


class PricingProduct(PaymentSchedule):
    pass


class StipulationRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str | None = None
    status: str = "pending"
    description: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class SigningLink(BaseModel):
    url: str
    expires_at: str | None = None


class QuoteRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str = "active"
    product_id: str | None = None
    total_financed_amount: float | None = None
    monthly_payment: float | None = None
    term_years: int | None = None
    escalation_rate: float | None = None
    is_test: bool = False
    created_at: datetime | None = None
    voided_at: datetime | None = None


class Milestone(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    occurred_at: datetime
    source: str = "webhook"
    details: dict[str, Any] = Field(default_factory=dict)


class FinanceResponseData(BaseModel):
    """Structured view of ``FinanceApplication.response_data``.

    Unknown keys are kept so earlier lender payloads survive every merge.
    """

    model_config = ConfigDict(extra="allow")

    status: str | None = None
    message: str | None = None
    monthly_payment: float | None = None
    total_cost: float | None = None
    apr: float | None = None
    term: int | None = None
    lender_status: str | None = None
    contract_status: str | None = None
    quotes: list[QuoteRecord] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    stipulations: list[StipulationRecord] = Field(default_factory=list)
    pricing: list[PricingProduct] | None = None
    payment_schedule: PaymentSchedule | None = None
    last_webhook: dict[str, Any] | None = None
    last_synced_at: datetime | None = None


class FinanceApplyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proposal_id: UUID = Field(validation_alias=AliasChoices("proposal_id", "proposalId"))
    application_data: FinanceApplicationData = Field(
        validation_alias=AliasChoices("application_data", "applicationData")
    )


class FinanceApplicationDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    proposal_id: UUID
    lender_id: str
    status: FinanceApplicationStatus
    external_application_id: str | None = None
    application_data: dict[str, Any] = Field(default_factory=dict)
    response_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("application_data", mode="before")
    @classmethod
    def _redact_applicant(cls, value: Any) -> Any:
        # Applicant SSNs and account numbers never leave the API.
        return redact_sensitive_data(dict(value or {}))


class FinanceStatusResponse(FinanceApplicationDTO):
    cached: bool = False
    cache_age: int | None = Field(default=None, serialization_alias="cacheAge")
    warning: str | None = None


class FinanceApplicationListResponse(BaseModel):
    items: list[FinanceApplicationDTO]
    total: int


class PaymentScheduleResponse(BaseModel):
    application_id: UUID
    schedule: PaymentSchedule | None = None
    cached: bool = False


class StipulationsResponse(BaseModel):
    application_id: UUID
    stipulations: list[StipulationRecord]


class SigningLinkResponse(BaseModel):
    application_id: UUID
    signing_link: SigningLink


class QuoteCreateRequest(_CamelModel):
    product_id: str = Field(min_length=1)
    total_financed_amount: float = Field(gt=0)
    external_reference: str | None = None


class QuoteListResponse(BaseModel):
    account_id: str
    quotes: list[QuoteRecord]


class QuoteVoidResponse(BaseModel):
    account_id: str
    quote: QuoteRecord


class EstimatedPricingRequest(_CamelModel):
    system_price: float = Field(gt=0)
    state: str | None = None
    system_design: HVACSystemDesign | None = None


class EstimatedPricingResponse(BaseModel):
    products: list[PricingProduct]
    is_estimate: bool = True


class LenderInfo(BaseModel):
    id: str
    name: str
    test_mode: bool = False


class FinanceWebhookPayload(BaseModel):
    """Inbound lender callback.

    Covers the flat shape ``{event, accountId, accountReference, status}``,
    the legacy ``{applicationId, status}`` shape, and the native envelope
    ``{eventId, eventType, data}``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event: str | None = None
    event_id: str | None = Field(default=None, validation_alias=AliasChoices("eventId", "event_id"))
    event_type: str | None = Field(default=None, validation_alias=AliasChoices("eventType", "event_type"))
    account_id: str | None = Field(default=None, validation_alias=AliasChoices("accountId", "account_id"))
    account_reference: str | None = Field(
        default=None, validation_alias=AliasChoices("accountReference", "account_reference")
    )
    application_id: str | None = Field(
        default=None, validation_alias=AliasChoices("applicationId", "application_id")
    )
    status: str | None = None
    data: dict[str, Any] | None = None
