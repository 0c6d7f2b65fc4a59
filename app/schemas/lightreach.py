"""Wire shapes returned by the LightReach / Palmetto Finance API.

Each lender endpoint response is validated against one of these models at the
HTTP call site; anything that fails validation becomes a ``FinanceAPIError``.
"""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class LightReachAuthResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1, validation_alias=AliasChoices("access_token", "accessToken", "token"))
    expires_in: int | None = Field(default=None, validation_alias=AliasChoices("expires_in", "expiresIn"))


class LightReachAccountResponse(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "_id", "accountId"))
    status: str | None = None
    program_type: str | None = Field(default=None, validation_alias=AliasChoices("programType", "program_type"))
    message: str | None = None
    total_cost: float | None = Field(default=None, validation_alias=AliasChoices("totalCost", "totalSystemCost", "systemPrice"))
    monthly_payment: float | None = Field(default=None, validation_alias=AliasChoices("monthlyPayment", "monthly_payment"))


class LightReachPaymentYear(BaseModel):
    model_config = ConfigDict(extra="allow")

    year: int
    monthly_payment: float = Field(validation_alias=AliasChoices("monthlyPayment", "monthly_payment"))
    yearly_cost: float | None = Field(default=None, validation_alias=AliasChoices("yearlyCost", "yearly_cost"))


class LightReachPricingProduct(BaseModel):
    model_config = ConfigDict(extra="allow")

    product_id: str | None = Field(default=None, validation_alias=AliasChoices("productId", "product_id", "id"))
    term: int = Field(validation_alias=AliasChoices("term", "termYears", "term_years"))
    escalation_rate: float = Field(default=0.0, validation_alias=AliasChoices("escalationRate", "escalation_rate"))
    monthly_payments: list[LightReachPaymentYear] = Field(
        default_factory=list,
        validation_alias=AliasChoices("monthlyPayments", "paymentSchedule", "monthly_payments"),
    )
    total_amount_paid: float | None = Field(
        default=None, validation_alias=AliasChoices("totalAmountPaid", "total_amount_paid")
    )


class LightReachStipulation(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(validation_alias=AliasChoices("id", "_id", "stipulationId"))
    type: str | None = Field(default=None, validation_alias=AliasChoices("type", "stipulationType"))
    status: str | None = None
    description: str | None = None


class LightReachSigningLink(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str = Field(min_length=1, validation_alias=AliasChoices("url", "signingLink", "link"))
    expires_at: str | None = Field(default=None, validation_alias=AliasChoices("expiresAt", "expires_at"))


class LightReachQuote(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(validation_alias=AliasChoices("id", "_id", "quoteId"))
    status: str | None = None
    product_id: str | None = Field(default=None, validation_alias=AliasChoices("productId", "product_id"))
    total_financed_amount: float | None = Field(
        default=None, validation_alias=AliasChoices("totalFinancedAmount", "total_financed_amount")
    )
    monthly_payment: float | None = Field(default=None, validation_alias=AliasChoices("monthlyPayment", "monthly_payment"))
    term: int | None = Field(default=None, validation_alias=AliasChoices("term", "termYears"))
    escalation_rate: float | None = Field(default=None, validation_alias=AliasChoices("escalationRate", "escalation_rate"))
    created_at: str | None = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))
