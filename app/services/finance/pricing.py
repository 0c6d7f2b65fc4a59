from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from app.schemas.finance import PaymentSchedule, PaymentScheduleYear, PricingProduct

TWOPLACES = Decimal("0.01")

# Monthly payment per financed dollar, keyed by term (years) then annual escalator (%).
PAYMENT_FACTORS: dict[int, dict[str, Decimal]] = {
    10: {"0": Decimal("0.01546"), "0.99": Decimal("0.01487"), "1.99": Decimal("0.01416")},
    12: {"0": Decimal("0.01397"), "0.99": Decimal("0.01321"), "1.99": Decimal("0.01247")},
}
DEFAULT_TERM_YEARS = 10
DEFAULT_ESCALATOR = "0"


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _escalator_key(escalation_rate) -> str:
    normalized = _as_decimal(escalation_rate or 0).normalize()
    return "0" if normalized == 0 else format(normalized, "f")


def payment_factor(term_years: int = DEFAULT_TERM_YEARS, escalation_rate=DEFAULT_ESCALATOR) -> Decimal:
    try:
        return PAYMENT_FACTORS[term_years][_escalator_key(escalation_rate)]
    except KeyError as exc:
        raise ValueError(f"No payment factor for {term_years}yr at {escalation_rate}%") from exc


def monthly_payment(amount, term_years: int = DEFAULT_TERM_YEARS, escalation_rate=DEFAULT_ESCALATOR) -> float:
    payment = _as_decimal(amount) * payment_factor(term_years, escalation_rate)
    return float(payment.quantize(TWOPLACES, rounding=ROUND_HALF_UP))


def build_payment_schedule(
    amount,
    term_years: int = DEFAULT_TERM_YEARS,
    escalation_rate=DEFAULT_ESCALATOR,
    *,
    product_id: str | None = None,
) -> PaymentSchedule:
    escalator = _as_decimal(escalation_rate or 0)
    current = _as_decimal(monthly_payment(amount, term_years, escalator))
    years: list[PaymentScheduleYear] = []
    total = Decimal("0")
    for year in range(1, term_years + 1):
        rounded = current.quantize(TWOPLACES, rounding=ROUND_HALF_UP)
        yearly = (rounded * 12).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
        years.append(PaymentScheduleYear(year=year, monthly_payment=float(rounded), yearly_cost=float(yearly)))
        total += yearly
        current = current * (Decimal("1") + escalator / Decimal("100"))
    return PaymentSchedule(
        product_id=product_id or f"hvac-{term_years}yr-{_escalator_key(escalator)}",
        term_years=term_years,
        escalation_rate=float(escalator),
        total_amount_paid=float(total),
        years=years,
    )


def estimate_products(amount) -> list[PricingProduct]:
    products = []
    for term_years, factors in PAYMENT_FACTORS.items():
        for escalator in factors:
            schedule = build_payment_schedule(amount, term_years, escalator)
            products.append(PricingProduct(**schedule.model_dump()))
    return products
