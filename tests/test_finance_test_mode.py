import pytest

from app.schemas.finance import FinanceApplicationData
from app.services.finance import pricing
from app.services.finance.errors import FinanceNotFoundError, FinanceValidationError
from app.services.finance import test_mode
from app.services.finance.test_mode import LightReachTestClient, scenario_for_ssn
from conftest import applicant_payload


def _application(**overrides) -> FinanceApplicationData:
    return FinanceApplicationData.model_validate(applicant_payload(**overrides))


def test_monthly_payment_uses_published_factor() -> None:
    assert pricing.monthly_payment(15000) == 231.9
    assert pricing.monthly_payment(15000, 12, "1.99") == 187.05


def test_payment_schedule_escalates_yearly() -> None:
    schedule = pricing.build_payment_schedule(10000, 10, "1.99")

    assert schedule.term_years == 10
    assert len(schedule.years) == 10
    assert schedule.years[0].monthly_payment == 141.6
    assert schedule.years[1].monthly_payment > schedule.years[0].monthly_payment
    assert schedule.total_amount_paid == pytest.approx(sum(year.yearly_cost for year in schedule.years))


def test_unknown_factor_is_rejected() -> None:
    with pytest.raises(ValueError):
        pricing.payment_factor(15, "0")


def test_estimate_covers_every_product() -> None:
    products = pricing.estimate_products(15000)
    assert len(products) == 6
    assert {product.term_years for product in products} == {10, 12}


def test_scenario_lookup_ignores_formatting() -> None:
    assert scenario_for_ssn("500-10-1010").status == "denied"
    assert scenario_for_ssn("123-45-6789").status == "approved"
    assert scenario_for_ssn(None).status == "approved"


@pytest.mark.asyncio
async def test_declined_scenario() -> None:
    client = LightReachTestClient()

    response = await client.create_application(_application(ssn="500101010"))

    assert response.status == "denied"
    assert "Low credit score" in response.message
    assert response.monthly_payment is None
    assert client.is_test_id(response.application_id)


@pytest.mark.asyncio
async def test_conditional_scenario_prices_the_system() -> None:
    client = LightReachTestClient()

    response = await client.create_application(_application(ssn="500101005"))

    assert response.status == "conditional"
    assert response.monthly_payment == round(15000 * 0.01546, 2)
    assert response.term == 10

    stipulations = await client.get_stipulations(response.application_id)
    assert [item.status for item in stipulations] == ["pending"]


@pytest.mark.asyncio
async def test_status_and_schedule_follow_created_account() -> None:
    client = LightReachTestClient()
    created = await client.create_application(_application())

    status = await client.get_application_status(created.application_id)
    schedule = await client.get_payment_schedule(created.application_id)

    assert status.status == "approved"
    assert schedule.years[0].monthly_payment == 231.9


@pytest.mark.asyncio
async def test_unknown_mock_account_is_not_found() -> None:
    with pytest.raises(FinanceNotFoundError):
        await LightReachTestClient().get_application_status("test_missing")


@pytest.mark.asyncio
async def test_mock_still_validates_applicant() -> None:
    with pytest.raises(FinanceValidationError) as exc_info:
        await LightReachTestClient().create_application(_application(zip="ABCDE"))
    assert exc_info.value.field == "zip"


@pytest.mark.asyncio
async def test_mock_quotes_can_be_voided() -> None:
    client = LightReachTestClient()

    quote = await client.create_quote("test_acct", product_id="hvac-10yr-0", total_financed_amount=12000)
    await client.void_quote("test_acct", quote.id)

    [stored] = await client.get_quotes("test_acct")
    assert quote.id == "test_quote_1"
    assert quote.is_test is True
    assert stored.status == "voided"


@pytest.mark.asyncio
async def test_oldest_mock_accounts_are_forgotten(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(test_mode, "MAX_MOCK_ACCOUNTS", 2)
    client = LightReachTestClient()

    first = await client.create_application(_application())
    await client.create_quote(first.application_id, product_id="hvac-10yr-0", total_financed_amount=12000)
    second = await client.create_application(_application())
    third = await client.create_application(_application())

    with pytest.raises(FinanceNotFoundError):
        await client.get_application_status(first.application_id)
    assert await client.get_quotes(first.application_id) == []
    assert (await client.get_application_status(second.application_id)).status == "approved"
    assert (await client.get_application_status(third.application_id)).status == "approved"


@pytest.mark.asyncio
async def test_quotes_for_unknown_accounts_are_bounded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(test_mode, "MAX_MOCK_ACCOUNTS", 2)
    client = LightReachTestClient()

    for account_id in ("test_a", "test_b", "test_c"):
        await client.create_quote(account_id, product_id="hvac-10yr-0", total_financed_amount=12000)

    assert await client.get_quotes("test_a") == []
    assert len(await client.get_quotes("test_c")) == 1
