from datetime import timedelta
from uuid import uuid4

import pytest

from app.models.finance_application import FinanceApplication
from app.models.proposal import Proposal
from app.services import finance_applications
from app.services.finance.errors import FinanceAPIError, FinanceNetworkError, FinanceNotFoundError
from conftest import FakeResult, entity_handler, make_application, make_proposal

def _status_url(application) -> str:
    return f"/api/v1/finance/lightreach/status/{application.id}"

def _serve(fake_db, application) -> None:
    fake_db.on_execute(entity_handler(FinanceApplication, FakeResult(scalar=application)))

def test_fresh_status_served_from_cache(client, fake_db, stub_lender) -> None:
    application = make_application(age=timedelta(seconds=60))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["cached"] is True
    assert 60 <= data["cacheAge"] < 300
    assert data["status"] == "SUBMITTED"
    assert stub_lender.calls == []

def test_stale_status_is_refreshed(client, fake_db, stub_lender) -> None:
    application = make_application(age=timedelta(minutes=10))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["cached"] is False
    assert data["cacheAge"] == 0
    assert data["status"] == "APPROVED"
    assert data["response_data"]["monthly_payment"] == 231.9
    assert data["response_data"]["message"] == "Submitted"
    assert data["response_data"]["payment_schedule"]["term_years"] == 10
    assert [name for name, _ in stub_lender.calls] == ["get_application_status", "get_payment_schedule"]
    assert fake_db.committed is True

def test_refresh_flag_bypasses_cache(client, fake_db, stub_lender) -> None:
    application = make_application(age=timedelta(seconds=5))
    _serve(fake_db, application)

    resp = client.get(_status_url(application), params={"refresh": "true"})

    assert resp.json()["data"]["cached"] is False
    assert stub_lender.calls[0] == ("get_application_status", "acct_123")

def test_lender_outage_falls_back_to_cache(client, fake_db, stub_lender) -> None:
    stub_lender.status_error = FinanceNetworkError("Network request failed after 4 attempts")
    application = make_application(age=timedelta(minutes=10))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["cached"] is True
    assert data["status"] == "SUBMITTED"
    assert data["warning"] == finance_applications.STALE_STATUS_WARNING
    assert fake_db.committed is False

def test_lender_outage_without_cache_propagates(client, fake_db, stub_lender) -> None:
    stub_lender.status_error = FinanceNetworkError("down")
    application = make_application(age=timedelta(minutes=10), response_data={})
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 503
    assert resp.json()["code"] == "NETWORK_ERROR"

def test_lender_not_found_is_not_masked(client, fake_db, stub_lender) -> None:
    stub_lender.status_error = FinanceNotFoundError("LightReach resource not found (get-account)", "lightreach")
    application = make_application(age=timedelta(minutes=10))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"

def test_test_mode_application_never_calls_lender(client, fake_db, stub_lender) -> None:
    application = make_application(external_application_id="test_abc", age=timedelta(hours=2))
    _serve(fake_db, application)

    resp = client.get(_status_url(application), params={"refresh": "true"})

    data = resp.json()["data"]
    assert data["cached"] is True
    assert data["cacheAge"] >= 7200
    assert stub_lender.calls == []

def test_application_without_lender_account(client, fake_db, stub_lender) -> None:
    application = make_application(external_application_id=None, response_data={}, age=timedelta(hours=1))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 400
    assert resp.json()["code"] == "NO_EXTERNAL_APPLICATION"

def test_status_unknown_application(client, fake_db) -> None:
    resp = client.get(f"/api/v1/finance/lightreach/status/{uuid4()}")

    assert resp.status_code == 404
    assert resp.json()["message"] == "Finance application not found"

def test_status_other_org_forbidden(client, fake_db, stub_lender) -> None:
    application = make_application(proposal=make_proposal(org_id="other-org"))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 403
    assert stub_lender.calls == []

def test_stored_payment_schedule_is_cached(client, fake_db, stub_lender) -> None:
    schedule = {"term_years": 10, "escalation_rate": 0.0, "years": [{"year": 1, "monthly_payment": 231.9}]}
    application = make_application(
        status="APPROVED",
        response_data={"status": "approved", "payment_schedule": schedule},
    )
    _serve(fake_db, application)

    resp = client.get(f"/api/v1/finance/lightreach/payment-schedule/{application.id}")

    data = resp.json()["data"]
    assert data["cached"] is True
    assert data["schedule"]["years"][0]["monthly_payment"] == 231.9
    assert stub_lender.calls == []

def test_offline_payment_schedule_is_computed(client, fake_db) -> None:
    application = make_application(external_application_id="test_abc", status="APPROVED")
    _serve(fake_db, application)

    resp = client.get(f"/api/v1/finance/lightreach/payment-schedule/{application.id}")

    data = resp.json()["data"]
    assert data["cached"] is False
    assert data["schedule"]["years"][0]["monthly_payment"] == 231.9
    assert application.response_data["payment_schedule"]["term_years"] == 10

def test_offline_stipulations_come_from_storage(client, fake_db) -> None:
    application = make_application(
        external_application_id="test_abc",
        response_data={"stipulations": [{"id": "stip_1", "type": "incomeVerification", "status": "pending"}]},
    )
    _serve(fake_db, application)

    resp = client.get(f"/api/v1/finance/lightreach/stipulations/{application.id}")

    [stipulation] = resp.json()["data"]["stipulations"]
    assert stipulation["id"] == "stip_1"
    assert stipulation["type"] == "incomeVerification"

def test_offline_signing_link(client, fake_db) -> None:
    application = make_application(external_application_id="test_abc")
    _serve(fake_db, application)

    resp = client.post(f"/api/v1/finance/lightreach/signing-link/{application.id}")

    assert resp.json()["data"]["signing_link"]["url"] == "https://example.test/sign/test_abc"

def test_proposal_lists_finance_applications(client, fake_db) -> None:
    proposal = make_proposal()
    newest = make_application(proposal=proposal, status="APPROVED")
    older = make_application(proposal=proposal, status="CANCELLED", age=timedelta(days=30))
    fake_db.on_execute(entity_handler(Proposal, FakeResult(scalar=proposal)))
    fake_db.on_execute(entity_handler(FinanceApplication, FakeResult(items=[newest, older])))

    resp = client.get(f"/api/v1/proposals/{proposal.id}/finance-applications")

    data = resp.json()["data"]
    assert data["total"] == 2
    assert [item["status"] for item in data["items"]] == ["APPROVED", "CANCELLED"]

def test_schedule_failure_does_not_fail_status_refresh(client, fake_db, stub_lender) -> None:
    stub_lender.schedule_error = FinanceAPIError("Pricing unavailable", "lightreach", 502)
    application = make_application(age=timedelta(minutes=10))
    _serve(fake_db, application)

    resp = client.get(_status_url(application))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["cached"] is False
    assert data["status"] == "APPROVED"
    assert data.get("warning") is None
    assert "payment_schedule" not in data["response_data"]
    assert [name for name, _ in stub_lender.calls] == ["get_application_status", "get_payment_schedule"]
    assert fake_db.committed is True

def test_repeated_reads_inside_window_are_identical(client, fake_db, stub_lender) -> None:
    application = make_application(age=timedelta(seconds=30))
    _serve(fake_db, application)

    first = client.get(_status_url(application)).json()["data"]
    second = client.get(_status_url(application)).json()["data"]

    assert first["cached"] is second["cached"] is True
    assert second["cacheAge"] >= first["cacheAge"]
    first.pop("cacheAge")
    second.pop("cacheAge")
    assert first == second
    assert stub_lender.calls == []
    assert fake_db.committed is False

@pytest.mark.asyncio
async def test_refresh_status_keeps_cached_result_inside_window(fake_db, stub_lender) -> None:
    application = make_application(age=timedelta(seconds=299))

    result = await finance_applications.refresh_status(fake_db, application)

    assert result.cached is True
    assert result.warning is None

@pytest.mark.asyncio
async def test_refresh_status_cache_age_never_decreases(fake_db, stub_lender) -> None:
    application = make_application(age=timedelta(seconds=10))
    snapshot = dict(application.response_data)
    start = application.updated_at

    first = await finance_applications.refresh_status(fake_db, application, now=start + timedelta(seconds=20))
    second = await finance_applications.refresh_status(fake_db, application, now=start + timedelta(seconds=80))

    assert (first.cached, second.cached) == (True, True)
    assert (first.cache_age, second.cache_age) == (20, 80)
    assert application.response_data == snapshot
    assert stub_lender.calls == []
