from datetime import timedelta
from uuid import uuid4

import pytest

from app.core.settings import settings
from app.models.audit_log import AuditLog
from app.models.finance_application import FinanceApplication
from app.models.proposal import Proposal
from app.models.user import UserRole
from conftest import (
    FakeResult,
    applicant_payload,
    entity_handler,
    make_application,
    make_proposal,
    make_user,
)

APPLY_URL = "/api/v1/finance/lightreach/apply"


def _wire(fake_db, proposal, existing=None) -> None:
    fake_db.on_execute(entity_handler(Proposal, FakeResult(scalar=proposal)))
    fake_db.on_execute(entity_handler(FinanceApplication, FakeResult(items=list(existing or []))))


def _body(proposal, **overrides) -> dict:
    return {"proposalId": str(proposal.id), "applicationData": applicant_payload(**overrides)}


def _added(fake_db, model) -> list:
    return [obj for obj in fake_db.added if isinstance(obj, model)]


def test_apply_in_test_mode_creates_application(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal()
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 201
    assert resp.json()["code"] == "created"
    data = resp.json()["data"]
    assert data["status"] == "APPROVED"
    assert data["lender_id"] == "lightreach"
    assert data["proposal_id"] == str(proposal.id)
    assert data["external_application_id"].startswith("test_")
    assert data["response_data"]["monthly_payment"] == 231.9
    assert data["application_data"]["ssn"] == "[REDACTED]"

    [application] = _added(fake_db, FinanceApplication)
    assert application.application_data["externalReference"] == str(proposal.id)
    assert application.application_data["systemDesign"]["conditionedSpaceSqFt"] == 1800
    assert [audit.action for audit in _added(fake_db, AuditLog)] == ["finance_application.submitted"]
    assert fake_db.committed is True


def test_apply_maps_declined_scenario(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal()
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal, ssn="500-10-1010"))

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["status"] == "DENIED"
    assert "Low credit score" in data["response_data"]["message"]


@pytest.mark.parametrize("status", ["PENDING", "SUBMITTED"])
def test_apply_rejects_recent_active_application(client, fake_db, finance_test_mode, status) -> None:
    proposal = make_proposal()
    existing = make_application(proposal=proposal, status=status, age=timedelta(days=2))
    _wire(fake_db, proposal, [existing])

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 409
    body = resp.json()
    assert body["code"] == "DUPLICATE_APPLICATION"
    assert body["details"]["existing_application_id"] == str(existing.id)
    assert body["details"]["existingApplicationId"] == str(existing.id)
    assert _added(fake_db, FinanceApplication) == []


def test_apply_allows_resubmission_after_window(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal()
    stale = make_application(
        proposal=proposal,
        status="SUBMITTED",
        age=timedelta(days=settings.finance_duplicate_window_days + 1),
    )
    _wire(fake_db, proposal, [stale])

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 201
    assert resp.json()["data"]["id"] != str(stale.id)


def test_apply_requires_system_design(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal(home_data={}, selected_equipment={})
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "SYSTEM_DESIGN_REQUIRED"
    assert body["details"]["field"] == "systemDesign"


def test_apply_accepts_explicit_system_design(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal(home_data={}, selected_equipment={})
    _wire(fake_db, proposal)
    design = {"equipment": [{"type": "furnace", "quantity": 1}], "conditionedSpaceSqFt": 2200}

    resp = client.post(APPLY_URL, json=_body(proposal, systemDesign=design))

    assert resp.status_code == 201
    [application] = _added(fake_db, FinanceApplication)
    assert application.application_data["systemDesign"]["conditionedSpaceSqFt"] == 2200


def test_apply_reports_field_validation(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal()
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal, phone="555-0100"))

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]["field"] == "phone"
    assert fake_db.committed is False


def test_apply_without_credentials_outside_test_mode(client, fake_db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "finance_test_mode", False)
    monkeypatch.setattr(settings, "lightreach_username", None)
    monkeypatch.setattr(settings, "lightreach_password", None)
    proposal = make_proposal()
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 503
    assert resp.json()["code"] == "CREDENTIALS_REQUIRED"


def test_apply_with_live_lender(client, fake_db, stub_lender) -> None:
    proposal = make_proposal()
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 201
    assert resp.json()["data"]["external_application_id"] == "acct_123"
    [(name, submitted)] = stub_lender.calls
    assert name == "create_application"
    assert submitted.external_reference == str(proposal.id)
    assert submitted.system_design.conditioned_space_sq_ft == 1800


def test_apply_unknown_proposal(client, fake_db, finance_test_mode) -> None:
    resp = client.post(APPLY_URL, json={"proposalId": str(uuid4()), "applicationData": applicant_payload()})

    assert resp.status_code == 404
    assert resp.json()["message"] == "Proposal not found"


def test_apply_other_org_proposal_forbidden(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal(org_id="other-org")
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 403


def test_sales_rep_cannot_finance_colleague_proposal(client, fake_db, finance_test_mode, test_user) -> None:
    test_user.role = UserRole.SALES_REP.value
    colleague = make_user(role=UserRole.SALES_REP, email="rep2@example.com")
    proposal = make_proposal(user_id=colleague.id)
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 403


def test_apply_requires_proposal_id(client, finance_test_mode) -> None:
    resp = client.post(APPLY_URL, json={"applicationData": applicant_payload()})

    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"


def test_apply_fills_blank_applicant_fields_from_proposal(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal()
    _wire(fake_db, proposal)
    sparse = {"firstName": "Janet", "ssn": "123-45-6789"}

    resp = client.post(APPLY_URL, json={"proposalId": str(proposal.id), "applicationData": sparse})

    assert resp.status_code == 201
    [application] = _added(fake_db, FinanceApplication)
    stored = application.application_data
    assert stored["firstName"] == "Janet"
    assert stored["lastName"] == "Homeowner"
    assert stored["email"] == "jane@example.com"
    assert stored["zip"] == "78701"
    assert stored["systemPrice"] == 15000.0


def test_apply_without_design_allowed_when_comfort_plan_not_selected(client, fake_db, finance_test_mode) -> None:
    proposal = make_proposal(
        home_data={},
        selected_equipment={},
        payment_method={"method": "cash"},
        financing_option=None,
    )
    _wire(fake_db, proposal)

    resp = client.post(APPLY_URL, json=_body(proposal))

    assert resp.status_code == 201
    [application] = _added(fake_db, FinanceApplication)
    assert "systemDesign" not in application.application_data
