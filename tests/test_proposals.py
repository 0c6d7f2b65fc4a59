from app.services import proposals
from conftest import make_proposal


def test_comfort_plan_selected():
    assert proposals.is_comfort_plan_selected(make_proposal()) is True
    assert proposals.is_comfort_plan_selected(None) is False


def test_comfort_plan_requires_leasing_with_lightreach():
    cash = make_proposal(payment_method={"method": "cash"}, financing_option=None)
    other_lender = make_proposal(
        payment_method={"method": "leasing", "option": {"provider": "acme"}},
        financing_option=None,
    )

    assert proposals.is_comfort_plan_selected(cash) is False
    assert proposals.is_comfort_plan_selected(other_lender) is False


def test_extract_customer_data_splits_name():
    data = proposals.extract_customer_data(make_proposal(customer_data={"name": "Mary Ann Smith", "zip": "78701 "}))

    assert data["firstName"] == "Mary"
    assert data["lastName"] == "Ann Smith"
    assert data["zip"] == "78701"
    assert data["email"] == ""


def test_extract_customer_data_empty():
    assert proposals.extract_customer_data(make_proposal(customer_data=None)) == {}


def test_system_price_prefers_total():
    assert proposals.get_system_price(make_proposal()) == 15000.0
    assert proposals.get_system_price(make_proposal(totals={"total": 0, "equipment": 9000})) == 9000.0
    assert proposals.get_system_price(make_proposal(totals=None)) == 0.0


def test_build_system_design_from_equipment_list():
    design = proposals.build_system_design(make_proposal())

    assert design == {
        "equipment": [
            {"type": "heatPump", "quantity": 1, "manufacturer": "Carrier", "model": "25VNA4", "tonnage": 3.0},
            {"type": "airHandler", "quantity": 1, "manufacturer": "Carrier", "model": "FE4A"},
        ],
        "conditionedSpaceSqFt": 1800,
    }


def test_build_system_design_single_system():
    proposal = make_proposal(
        selected_equipment={"category": "furnace", "brand": "Trane", "quantity": 2},
        home_data={"sqft": "2,000", "homeSize": "1950.5"},
    )

    design = proposals.build_system_design(proposal)

    assert design["equipment"] == [{"type": "furnace", "quantity": 2, "manufacturer": "Trane"}]
    assert design["conditionedSpaceSqFt"] == 1950


def test_build_system_design_incomplete():
    assert proposals.build_system_design(make_proposal(home_data={})) is None
    assert proposals.build_system_design(make_proposal(selected_equipment={"items": [{"model": "X"}]})) is None
