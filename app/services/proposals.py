from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.proposal import Proposal

_EQUIPMENT_TYPE_KEYS = ("type", "category", "equipmentType")
_SQFT_KEYS = ("conditionedSpaceSqFt", "squareFootage", "squareFeet", "sqft", "homeSize")


async def get_proposal(db: AsyncSession, proposal_id) -> Proposal | None:
    stmt = select(Proposal).where(Proposal.id == proposal_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _provider_of(option: Any) -> str:
    if isinstance(option, dict):
        return str(option.get("provider") or "").strip().lower()
    return ""


def is_comfort_plan_selected(proposal: Proposal | None) -> bool:
    if proposal is None:
        return False
    payment_method = proposal.payment_method or {}
    provider = _provider_of(proposal.financing_option) or _provider_of(payment_method.get("option"))
    return payment_method.get("method") == "leasing" and provider == "lightreach"


def extract_customer_data(proposal: Proposal) -> dict[str, str]:
    customer = proposal.customer_data or {}
    if not customer:
        return {}
    name_parts = str(customer.get("name") or "").split()
    first_name = name_parts[0] if name_parts else str(customer.get("firstName") or "")
    last_name = " ".join(name_parts[1:]) or str(customer.get("lastName") or "")
    extracted = {"firstName": first_name.strip(), "lastName": last_name.strip()}
    for key in ("email", "phone", "address", "city", "state", "zip"):
        extracted[key] = str(customer.get(key) or "").strip()
    return extracted


def get_system_price(proposal: Proposal) -> float:
    totals = proposal.totals or {}
    for key in ("total", "equipment"):
        value = totals.get(key)
        if value:
            return float(value)
    return 0.0


def _equipment_items(selected: Any) -> list[dict[str, Any]]:
    if isinstance(selected, list):
        return [item for item in selected if isinstance(item, dict)]
    if isinstance(selected, dict):
        for key in ("items", "equipment", "systems"):
            if isinstance(selected.get(key), list):
                return [item for item in selected[key] if isinstance(item, dict)]
        # Single-system proposals store the system itself.
        if any(selected.get(key) for key in _EQUIPMENT_TYPE_KEYS):
            return [selected]
    return []


def _square_footage(home_data: dict[str, Any]) -> int | None:
    for key in _SQFT_KEYS:
        value = home_data.get(key)
        try:
            sqft = int(float(value))
        except (TypeError, ValueError):
            continue
        if sqft > 0:
            return sqft
    return None


def build_system_design(proposal: Proposal) -> dict[str, Any] | None:
    """Lender system-design block derived from the proposal, or ``None`` if incomplete."""
    sqft = _square_footage(proposal.home_data or {})
    equipment = []
    for item in _equipment_items(proposal.selected_equipment):
        equipment_type = next((item[key] for key in _EQUIPMENT_TYPE_KEYS if item.get(key)), None)
        if not equipment_type:
            continue
        entry: dict[str, Any] = {"type": str(equipment_type), "quantity": int(item.get("quantity") or 1)}
        manufacturer = item.get("manufacturer") or item.get("brand")
        model = item.get("model") or item.get("modelNumber")
        if manufacturer:
            entry["manufacturer"] = str(manufacturer)
        if model:
            entry["model"] = str(model)
        if item.get("tonnage"):
            entry["tonnage"] = float(item["tonnage"])
        equipment.append(entry)
    if not equipment or sqft is None:
        return None
    return {"equipment": equipment, "conditionedSpaceSqFt": sqft}
