from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError

from app.schemas.finance import FinanceResponseData

logger = logging.getLogger(__name__)

# Sub-record lists merged by identity; later entries replace earlier ones with the same id.
KEYED_LISTS = {"quotes": "id", "stipulations": "id"}
# Sub-record lists that only ever grow.
APPEND_LISTS = {"milestones"}


def _normalize(data: Mapping[str, Any] | None) -> dict[str, Any]:
    try:
        return FinanceResponseData.model_validate(dict(data or {})).model_dump(
            mode="json", exclude_unset=True, exclude_none=True
        )
    except ValidationError:
        logger.warning("Stored response payload does not match the expected shape; keeping it as-is")
        return dict(data or {})


def _merge_keyed(existing: list[dict], incoming: list[dict], key: str) -> list[dict]:
    merged = list(existing)
    positions = {item.get(key): index for index, item in enumerate(merged) if isinstance(item, dict)}
    for item in incoming:
        identity = item.get(key)
        if identity in positions:
            merged[positions[identity]] = {**merged[positions[identity]], **item}
        else:
            positions[identity] = len(merged)
            merged.append(item)
    return merged


def _append_unique(existing: list[dict], incoming: list[dict]) -> list[dict]:
    merged = list(existing)
    for item in incoming:
        if item not in merged:
            merged.append(item)
    return merged


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_unset=True)
    if isinstance(value, list):
        return [_dump(item) for item in value]
    return jsonable_encoder(value)


def merge_response_data(existing: Mapping[str, Any] | None, update: Mapping[str, Any] | None) -> dict[str, Any]:
    """Fold ``update`` into ``existing`` without losing earlier keys.

    Scalars overwrite only when the update carries a non-null value for the
    same key; nested dicts merge shallowly; quotes, stipulations and
    milestones accrete. Sub-records only contribute the fields they set.
    """
    merged = _normalize(existing)
    if not update:
        return merged
    incoming = FinanceResponseData.model_validate(dict(update))
    extras = incoming.model_extra or {}
    for key in update:
        if key in FinanceResponseData.model_fields:
            value = _dump(getattr(incoming, key))
        else:
            value = _dump(extras.get(key))
        if key in KEYED_LISTS:
            merged[key] = _merge_keyed(merged.get(key) or [], value or [], KEYED_LISTS[key])
        elif key in APPEND_LISTS:
            merged[key] = _append_unique(merged.get(key) or [], value or [])
        elif value is None:
            continue
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged
