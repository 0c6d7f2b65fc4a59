from __future__ import annotations

import logging

from app.core.settings import Settings, settings
from app.schemas.finance import LenderInfo
from app.services.finance.errors import UnsupportedLenderError
from app.services.finance.lightreach import LENDER_ID as LIGHTREACH, LightReachClient
from app.services.finance.provider import FinanceProvider
from app.services.finance.test_mode import LightReachTestClient

logger = logging.getLogger(__name__)

_providers: dict[str, FinanceProvider] = {}

SUPPORTED_LENDERS: dict[str, str] = {
    LIGHTREACH: "LightReach Comfort Plan",
}


def use_test_mode(config: Settings | None = None) -> bool:
    config = config or settings
    return config.finance_test_mode and not config.has_lightreach_credentials


def build_provider(lender_id: str, config: Settings | None = None) -> FinanceProvider:
    """Construct a fresh provider instance; callers own its lifecycle."""
    config = config or settings
    key = (lender_id or "").strip().lower()
    if key == LIGHTREACH:
        if use_test_mode(config):
            logger.info("Finance test mode active; using mock LightReach provider")
            return LightReachTestClient()
        return LightReachClient.from_settings(config)
    raise UnsupportedLenderError(lender_id)


def create_provider(lender_id: str) -> FinanceProvider:
    """Process-wide provider per lender, built from application settings."""
    key = (lender_id or "").strip().lower()
    provider = _providers.get(key)
    if provider is None:
        provider = build_provider(key)
        _providers[key] = provider
    return provider


def get_available_lenders() -> list[LenderInfo]:
    return [
        LenderInfo(id=lender_id, name=name, test_mode=use_test_mode())
        for lender_id, name in SUPPORTED_LENDERS.items()
    ]


async def close_providers() -> None:
    providers = list(_providers.values())
    _providers.clear()
    for provider in providers:
        await provider.close()
