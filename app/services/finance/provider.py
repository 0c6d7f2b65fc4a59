"""Capability interface every lender integration implements."""

from __future__ import annotations

from abc import ABC, abstractmethod

from app.schemas.finance import FinanceApplicationData, FinanceApplicationResponse, PaymentSchedule


class FinanceProvider(ABC):
    """Lender-agnostic surface the orchestration layer depends on."""

    #: Prefix given to external ids that never reached a real lender.
    test_id_prefix = "test_"

    @property
    @abstractmethod
    def lender_id(self) -> str:
        ...

    @property
    def is_test_mode(self) -> bool:
        return False

    @abstractmethod
    async def create_application(self, data: FinanceApplicationData) -> FinanceApplicationResponse:
        """Submit a credit application and return the normalized lender answer."""
        ...

    @abstractmethod
    async def get_application_status(self, application_id: str) -> FinanceApplicationResponse:
        """Fetch the lender's current view of an application."""
        ...

    @abstractmethod
    async def get_payment_schedule(
        self,
        application_id: str,
        *,
        system_design: dict | None = None,
    ) -> PaymentSchedule | None:
        """Return one representative payment schedule for the application."""
        ...

    async def close(self) -> None:
        return None

    @classmethod
    def is_test_id(cls, external_id: str | None) -> bool:
        return bool(external_id) and str(external_id).startswith(cls.test_id_prefix)
