from __future__ import annotations

import logging
import time
from typing import Callable

import httpx
from pydantic import ValidationError

from app.schemas.lightreach import LightReachAuthResponse
from app.services.finance.errors import FinanceAPIError, FinanceConfigurationError
from app.services.finance.http_retry import request_with_retry

logger = logging.getLogger(__name__)

TOKEN_SAFETY_MARGIN_SECONDS = 5 * 60
DEFAULT_TOKEN_TTL_SECONDS = 3600


class TokenManager:
    """Bearer token cache owned by a single lender client.

    Two callers refreshing at once costs at most one extra auth call.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        auth_url: str,
        username: str | None,
        password: str | None,
        provider: str = "lightreach",
        max_retries: int = 3,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self.auth_url = auth_url
        self._username = username
        self._password = password
        self.provider = provider
        self.max_retries = max_retries
        self.timeout = timeout
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0

    @property
    def has_credentials(self) -> bool:
        return bool(self._username and self._password)

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - TOKEN_SAFETY_MARGIN_SECONDS

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        if self.is_valid():
            return self._token  # type: ignore[return-value]

        if not self.has_credentials:
            raise FinanceConfigurationError(
                "LightReach credentials are not configured",
                details={"provider": self.provider},
            )

        logger.info("Requesting lender access token provider=%s", self.provider)
        response = await request_with_retry(
            self._client,
            "POST",
            self.auth_url,
            json={"username": self._username, "password": self._password},
            max_retries=self.max_retries,
            timeout=self.timeout,
        )
        if not response.is_success:
            raise FinanceAPIError(
                "Lender authentication failed",
                self.provider,
                response.status_code,
                details={"body": response.text[:500]},
            )
        try:
            parsed = LightReachAuthResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise FinanceAPIError(
                "Lender authentication returned an invalid response",
                self.provider,
                500,
                details={"error": str(exc)[:500]},
            ) from exc

        ttl = parsed.expires_in or DEFAULT_TOKEN_TTL_SECONDS
        self._token = parsed.access_token
        self._expires_at = self._clock() + ttl
        logger.info("Lender access token cached provider=%s ttl=%ss", self.provider, ttl)
        return parsed.access_token
