from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from app.services.finance.errors import FinanceAPIError, FinanceNetworkError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.0

_sleep = asyncio.sleep


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY_SECONDS) -> float:
    return base_delay * (2 ** attempt)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    base_delay: float = BASE_DELAY_SECONDS,
    provider: str = "lender",
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying connection-level failures only.

    Any response that completes, 4xx/5xx included, is returned untouched.
    A timeout ends the call immediately. Request failures that are not
    transport-level (undecodable bodies, redirect loops) are not retried and
    surface as a 500 API error.
    """
    last_error: Exception | None = None
    attempts = 0
    for attempt in range(max_retries + 1):
        attempts = attempt + 1
        try:
            return await client.request(method, url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Lender request timed out method=%s url=%s attempt=%s", method, url, attempts)
            raise FinanceNetworkError(
                f"Request timed out after {timeout:g}s",
                details={"url": url, "attempts": attempts, "error": str(exc) or exc.__class__.__name__},
            ) from exc
        except httpx.TransportError as exc:
            last_error = exc
            if attempt >= max_retries:
                break
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "Lender request failed method=%s url=%s attempt=%s retry_in=%.1fs error=%s",
                method,
                url,
                attempts,
                delay,
                exc.__class__.__name__,
            )
            await _sleep(delay)
        except httpx.RequestError as exc:
            logger.error(
                "Lender request failed method=%s url=%s attempt=%s error=%s",
                method,
                url,
                attempts,
                exc.__class__.__name__,
            )
            raise FinanceAPIError(
                f"Lender request failed: {exc.__class__.__name__}",
                provider,
                500,
                details={"url": url, "attempts": attempts, "error": str(exc) or exc.__class__.__name__},
            ) from exc

    raise FinanceNetworkError(
        f"Network request failed after {attempts} attempts",
        details={
            "url": url,
            "attempts": attempts,
            "error": str(last_error) or last_error.__class__.__name__,
        },
    ) from last_error
