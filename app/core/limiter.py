from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.settings import settings


def tenant_rate_key(request: Request) -> str:
    """Budget requests per tenant and client address so one installer cannot starve another."""
    tenant = request.headers.get("X-Tenant-ID") or settings.default_org_id
    return f"{tenant}:{get_remote_address(request)}"


limiter = Limiter(
    key_func=tenant_rate_key,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)

__all__ = ["limiter", "tenant_rate_key"]
