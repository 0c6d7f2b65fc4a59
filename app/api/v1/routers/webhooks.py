import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.limiter import limiter
from app.db.session import get_db
from app.services import finance_webhooks
from app.services.finance import factory
from app.services.finance.lightreach import LENDER_ID as LIGHTREACH

logger = logging.getLogger(__name__)

# Mounted outside /api/v1; lenders post here with credentials, not user sessions.
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _receive(provider: str, request: Request, db: AsyncSession) -> JSONResponse:
    provider = provider.strip().lower()
    if provider not in factory.SUPPORTED_LENDERS:
        return JSONResponse(status_code=400, content={"error": f"Unsupported provider: {provider}"})
    raw_body = await request.body()
    try:
        finance_webhooks.authenticate(request.headers, raw_body)
        payload = finance_webhooks.parse_body(raw_body)
        result = await finance_webhooks.handle_webhook(db, provider, payload)
    except finance_webhooks.WebhookError as exc:
        logger.warning("Rejected %s webhook: %s", provider, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
    except Exception:
        logger.exception("Webhook processing failed provider=%s", provider)
        await db.rollback()
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": "Webhook processing failed"},
        )
    return JSONResponse(status_code=200, content=result)


@router.post("/finance/{provider}", summary="Inbound lender webhook")
@limiter.exempt
async def receive_finance_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return await _receive(provider, request, db)


@router.post("/lightreach", summary="Inbound LightReach webhook")
@limiter.exempt
async def receive_lightreach_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return await _receive(LIGHTREACH, request, db)


@router.get("/lightreach", summary="Webhook endpoint check")
@limiter.exempt
async def lightreach_webhook_check() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "ok",
            "provider": LIGHTREACH,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )
