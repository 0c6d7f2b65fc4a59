from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core import context

WEBHOOK_PATH_PREFIX = "/webhooks/"


def _lender_from_path(path: str) -> str | None:
    """``/webhooks/finance/{provider}`` and ``/webhooks/{provider}`` name the lender."""
    if not path.startswith(WEBHOOK_PATH_PREFIX):
        return None
    parts = [part for part in path[len(WEBHOOK_PATH_PREFIX):].split("/") if part]
    if parts and parts[0] == "finance":
        parts = parts[1:]
    return parts[0].lower() if parts else None


class RequestContextMiddleware:
    """Attach request_id, tenant_id and lender_id to context vars for logging/traceability."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid4())
        tenant_id = (
            headers.get(b"x-org-id", b"").decode()
            or headers.get(b"x-tenant-id", b"").decode()
            or context.get_tenant_id()
        )

        context.set_request_id(request_id)
        if tenant_id:
            context.set_tenant_id(tenant_id)
        lender_id = _lender_from_path(scope.get("path", ""))
        if lender_id:
            context.set_lender_id(lender_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers_list
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            context.clear_context()
