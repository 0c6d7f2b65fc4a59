"""Inbound lender webhook processing.

Callbacks arrive in three shapes (flat ``{event, accountId, ...}``, the legacy
``{applicationId, status}`` and the native ``{eventId, eventType, data}``
envelope); all are normalized to one camelCase event vocabulary before the
event table is consulted.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api import deps
from app.core.context import set_lender_id
from app.core.settings import Settings, settings
from app.models.finance_application import FinanceApplication
from app.models.webhook_event import WebhookEvent
from app.schemas.finance import FinanceApplicationStatus, FinanceWebhookPayload
from app.services import audit, finance_applications, notifications
from app.services.finance.errors import redact_sensitive_data
from app.services.finance.lightreach import LIGHTREACH_STATUS_MAP
from app.services.finance.response_data import merge_response_data

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-lightreach-signature", "x-palmetto-signature")
API_KEY_HEADERS = ("apikey", "api_key", "api-key", "x-api-key")
CLIENT_ID_HEADERS = ("clientid", "client_id", "client-id")
CLIENT_SECRET_HEADERS = ("clientsecret", "client_secret", "client-secret")

# Native dotted event names onto the flat vocabulary.
EVENT_ALIASES: dict[str, str] = {
    "account.created": "accountCreated",
    "account.status_changed": "statusChanged",
    "contract.sent": "contractSent",
    "contract.signed": "contractSigned",
    "contract.approved": "contractApproved",
    "contract.rejected": "contractRejected",
    "stipulation.created": "stipulationCreated",
    "stipulation.completed": "stipulationCompleted",
    "funding.approved": "fundingApproved",
    "funding.completed": "fundingCompleted",
    "milestone.achieved": "milestoneAchieved",
    "quote.voided": "quoteVoided",
}


class WebhookError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class WebhookAuthError(WebhookError):
    status_code = 401


class WebhookPayloadError(WebhookError):
    status_code = 400


@dataclass
class WebhookEventData:
    name: str
    event_id: str | None
    account_id: str | None
    account_reference: str | None
    status: str | None
    data: dict[str, Any]


@dataclass
class EventOutcome:
    status: FinanceApplicationStatus | None = None
    update: dict[str, Any] = field(default_factory=dict)


def _header(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return None


def _matches(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    candidate = signature.strip()
    if candidate.lower().startswith("sha256="):
        candidate = candidate[len("sha256="):]
    return hmac.compare_digest(candidate.lower(), expected)


def _basic_credentials(authorization: str | None) -> tuple[str, str] | None:
    if not authorization or not authorization.lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


def _has_configured_credentials(config: Settings) -> bool:
    return bool(
        config.lightreach_webhook_api_key
        or (config.lightreach_webhook_client_id and config.lightreach_webhook_client_secret)
        or (config.lightreach_webhook_username and config.lightreach_webhook_password)
        or config.lightreach_webhook_secret
    )


def authenticate(headers: Mapping[str, str], raw_body: bytes, config: Settings | None = None) -> None:
    """Accept a valid signature, API key, client id/secret pair or Basic credential.

    Raises WebhookAuthError otherwise. With nothing configured the request is
    rejected unless unauthenticated webhooks are explicitly allowed.
    """
    config = config or settings
    signature = _header(headers, SIGNATURE_HEADERS)
    if config.lightreach_webhook_secret and signature:
        if not verify_signature(raw_body, signature, config.lightreach_webhook_secret):
            raise WebhookAuthError("Invalid webhook signature")
        return

    if not _has_configured_credentials(config):
        if config.webhook_allow_unauthenticated:
            logger.warning("Accepting unauthenticated webhook; no webhook credentials are configured")
            return
        raise WebhookAuthError("Webhook authentication is not configured")

    if _matches(_header(headers, API_KEY_HEADERS), config.lightreach_webhook_api_key):
        return
    if _matches(_header(headers, CLIENT_ID_HEADERS), config.lightreach_webhook_client_id) and _matches(
        _header(headers, CLIENT_SECRET_HEADERS), config.lightreach_webhook_client_secret
    ):
        return
    basic = _basic_credentials(headers.get("authorization"))
    if basic is not None and _matches(basic[0], config.lightreach_webhook_username) and _matches(
        basic[1], config.lightreach_webhook_password
    ):
        return
    raise WebhookAuthError("Invalid webhook credentials")


def parse_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise WebhookPayloadError("Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be a JSON object")
    return payload


def normalize_event(payload: Mapping[str, Any]) -> WebhookEventData:
    try:
        parsed = FinanceWebhookPayload.model_validate(dict(payload))
    except ValidationError as exc:
        raise WebhookPayloadError("Malformed webhook payload") from exc

    data = dict(parsed.model_extra or {})
    data.update(parsed.data or {})
    raw_event = parsed.event or parsed.event_type
    status = parsed.status or data.get("status")
    if not raw_event and parsed.application_id and status:
        raw_event = "statusChanged"
    if not raw_event:
        raise WebhookPayloadError("Missing event")

    account_id = (
        parsed.account_id or data.get("accountId") or parsed.application_id or data.get("applicationId")
    )
    account_reference = (
        parsed.account_reference or data.get("accountReference") or data.get("externalReference")
    )
    if not account_id and not account_reference:
        raise WebhookPayloadError("Missing accountId or accountReference")

    return WebhookEventData(
        name=EVENT_ALIASES.get(raw_event, raw_event),
        event_id=parsed.event_id,
        account_id=str(account_id) if account_id else None,
        account_reference=str(account_reference) if account_reference else None,
        status=str(status) if status else None,
        data=data,
    )


def _milestone(kind: str, now: datetime, **details: Any) -> dict[str, Any]:
    return {
        "type": kind,
        "occurred_at": now,
        "source": "webhook",
        "details": {key: value for key, value in details.items() if value is not None},
    }


def _fixed(status: FinanceApplicationStatus, milestone: str | None = None) -> Callable:
    def _handler(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
        update: dict[str, Any] = {}
        if milestone:
            update["milestones"] = [_milestone(milestone, now)]
        return EventOutcome(status=status, update=update)

    return _handler


def _contract(contract_status: str, status: FinanceApplicationStatus | None) -> Callable:
    def _handler(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
        contract_id = event.data.get("contractId")
        update: dict[str, Any] = {
            "contract_status": contract_status,
            "milestones": [_milestone(f"contract_{contract_status}", now, contract_id=contract_id)],
        }
        if contract_id:
            update["contract_id"] = contract_id
        return EventOutcome(status=status, update=update)

    return _handler


def _status_changed(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
    mapped = LIGHTREACH_STATUS_MAP.get((event.status or "").strip().lower())
    if mapped is None:
        logger.warning("Unmapped webhook status %r for application=%s", event.status, application.id)
        return EventOutcome(update={"lender_status": event.status} if event.status else {})
    status = FinanceApplicationStatus.from_lender(mapped)
    update: dict[str, Any] = {"lender_status": event.status}
    if status == FinanceApplicationStatus.APPROVED:
        update["milestones"] = [_milestone("credit_approved", now)]
    return EventOutcome(status=status, update=update)


def _account_created(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
    return EventOutcome(update={"milestones": [_milestone("application_submitted", now)]})


def _milestone_achieved(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
    kind = event.data.get("milestone") or event.data.get("milestoneType") or event.data.get("type") or "milestone"
    return EventOutcome(update={"milestones": [_milestone(str(kind), now, status=event.status)]})


def _quote_voided(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
    quote_id = event.data.get("quoteId") or event.data.get("quote_id")
    if not quote_id:
        return EventOutcome()
    return EventOutcome(update={"quotes": [{"id": str(quote_id), "status": "voided", "voided_at": now}]})


def _stipulation_created(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
    stipulation_id = event.data.get("stipulationId")
    stipulation_type = event.data.get("stipulationType")
    update: dict[str, Any] = {
        "milestones": [
            _milestone("stipulation_pending", now, stipulation_id=stipulation_id, stipulation_type=stipulation_type)
        ]
    }
    if stipulation_id:
        update["stipulations"] = [
            {"id": str(stipulation_id), "type": stipulation_type, "status": "pending", "created_at": now}
        ]
    return EventOutcome(status=FinanceApplicationStatus.CONDITIONAL, update=update)


def _stipulation_completed(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
    stipulation_id = str(event.data.get("stipulationId") or "")
    existing = list((application.response_data or {}).get("stipulations") or [])
    remaining = [
        item
        for item in existing
        if isinstance(item, dict) and item.get("id") != stipulation_id and item.get("status") != "completed"
    ]
    update: dict[str, Any] = {
        "milestones": [_milestone("stipulation_completed", now, stipulation_id=stipulation_id or None)]
    }
    if stipulation_id:
        update["stipulations"] = [{"id": stipulation_id, "status": "completed", "completed_at": now}]
    status = FinanceApplicationStatus.CONDITIONAL if remaining else FinanceApplicationStatus.APPROVED
    return EventOutcome(status=status, update=update)


def _funding(milestone: str) -> Callable:
    def _handler(event: WebhookEventData, application: FinanceApplication, now: datetime) -> EventOutcome:
        amount = event.data.get("fundingAmount")
        update: dict[str, Any] = {"milestones": [_milestone(milestone, now, funding_amount=amount)]}
        if amount is not None:
            update["funding_amount"] = amount
        return EventOutcome(status=FinanceApplicationStatus.APPROVED, update=update)

    return _handler


EVENT_HANDLERS: dict[str, Callable[[WebhookEventData, FinanceApplication, datetime], EventOutcome]] = {
    "approved": _fixed(FinanceApplicationStatus.APPROVED, "credit_approved"),
    "approvedWithStipulations": _fixed(FinanceApplicationStatus.CONDITIONAL, "credit_approved"),
    "declined": _fixed(FinanceApplicationStatus.DENIED, "credit_denied"),
    "denied": _fixed(FinanceApplicationStatus.DENIED, "credit_denied"),
    "expired": _fixed(FinanceApplicationStatus.CANCELLED),
    "cancelled": _fixed(FinanceApplicationStatus.CANCELLED),
    "creditFrozen": _fixed(FinanceApplicationStatus.PENDING),
    "accountCreated": _account_created,
    "statusChanged": _status_changed,
    "contractSent": _contract("sent", None),
    # Signed contracts still wait on lender countersignature.
    "contractSigned": _contract("signed", FinanceApplicationStatus.CONDITIONAL),
    "contractApproved": _contract("approved", FinanceApplicationStatus.APPROVED),
    "contractRejected": _contract("rejected", FinanceApplicationStatus.DENIED),
    "stipulationCreated": _stipulation_created,
    "stipulationCompleted": _stipulation_completed,
    "fundingApproved": _funding("funding_approved"),
    "fundingCompleted": _funding("funded"),
    "milestoneAchieved": _milestone_achieved,
    "quoteVoided": _quote_voided,
}


async def _find_by_reference(db: AsyncSession, provider: str, reference: str) -> FinanceApplication | None:
    try:
        proposal_id = UUID(reference)
    except ValueError:
        return None
    stmt = (
        select(FinanceApplication)
        .options(selectinload(FinanceApplication.proposal))
        .where(FinanceApplication.proposal_id == proposal_id, FinanceApplication.lender_id == provider)
        .order_by(FinanceApplication.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def resolve_application(
    db: AsyncSession, provider: str, event: WebhookEventData
) -> FinanceApplication | None:
    """Look up by lender account id, then by our proposal id sent as the account reference."""
    if event.account_id:
        application = await finance_applications.get_application_by_account(db, event.account_id, provider)
        if application is not None:
            return application
    if event.account_reference:
        application = await _find_by_reference(db, provider, event.account_reference)
        if application is not None:
            if not application.external_application_id and event.account_id:
                application.external_application_id = event.account_id
            return application
    return None


async def _already_processed(db: AsyncSession, provider: str, event_id: str | None) -> bool:
    if not event_id:
        return False
    stmt = select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def _notify(db: AsyncSession, application: FinanceApplication, event_name: str) -> None:
    proposal = application.proposal
    try:
        await notifications.send_customer_status_email(application, proposal, application.status)
    except notifications.EmailNotConfiguredError:
        logger.info("Email is not configured; skipping finance notifications")
        return
    except Exception as exc:
        logger.warning("Customer finance notification failed application=%s: %s", application.id, exc)
    if proposal is None:
        return
    try:
        await notifications.send_admin_status_email(db, application, proposal, application.status, event_name)
    except Exception as exc:
        logger.warning("Admin finance notification failed application=%s: %s", application.id, exc)


async def handle_webhook(
    db: AsyncSession,
    provider: str,
    payload: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply one lender callback and return the acknowledgement body.

    Unknown applications and unknown events are acknowledged, not rejected,
    so the sender does not retry them forever.
    """
    now = now or datetime.now(timezone.utc)
    set_lender_id(provider)
    event = normalize_event(payload)

    if await _already_processed(db, provider, event.event_id):
        logger.info("Duplicate webhook event %s from %s; skipping", event.event_id, provider)
        return _already_processed_ack(event)

    record = WebhookEvent(
        provider=provider,
        event_id=event.event_id,
        event_type=event.name,
        payload=redact_sensitive_data(dict(payload)),
        status="RECEIVED",
    )
    db.add(record)

    application = await resolve_application(db, provider, event)
    if application is None:
        logger.info(
            "Webhook %s for unknown account=%s reference=%s", event.name, event.account_id, event.account_reference
        )
        record.status = "IGNORED"
        record.processed_at = now
        if not await _commit_event(db):
            return _already_processed_ack(event)
        return {"received": True, "event": event.name, "message": "Application not found"}

    handler = EVENT_HANDLERS.get(event.name)
    if handler is None:
        logger.info("Ignoring unsupported webhook event %s for application=%s", event.name, application.id)
        outcome = EventOutcome()
    else:
        outcome = handler(event, application, now)

    previous = application.status
    if outcome.status is not None:
        application.status = outcome.status.value
    update = dict(outcome.update)
    update["last_webhook"] = {
        "event": event.name,
        "event_id": event.event_id,
        "status": event.status,
        "received_at": now.isoformat(),
        "data": redact_sensitive_data(event.data),
    }
    application.response_data = merge_response_data(application.response_data, update)
    application.updated_at = now
    db.add(application)

    record.status = "PROCESSED"
    record.processed_at = now
    record.finance_application_id = application.id

    status_changed = application.status != previous
    if status_changed:
        org_id = application.proposal.org_id if application.proposal is not None else settings.default_org_id
        audit.record_audit_log(
            db,
            deps.TenantContext(org_id=org_id),
            actor_id=None,
            actor_type="webhook",
            action="finance_application.webhook_status",
            resource_type="finance_application",
            resource_id=str(application.id),
            old_value={"status": previous},
            new_value={"status": application.status, "event": event.name},
        )
    if not await _commit_event(db):
        return _already_processed_ack(event)
    logger.info(
        "Webhook %s applied application=%s status %s -> %s", event.name, application.id, previous, application.status
    )

    if status_changed:
        await _notify(db, application, event.name)
    return {
        "received": True,
        "applicationId": str(application.id),
        "status": application.status,
        "event": event.name,
    }


def _already_processed_ack(event: WebhookEventData) -> dict[str, Any]:
    return {"received": True, "event": event.name, "message": "Event already processed"}


async def _commit_event(db: AsyncSession) -> bool:
    """Commit the event; ``False`` when a concurrent delivery already recorded it."""
    try:
        await db.commit()
    except IntegrityError:
        # Rollback expires loaded rows; callers must not touch them afterwards.
        await db.rollback()
        logger.info("Webhook event already recorded by a concurrent delivery")
        return False
    return True
