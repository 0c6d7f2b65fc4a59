"""Finance status emails sent through Resend."""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Iterable

import resend
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.models.finance_application import FinanceApplication
from app.models.org import Org
from app.models.proposal import Proposal
from app.models.user import User, UserRole
from app.schemas.finance import FinanceApplicationStatus

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(RuntimeError):
    pass


CUSTOMER_TEMPLATES: dict[str, tuple[str, str]] = {
    FinanceApplicationStatus.APPROVED.value: (
        "Your HVAC financing has been approved",
        "Good news, {name}. Your financing application has been approved. "
        "Your installer will reach out with next steps.",
    ),
    FinanceApplicationStatus.CONDITIONAL.value: (
        "Your HVAC financing is conditionally approved",
        "{name}, your financing application was approved with a few conditions. "
        "Your installer will help you complete the remaining items.",
    ),
    FinanceApplicationStatus.DENIED.value: (
        "An update on your HVAC financing application",
        "{name}, the lender was unable to approve your financing application at this time. "
        "You should receive a notice from the lender explaining the decision.",
    ),
}


def _wrap_html(body: str) -> str:
    return (
        '<div style="font-family:Arial,Helvetica,sans-serif;font-size:15px;line-height:1.5;color:#1f2937">'
        f"<p>{body}</p></div>"
    )


async def send_email(to: str | list[str], subject: str, html_content: str) -> dict:
    if not settings.resend_api_key:
        raise EmailNotConfiguredError("RESEND_API_KEY is not configured")
    recipients = [to] if isinstance(to, str) else list(to)
    resend.api_key = settings.resend_api_key
    params = {
        "from": settings.email_from,
        "to": recipients,
        "subject": subject,
        "html": html_content,
    }
    logger.info("Sending email subject=%r recipients=%s", subject, len(recipients))
    # The Resend SDK is synchronous.
    return await asyncio.to_thread(resend.Emails.send, params)


def customer_contact(proposal: Proposal | None, application: FinanceApplication) -> tuple[str | None, str]:
    customer = (proposal.customer_data if proposal is not None else None) or {}
    applicant = application.application_data or {}
    email = customer.get("email") or applicant.get("email")
    name = customer.get("name") or " ".join(
        part for part in (applicant.get("firstName"), applicant.get("lastName")) if part
    )
    return email, name or "there"


async def send_customer_status_email(
    application: FinanceApplication, proposal: Proposal | None, status: str
) -> bool:
    template = CUSTOMER_TEMPLATES.get(status)
    if template is None:
        return False
    email, name = customer_contact(proposal, application)
    if not email:
        logger.info("No customer email on application=%s; skipping notification", application.id)
        return False
    subject, body = template
    await send_email(email, subject, _wrap_html(body.format(name=html.escape(name))))
    return True


async def admin_recipients(db: AsyncSession, org_id: str) -> list[str]:
    stmt = select(User).where(
        User.org_id == org_id,
        User.role == UserRole.ADMIN.value,
        User.is_active.is_(True),
    )
    result = await db.execute(stmt)
    emails = [user.email for user in result.scalars().all() if user.email]
    org = await db.get(Org, org_id)
    if org is not None and org.notification_email:
        emails.append(org.notification_email)
    return sorted(set(emails))


def _admin_body(application: FinanceApplication, proposal: Proposal, status: str, event: str | None) -> str:
    link = f"{settings.app_base_url.rstrip('/')}/proposals/{proposal.id}"
    lines: Iterable[str] = (
        f"Finance application {html.escape(str(application.external_application_id or application.id))} "
        f"is now <strong>{html.escape(status)}</strong>.",
        f"Lender event: {html.escape(event or 'status update')}",
        f'<a href="{html.escape(link)}">Open proposal</a>',
    )
    return "<br/>".join(lines)


async def send_admin_status_email(
    db: AsyncSession,
    application: FinanceApplication,
    proposal: Proposal,
    status: str,
    event: str | None = None,
) -> bool:
    recipients = await admin_recipients(db, proposal.org_id)
    if not recipients:
        return False
    subject = f"Financing update: application {status.lower()}"
    await send_email(recipients, subject, _wrap_html(_admin_body(application, proposal, status, event)))
    return True
