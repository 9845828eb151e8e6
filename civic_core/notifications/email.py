# civic_core/notifications/email.py
"""
Outbound email collaborator.

Every send returns True/False; delivery errors are logged, never raised.
Callers decide whether a False is fatal (staff-facing sends) or retried (reminders).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils.html import strip_tags
from django.utils.module_loading import import_string

from civic_core.common.conf import BillingSettings, load_billing_settings

logger = logging.getLogger(__name__)

FRENCH_MONTHS = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]


def format_french_date(d: date) -> str:
    return f"{d.day} {FRENCH_MONTHS[d.month - 1]} {d.year}"


def _plural_days(n: int) -> str:
    return f"{n} jour{'s' if n > 1 else ''}"


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mimetype: str = "application/pdf"


class EmailSender:
    """Interface."""

    def send(self, to: str, subject: str, html: str, attachments: Sequence[Attachment] = ()) -> bool:
        raise NotImplementedError


class DjangoEmailSender(EmailSender):
    def send(self, to: str, subject: str, html: str, attachments: Sequence[Attachment] = ()) -> bool:
        if not to:
            logger.error("Email '%s' has no recipient", subject)
            return False
        try:
            msg = EmailMultiAlternatives(
                subject=subject,
                body=strip_tags(html),
                from_email=settings.DEFAULT_FROM_EMAIL,
                to=[to],
            )
            msg.attach_alternative(html, "text/html")
            for a in attachments:
                msg.attach(a.filename, a.content, a.mimetype)
            sent = msg.send(fail_silently=False)
        except Exception as exc:
            logger.error("Failed to send '%s' to %s: %s", subject, to, exc)
            return False

        logger.info("Email '%s' sent to %s", subject, to)
        return sent == 1


def get_email_sender(conf: BillingSettings | None = None) -> EmailSender:
    conf = conf or load_billing_settings()
    return import_string(conf.email_sender)()


def _render(template: str, context: dict) -> str:
    return render_to_string(
        f"notifications/emails/{template}",
        {"site_url": getattr(settings, "SITE_URL", ""), **context},
    )


def send_trial_expiry_reminder(
    sender: EmailSender,
    *,
    to: str,
    tenant_name: str,
    expiry_date: date,
    days_remaining: int,
) -> bool:
    html = _render(
        "trial_expiry.html",
        {
            "tenant_name": tenant_name,
            "expiry_date": format_french_date(expiry_date),
            "days_remaining": days_remaining,
            "urgent": days_remaining <= 2,
        },
    )
    subject = f"Votre période d'essai expire dans {_plural_days(days_remaining)}"
    return sender.send(to, subject, html)


def send_subscription_expiry_reminder(
    sender: EmailSender,
    *,
    to: str,
    tenant_name: str,
    plan_name: str,
    expiry_date: date,
    days_remaining: int,
    grace_period_days: int = 15,
) -> bool:
    html = _render(
        "subscription_expiry.html",
        {
            "tenant_name": tenant_name,
            "plan_name": plan_name,
            "expiry_date": format_french_date(expiry_date),
            "days_remaining": days_remaining,
            "grace_period_days": grace_period_days,
            "urgent": days_remaining <= 2,
        },
    )
    subject = f"Votre abonnement {plan_name} expire dans {_plural_days(days_remaining)}"
    return sender.send(to, subject, html)


def send_quote_email(
    sender: EmailSender,
    *,
    to: str,
    quote,
    public_url: str = "",
    attachments: Iterable[Attachment] = (),
) -> bool:
    html = _render("quote.html", {"quote": quote, "public_url": public_url})
    subject = f"Votre devis {quote.quote_number}"
    return sender.send(to, subject, html, tuple(attachments))


def send_invoice_email(
    sender: EmailSender,
    *,
    to: str,
    invoice,
    attachments: Iterable[Attachment] = (),
    message: Optional[str] = None,
) -> bool:
    html = _render("invoice.html", {"invoice": invoice, "message": message or ""})
    subject = f"Facture {invoice.invoice_number}"
    return sender.send(to, subject, html, tuple(attachments))
