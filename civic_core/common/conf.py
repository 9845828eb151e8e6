# civic_core/common/conf.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from django.conf import settings


@dataclass(frozen=True)
class ReminderLevel:
    level: int
    days_before_expiry: int


@dataclass(frozen=True)
class BillingSettings:
    """
    Explicit engine configuration.

    Built once from settings.CIVIC_BILLING and handed to services / the scheduler,
    so tests can construct their own instance instead of patching globals.
    """
    quote_validity_days: int = 30
    default_tax_rate: Decimal = Decimal("20.00")
    vat_applicable: bool = True
    vat_exemption_notice: str = "TVA non applicable, art. 293 B du CGI"
    number_digits: int = 5
    payment_terms_days: int = 30
    mandate_duration_months: int = 12
    grace_period_days: int = 15
    reminder_levels: Tuple[ReminderLevel, ...] = (
        ReminderLevel(1, 60),
        ReminderLevel(2, 30),
        ReminderLevel(3, 15),
    )
    reminder_max_retries: int = 3
    reminder_interval_seconds: int = 3600
    card_webhook_secret: str = ""
    siret_lookup_url: str = "https://api.insee.fr/entreprises/sirene/V3.11/siret/{siret}"
    siret_lookup_token: str = ""
    siret_lookup_timeout: int = 5
    email_sender: str = "civic_core.notifications.email.DjangoEmailSender"
    pdf_renderer: str = "civic_core.documents.pdf.WeasyPrintRenderer"
    emitter: Dict[str, str] = field(default_factory=dict)

    @property
    def payment_terms_label(self) -> str:
        return f"Paiement à {self.payment_terms_days} jours"

    def levels_by_lead_time(self) -> Tuple[ReminderLevel, ...]:
        """Levels ordered from the earliest reminder (largest lead) to the last one."""
        return tuple(sorted(self.reminder_levels, key=lambda l: l.days_before_expiry, reverse=True))


def _levels(raw: Any) -> Tuple[ReminderLevel, ...]:
    levels = []
    for item in raw or ():
        if isinstance(item, ReminderLevel):
            levels.append(item)
        else:
            level, days = item
            levels.append(ReminderLevel(int(level), int(days)))
    return tuple(levels)


def load_billing_settings(overrides: Optional[Dict[str, Any]] = None) -> BillingSettings:
    raw: Dict[str, Any] = dict(getattr(settings, "CIVIC_BILLING", {}) or {})
    raw.update(overrides or {})

    defaults = BillingSettings()
    kwargs: Dict[str, Any] = {
        "quote_validity_days": int(raw.get("QUOTE_VALIDITY_DAYS", defaults.quote_validity_days)),
        "default_tax_rate": Decimal(str(raw.get("DEFAULT_TAX_RATE", defaults.default_tax_rate))).quantize(Decimal("0.01")),
        "vat_applicable": bool(raw.get("VAT_APPLICABLE", defaults.vat_applicable)),
        "vat_exemption_notice": raw.get("VAT_EXEMPTION_NOTICE", defaults.vat_exemption_notice),
        "number_digits": int(raw.get("NUMBER_DIGITS", defaults.number_digits)),
        "payment_terms_days": int(raw.get("PAYMENT_TERMS_DAYS", defaults.payment_terms_days)),
        "mandate_duration_months": int(raw.get("MANDATE_DURATION_MONTHS", defaults.mandate_duration_months)),
        "grace_period_days": int(raw.get("GRACE_PERIOD_DAYS", defaults.grace_period_days)),
        "reminder_max_retries": int(raw.get("REMINDER_MAX_RETRIES", defaults.reminder_max_retries)),
        "reminder_interval_seconds": int(raw.get("REMINDER_INTERVAL_SECONDS", defaults.reminder_interval_seconds)),
        "card_webhook_secret": raw.get("CARD_WEBHOOK_SECRET", defaults.card_webhook_secret) or "",
        "siret_lookup_url": raw.get("SIRET_LOOKUP_URL", defaults.siret_lookup_url),
        "siret_lookup_token": raw.get("SIRET_LOOKUP_TOKEN", defaults.siret_lookup_token) or "",
        "siret_lookup_timeout": int(raw.get("SIRET_LOOKUP_TIMEOUT", defaults.siret_lookup_timeout)),
        "email_sender": raw.get("EMAIL_SENDER", defaults.email_sender),
        "pdf_renderer": raw.get("PDF_RENDERER", defaults.pdf_renderer),
        "emitter": dict(raw.get("EMITTER") or {}),
    }
    if "REMINDER_LEVELS" in raw:
        kwargs["reminder_levels"] = _levels(raw["REMINDER_LEVELS"])

    return BillingSettings(**kwargs)
