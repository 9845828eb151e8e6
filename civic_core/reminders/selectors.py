# civic_core/reminders/selectors.py
from __future__ import annotations

from uuid import UUID

from django.db.models import QuerySet

from civic_core.reminders.models import RenewalReminder


def reminders_filtered(
    *,
    tenant_id: UUID | None = None,
    status: str | None = None,
    context: str | None = None,
) -> QuerySet[RenewalReminder]:
    qs = RenewalReminder.objects.select_related("tenant").order_by("-scheduled_for", "reminder_level")
    if tenant_id:
        qs = qs.filter(tenant_id=tenant_id)
    if status:
        qs = qs.filter(status=status)
    if context:
        qs = qs.filter(context=context)
    return qs
