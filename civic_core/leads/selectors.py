# civic_core/leads/selectors.py
from __future__ import annotations

from django.db.models import Q, QuerySet

from civic_core.leads.models import Lead


def leads_filtered(*, stage: str | None = None, search: str | None = None) -> QuerySet[Lead]:
    qs = Lead.objects.all().order_by("-created_at")
    if stage:
        qs = qs.filter(pipeline_stage=stage)
    if search:
        qs = qs.filter(Q(organisation_name__icontains=search) | Q(email__icontains=search))
    return qs
