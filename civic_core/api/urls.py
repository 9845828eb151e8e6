# civic_core/api/urls.py
from __future__ import annotations

from django.urls import path
from rest_framework.routers import DefaultRouter

from civic_core.audit.api.views import AuditEventViewSet
from civic_core.catalog.api.views import AddonViewSet, PlanViewSet
from civic_core.common.api.views import SiretValidateView
from civic_core.invoices.api.views import InvoiceViewSet
from civic_core.leads.api.views import LeadViewSet
from civic_core.mandates.api.views import MandateInvoiceViewSet, MandateOrderViewSet
from civic_core.quotes.api.views import PublicQuoteAcceptView, PublicQuoteView, QuoteViewSet
from civic_core.reminders.api.views import RenewalReminderViewSet
from civic_core.subscriptions.api.views import CardWebhookView, SubscriptionViewSet
from civic_core.tenants.api.views import TenantViewSet

router = DefaultRouter()

router.register(r"leads", LeadViewSet, basename="leads")
router.register(r"quotes", QuoteViewSet, basename="quotes")
router.register(r"mandates/orders", MandateOrderViewSet, basename="mandate-orders")
router.register(r"mandates/invoices", MandateInvoiceViewSet, basename="mandate-invoices")
router.register(r"invoices", InvoiceViewSet, basename="invoices")
router.register(r"subscriptions", SubscriptionViewSet, basename="subscriptions")
router.register(r"reminders", RenewalReminderViewSet, basename="reminders")
router.register(r"tenants", TenantViewSet, basename="tenants")
router.register(r"catalog/plans", PlanViewSet, basename="catalog-plans")
router.register(r"catalog/addons", AddonViewSet, basename="catalog-addons")
router.register(r"audit/events", AuditEventViewSet, basename="audit-events")

urlpatterns = [
    # Non-ViewSet endpoints
    path("billing/card-webhook/", CardWebhookView.as_view(), name="card-webhook"),
    path("siret/validate/", SiretValidateView.as_view(), name="siret-validate"),

    # Client self-service (token is the credential)
    path("public/quotes/<str:token>/", PublicQuoteView.as_view(), name="public-quote"),
    path("public/quotes/<str:token>/accept/", PublicQuoteAcceptView.as_view(), name="public-quote-accept"),

    # Router URLs last (so explicit paths win if ever overlapping)
    *router.urls,
]
