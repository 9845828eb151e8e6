# civic_core/tenants/models.py
import uuid
from django.db import models

from civic_core.catalog.models import BillingInterval, Plan


class TenantType(models.TextChoices):
    MAIRIE = "MAIRIE", "Mairie"
    EPCI = "EPCI", "EPCI"
    ASSOCIATION = "ASSOCIATION", "Association"


class LifecycleStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    SUSPENDED = "SUSPENDED", "Suspended"
    ARCHIVED = "ARCHIVED", "Archived"


class BillingStatus(models.TextChoices):
    TRIAL = "TRIAL", "Trial"
    ACTIVE = "ACTIVE", "Active"
    SUSPENDED = "SUSPENDED", "Suspended"
    CANCELLED = "CANCELLED", "Cancelled"


class Tenant(models.Model):
    """
    Customer organisation (city hall, inter-municipal body, association).
    Root of subscriptions and renewal reminders.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=255)
    slug = models.SlugField(max_length=64, unique=True)
    tenant_type = models.CharField(max_length=16, choices=TenantType.choices, default=TenantType.MAIRIE)

    contact_name = models.CharField(max_length=255, blank=True)
    contact_email = models.EmailField(blank=True)
    siret = models.CharField(max_length=14, blank=True)
    address = models.TextField(blank=True)

    lifecycle_status = models.CharField(
        max_length=16,
        choices=LifecycleStatus.choices,
        default=LifecycleStatus.ACTIVE,
        db_index=True,
    )
    billing_status = models.CharField(
        max_length=16,
        choices=BillingStatus.choices,
        default=BillingStatus.TRIAL,
        db_index=True,
    )
    trial_ends_at = models.DateTimeField(null=True, blank=True)

    plan = models.ForeignKey(Plan, on_delete=models.PROTECT, related_name="tenants", null=True, blank=True)
    billing_interval = models.CharField(max_length=16, choices=BillingInterval.choices, null=True, blank=True)

    # onboarding flags, internal notes, etc.
    metadata = models.JSONField(default=dict, blank=True)

    archived_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "tenants_tenant"
        indexes = [
            models.Index(fields=["lifecycle_status", "billing_status"]),
            models.Index(fields=["created_at"]),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.slug})"

    @property
    def is_archived(self) -> bool:
        return self.lifecycle_status == LifecycleStatus.ARCHIVED
