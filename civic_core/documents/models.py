# civic_core/documents/models.py
from __future__ import annotations

from django.db import models

from civic_core.common.models import TimeStampedModel, UUIDModel


class DocumentType(models.TextChoices):
    QUOTE = "QUOTE", "Devis"
    ORDER = "ORDER", "Bon de commande"
    INVOICE = "INVOICE", "Facture"


# Stable counter keys. Display prefixes may be reconfigured, counters never move.
SEQUENCE_KEYS = {
    DocumentType.QUOTE: "DV",
    DocumentType.ORDER: "BC",
    DocumentType.INVOICE: "FA",
}


class DocumentSequence(TimeStampedModel):
    """
    The only shared counter in the system: one row per (sequence_key, year),
    incremented under a row lock.
    """
    sequence_key = models.CharField(max_length=8)
    year = models.PositiveIntegerField()
    last_number = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "documents_document_sequence"
        constraints = [
            models.UniqueConstraint(fields=["sequence_key", "year"], name="uq_document_sequence_key_year"),
        ]

    def __str__(self) -> str:
        return f"{self.sequence_key}-{self.year}: {self.last_number}"


class DocumentNumberFormat(UUIDModel):
    """
    Optional display format per document type (e.g. "ENG-2026-03-0001").
    Without an active format the number is <KEY>-<YYYY>-<N padded>.
    """
    code = models.SlugField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    document_type = models.CharField(max_length=16, choices=DocumentType.choices, db_index=True)

    prefix = models.CharField(max_length=16, blank=True)
    separator = models.CharField(max_length=4, default="-")
    sequence_digits = models.PositiveSmallIntegerField(null=True, blank=True)
    include_month = models.BooleanField(default=False)

    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "documents_document_number_format"
        constraints = [
            models.UniqueConstraint(
                fields=["document_type"],
                condition=models.Q(is_default=True),
                name="uq_document_number_format_default_per_type",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.document_type}: {self.code}"
