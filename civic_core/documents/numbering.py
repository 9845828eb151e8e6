# civic_core/documents/numbering.py
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from civic_core.common.conf import BillingSettings, load_billing_settings
from civic_core.documents.models import DocumentNumberFormat, DocumentSequence, SEQUENCE_KEYS

logger = logging.getLogger(__name__)


def _active_format(document_type: str) -> Optional[DocumentNumberFormat]:
    qs = DocumentNumberFormat.objects.filter(document_type=document_type, is_active=True)
    return qs.filter(is_default=True).first() or qs.order_by("created_at").first()


def _locked_sequence(sequence_key: str, year: int) -> DocumentSequence:
    """
    Row-locked counter. The first number of a year inserts the row; a concurrent
    insert loses on the unique constraint and falls back to locking the winner's row.
    """
    seq = DocumentSequence.objects.select_for_update().filter(sequence_key=sequence_key, year=year).first()
    if seq is not None:
        return seq

    try:
        with transaction.atomic():
            return DocumentSequence.objects.create(sequence_key=sequence_key, year=year, last_number=0)
    except IntegrityError:
        return DocumentSequence.objects.select_for_update().get(sequence_key=sequence_key, year=year)


def format_document_number(
    *,
    sequence_key: str,
    number: int,
    on: date,
    fmt: Optional[DocumentNumberFormat] = None,
    digits: int = 5,
) -> str:
    prefix = (fmt.prefix if fmt and fmt.prefix else sequence_key)
    sep = fmt.separator if fmt and fmt.separator else "-"
    width = fmt.sequence_digits if fmt and fmt.sequence_digits else digits

    parts = [prefix, f"{on.year:04d}"]
    if fmt and fmt.include_month:
        parts.append(f"{on.month:02d}")
    parts.append(str(number).zfill(width))
    return sep.join(parts)


@transaction.atomic
def next_document_number(
    document_type: str,
    *,
    today: Optional[date] = None,
    conf: Optional[BillingSettings] = None,
) -> str:
    """
    Allocate the next number for a document type, e.g. "DV-2026-00042".
    Counters restart every year and are never shared between document types.
    """
    conf = conf or load_billing_settings()
    today = today or timezone.localdate()
    sequence_key = SEQUENCE_KEYS[document_type]

    seq = _locked_sequence(sequence_key, today.year)
    seq.last_number += 1
    seq.save(update_fields=["last_number", "updated_at"])

    number = format_document_number(
        sequence_key=sequence_key,
        number=seq.last_number,
        on=today,
        fmt=_active_format(document_type),
        digits=conf.number_digits,
    )
    logger.debug("Allocated document number %s", number)
    return number
