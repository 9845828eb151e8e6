# civic_core/documents/tests/test_numbering.py
from datetime import date

import pytest

from civic_core.documents.models import DocumentNumberFormat, DocumentSequence, DocumentType
from civic_core.documents.numbering import next_document_number

pytestmark = pytest.mark.django_db


def test_quote_numbers_are_sequential_within_a_year(conf):
    today = date(2026, 3, 1)

    first = next_document_number(DocumentType.QUOTE, today=today, conf=conf)
    second = next_document_number(DocumentType.QUOTE, today=today, conf=conf)

    assert first == "DV-2026-00001"
    assert second == "DV-2026-00002"


def test_each_document_type_has_its_own_counter(conf):
    today = date(2026, 3, 1)

    next_document_number(DocumentType.QUOTE, today=today, conf=conf)
    next_document_number(DocumentType.QUOTE, today=today, conf=conf)

    assert next_document_number(DocumentType.ORDER, today=today, conf=conf) == "BC-2026-00001"
    assert next_document_number(DocumentType.INVOICE, today=today, conf=conf) == "FA-2026-00001"


def test_counter_restarts_every_year(conf):
    assert next_document_number(DocumentType.INVOICE, today=date(2026, 12, 31), conf=conf) == "FA-2026-00001"
    assert next_document_number(DocumentType.INVOICE, today=date(2026, 12, 31), conf=conf) == "FA-2026-00002"
    assert next_document_number(DocumentType.INVOICE, today=date(2027, 1, 1), conf=conf) == "FA-2027-00001"

    assert DocumentSequence.objects.get(sequence_key="FA", year=2026).last_number == 2
    assert DocumentSequence.objects.get(sequence_key="FA", year=2027).last_number == 1


def test_active_number_format_changes_display_not_counter(conf):
    next_document_number(DocumentType.QUOTE, today=date(2026, 3, 1), conf=conf)

    DocumentNumberFormat.objects.create(
        code="eng",
        name="Engagement style",
        document_type=DocumentType.QUOTE,
        prefix="ENG",
        sequence_digits=4,
        include_month=True,
        is_default=True,
    )

    assert next_document_number(DocumentType.QUOTE, today=date(2026, 3, 1), conf=conf) == "ENG-2026-03-0002"


def test_first_number_of_the_year_survives_a_concurrent_insert(conf, monkeypatch):
    """Another transaction creates the year's row between our lookup and our insert."""
    manager = DocumentSequence.objects
    real_select_for_update = manager.select_for_update
    lookups = []

    class StaleLookup:
        def filter(self, **kwargs):
            DocumentSequence(last_number=7, **kwargs).save()
            return manager.none()

    def select_for_update():
        lookups.append(1)
        if len(lookups) == 1:
            return StaleLookup()
        return real_select_for_update()

    monkeypatch.setattr(manager, "select_for_update", select_for_update)

    number = next_document_number(DocumentType.ORDER, today=date(2026, 1, 2), conf=conf)

    assert number == "BC-2026-00008"
    assert len(lookups) == 2
    assert DocumentSequence.objects.filter(sequence_key="BC", year=2026).count() == 1
    assert DocumentSequence.objects.get(sequence_key="BC", year=2026).last_number == 8
