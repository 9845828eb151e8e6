# civic_core/documents/admin.py
from __future__ import annotations

from django.contrib import admin

from civic_core.documents.models import DocumentNumberFormat, DocumentSequence


@admin.register(DocumentSequence)
class DocumentSequenceAdmin(admin.ModelAdmin):
    list_display = ("sequence_key", "year", "last_number", "updated_at")
    list_filter = ("sequence_key", "year")
    ordering = ("-year", "sequence_key")
    readonly_fields = ("sequence_key", "year", "last_number", "created_at", "updated_at")


@admin.register(DocumentNumberFormat)
class DocumentNumberFormatAdmin(admin.ModelAdmin):
    list_display = ("code", "document_type", "prefix", "separator", "sequence_digits", "include_month", "is_default", "is_active")
    list_filter = ("document_type", "is_default", "is_active")
    search_fields = ("code", "name", "prefix")
    ordering = ("document_type", "code")
