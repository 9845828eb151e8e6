# civic_core/invoices/api/views.py
from __future__ import annotations

from uuid import UUID

from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from civic_core.common.api.pagination import paginate
from civic_core.documents.pdf import get_pdf_renderer, pdf_filename
from civic_core.invoices.api.serializers import (
    InvoiceCreateSerializer,
    InvoiceSerializer,
    PaymentSerializer,
    RecordPaymentSerializer,
)
from civic_core.invoices.models import Invoice
from civic_core.invoices.selectors import invoices_filtered
from civic_core.invoices.services import InvoiceService
from civic_core.mandates.api.serializers import InvoiceEmailSerializer, ReasonSerializer


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise DRFValidationError({field_name: "Invalid UUID"})


def _actor(request) -> int | None:
    return getattr(request.user, "id", None)


class InvoiceViewSet(viewsets.GenericViewSet):
    """
    Card-rail invoices with line items:
    - list/retrieve (status=OVERDUE supported as a computed filter)
    - create from an accepted card quote
    - send, payments, cancel, email
    - pdf
    """
    serializer_class = InvoiceSerializer
    queryset = Invoice.objects.none()

    @extend_schema(
        tags=["Invoices"],
        responses={200: InvoiceSerializer(many=True)},
        parameters=[
            OpenApiParameter(
                name="status",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="DRAFT, SENT, PAID, CANCELLED or OVERDUE (computed).",
            ),
            OpenApiParameter(name="tenant", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="search", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qs = invoices_filtered(
            status=request.query_params.get("status") or None,
            tenant_id=_uuid_or_none(request.query_params.get("tenant"), "tenant"),
            search=request.query_params.get("search") or None,
        )
        return paginate(request, qs, InvoiceSerializer)

    @extend_schema(tags=["Invoices"], responses={200: InvoiceSerializer})
    def retrieve(self, request, pk=None):
        inv = invoices_filtered().get(id=UUID(str(pk)))
        return Response(InvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Invoices"], request=InvoiceCreateSerializer, responses={201: InvoiceSerializer})
    def create(self, request):
        ser = InvoiceCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.create_from_quote(quote_id=ser.validated_data["quote_id"], actor_user_id=_actor(request))
        return Response(InvoiceSerializer(inv).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Invoices"], request=None, responses={200: InvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        inv = InvoiceService.send(invoice_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(InvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Invoices"], request=RecordPaymentSerializer, responses={201: PaymentSerializer})
    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        ser = RecordPaymentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        payment = InvoiceService.record_payment(
            invoice_id=UUID(str(pk)),
            amount=ser.validated_data["amount"],
            method=ser.validated_data["method"],
            status=ser.validated_data["status"],
            reference=ser.validated_data.get("reference", ""),
            notes=ser.validated_data.get("notes", ""),
            actor_user_id=_actor(request),
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Invoices"], request=ReasonSerializer, responses={200: InvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.cancel(
            invoice_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(InvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Invoices"], request=InvoiceEmailSerializer, responses={200: InvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="email")
    def email(self, request, pk=None):
        ser = InvoiceEmailSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.email_to_client(
            invoice_id=UUID(str(pk)),
            to=ser.validated_data.get("to", ""),
            message=ser.validated_data.get("message") or None,
            actor_user_id=_actor(request),
        )
        return Response(InvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Invoices"], responses={(200, "application/pdf"): OpenApiTypes.BINARY})
    @action(detail=True, methods=["get"], url_path="pdf")
    def pdf(self, request, pk=None):
        inv = invoices_filtered().get(id=UUID(str(pk)))
        resp = HttpResponse(get_pdf_renderer().render_invoice(inv), content_type="application/pdf")
        resp["Content-Disposition"] = f'inline; filename="{pdf_filename(inv.invoice_number)}"'
        return resp
