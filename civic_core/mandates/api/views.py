# civic_core/mandates/api/views.py
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
from civic_core.mandates.api.serializers import (
    InvoiceEmailSerializer,
    MandateInvoiceSerializer,
    MandateOrderSerializer,
    MarkPaidSerializer,
    PurchaseOrderSerializer,
    ReasonSerializer,
)
from civic_core.mandates.models import MandateInvoice, MandateOrder
from civic_core.mandates.selectors import invoices_filtered, orders_filtered
from civic_core.mandates.services import InvoiceService, OrderService


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        raise DRFValidationError({field_name: "Invalid UUID"})


def _actor(request) -> int | None:
    return getattr(request.user, "id", None)


def _pdf_response(content: bytes, number: str) -> HttpResponse:
    resp = HttpResponse(content, content_type="application/pdf")
    resp["Content-Disposition"] = f'inline; filename="{pdf_filename(number)}"'
    return resp


class MandateOrderViewSet(viewsets.GenericViewSet):
    """
    Mandate orders (bons de commande):
    - list/retrieve
    - purchase_order, validate, invoice, reject, cancel
    - pdf
    """
    serializer_class = MandateOrderSerializer
    queryset = MandateOrder.objects.none()

    @extend_schema(
        tags=["Mandates"],
        responses={200: MandateOrderSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="tenant", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="search", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qs = orders_filtered(
            status=request.query_params.get("status") or None,
            tenant_id=_uuid_or_none(request.query_params.get("tenant"), "tenant"),
            search=request.query_params.get("search") or None,
        )
        return paginate(request, qs, MandateOrderSerializer)

    @extend_schema(tags=["Mandates"], responses={200: MandateOrderSerializer})
    def retrieve(self, request, pk=None):
        order = orders_filtered().get(id=UUID(str(pk)))
        return Response(MandateOrderSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=PurchaseOrderSerializer, responses={200: MandateOrderSerializer})
    @action(detail=True, methods=["post"], url_path="purchase_order")
    def purchase_order(self, request, pk=None):
        ser = PurchaseOrderSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        order = OrderService.attach_purchase_order(
            order_id=UUID(str(pk)),
            purchase_order_number=ser.validated_data["purchase_order_number"],
            engagement_number=ser.validated_data.get("engagement_number", ""),
            service_code=ser.validated_data.get("service_code", ""),
            actor_user_id=_actor(request),
        )
        return Response(MandateOrderSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=None, responses={200: MandateOrderSerializer})
    @action(detail=True, methods=["post"], url_path="validate")
    def validate(self, request, pk=None):
        order = OrderService.validate(order_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(MandateOrderSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=None, responses={200: MandateInvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="invoice")
    def invoice(self, request, pk=None):
        inv = OrderService.invoice(order_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=ReasonSerializer, responses={200: MandateOrderSerializer})
    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        order = OrderService.reject(
            order_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(MandateOrderSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=ReasonSerializer, responses={200: MandateOrderSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        order = OrderService.cancel(
            order_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(MandateOrderSerializer(order).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], responses={(200, "application/pdf"): OpenApiTypes.BINARY})
    @action(detail=True, methods=["get"], url_path="pdf")
    def pdf(self, request, pk=None):
        order = orders_filtered().get(id=UUID(str(pk)))
        return _pdf_response(get_pdf_renderer().render_mandate_order(order), order.order_number)


class MandateInvoiceViewSet(viewsets.GenericViewSet):
    """
    Mandate invoices:
    - list/retrieve (status=OVERDUE supported as a computed filter)
    - send, record_mandate, mark_paid, cancel, email
    - pdf
    """
    serializer_class = MandateInvoiceSerializer
    queryset = MandateInvoice.objects.none()

    @extend_schema(
        tags=["Mandates"],
        responses={200: MandateInvoiceSerializer(many=True)},
        parameters=[
            OpenApiParameter(
                name="status",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="DRAFT, SENT, PAID, CANCELLED or OVERDUE (computed).",
            ),
            OpenApiParameter(name="tenant", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qs = invoices_filtered(
            status=request.query_params.get("status") or None,
            tenant_id=_uuid_or_none(request.query_params.get("tenant"), "tenant"),
        )
        return paginate(request, qs, MandateInvoiceSerializer)

    @extend_schema(tags=["Mandates"], responses={200: MandateInvoiceSerializer})
    def retrieve(self, request, pk=None):
        inv = invoices_filtered().get(id=UUID(str(pk)))
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=None, responses={200: MandateInvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="send")
    def send(self, request, pk=None):
        inv = InvoiceService.send(invoice_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=None, responses={200: MandateInvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="record_mandate")
    def record_mandate(self, request, pk=None):
        inv = InvoiceService.record_mandate(invoice_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=MarkPaidSerializer, responses={200: MandateInvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="mark_paid")
    def mark_paid(self, request, pk=None):
        ser = MarkPaidSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.mark_paid(
            invoice_id=UUID(str(pk)),
            payment_reference=ser.validated_data.get("payment_reference", ""),
            paid_at=ser.validated_data.get("paid_at"),
            actor_user_id=_actor(request),
        )
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=ReasonSerializer, responses={200: MandateInvoiceSerializer})
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        ser = ReasonSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        inv = InvoiceService.cancel(
            invoice_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], request=InvoiceEmailSerializer, responses={200: MandateInvoiceSerializer})
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
        return Response(MandateInvoiceSerializer(inv).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Mandates"], responses={(200, "application/pdf"): OpenApiTypes.BINARY})
    @action(detail=True, methods=["get"], url_path="pdf")
    def pdf(self, request, pk=None):
        inv = invoices_filtered().get(id=UUID(str(pk)))
        return _pdf_response(get_pdf_renderer().render_mandate_invoice(inv), inv.invoice_number)
