# civic_core/leads/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from civic_core.common.api.pagination import paginate
from civic_core.common.permissions import SalesPipelinePermission
from civic_core.leads.api.serializers import (
    ConvertSerializer,
    LeadCreateSerializer,
    LeadSerializer,
    StageMoveSerializer,
)
from civic_core.leads.models import Lead
from civic_core.leads.selectors import leads_filtered
from civic_core.leads.services import LeadService
from civic_core.tenants.api.serializers import TenantSerializer
from civic_core.tenants.services import DEFAULT_TRIAL_DAYS, TenantService


def _actor(request) -> int | None:
    return getattr(request.user, "id", None)


class LeadViewSet(viewsets.GenericViewSet):
    """
    Commercial pipeline:
    - list/retrieve/create
    - stage (staff move), contacted, lost
    - public_token, convert (creates the tenant)
    """
    serializer_class = LeadSerializer
    queryset = Lead.objects.none()
    permission_classes = [SalesPipelinePermission]

    @extend_schema(
        tags=["Leads"],
        responses={200: LeadSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="stage", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="search",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Matches organisation name or email.",
            ),
        ],
    )
    def list(self, request):
        qs = leads_filtered(
            stage=request.query_params.get("stage") or None,
            search=request.query_params.get("search") or None,
        )
        return paginate(request, qs, LeadSerializer)

    @extend_schema(tags=["Leads"], responses={200: LeadSerializer})
    def retrieve(self, request, pk=None):
        lead = Lead.objects.get(id=UUID(str(pk)))
        return Response(LeadSerializer(lead).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Leads"], request=LeadCreateSerializer, responses={201: LeadSerializer})
    def create(self, request):
        ser = LeadCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        lead = LeadService.create(**ser.validated_data, actor_user_id=_actor(request))
        return Response(LeadSerializer(lead).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Leads"], request=StageMoveSerializer, responses={200: LeadSerializer})
    @action(detail=True, methods=["post"], url_path="stage")
    def stage(self, request, pk=None):
        ser = StageMoveSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        lead = LeadService.move_to_stage(
            lead_id=UUID(str(pk)),
            stage=ser.validated_data["stage"],
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=_actor(request),
        )
        return Response(LeadSerializer(lead).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Leads"], request=None, responses={200: LeadSerializer})
    @action(detail=True, methods=["post"], url_path="contacted")
    def contacted(self, request, pk=None):
        lead = LeadService.mark_contacted(lead_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(LeadSerializer(lead).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Leads"], request=OpenApiTypes.OBJECT, responses={200: LeadSerializer})
    @action(detail=True, methods=["post"], url_path="lost")
    def lost(self, request, pk=None):
        reason = ""
        if isinstance(request.data, dict):
            reason = request.data.get("reason", "") or ""

        lead = LeadService.mark_lost(lead_id=UUID(str(pk)), reason=reason, actor_user_id=_actor(request))
        return Response(LeadSerializer(lead).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Leads"], request=None, responses={200: LeadSerializer})
    @action(detail=True, methods=["post"], url_path="public_token")
    def public_token(self, request, pk=None):
        lead = LeadService.generate_public_token(lead_id=UUID(str(pk)))
        return Response(LeadSerializer(lead).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Leads"], request=ConvertSerializer, responses={201: TenantSerializer})
    @action(detail=True, methods=["post"], url_path="convert")
    def convert(self, request, pk=None):
        ser = ConvertSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        trial_days = ser.validated_data.get("trial_days", DEFAULT_TRIAL_DAYS)
        tenant = TenantService.create_from_lead(
            lead_id=UUID(str(pk)),
            slug=ser.validated_data.get("slug", ""),
            trial_days=trial_days,
            actor_user_id=_actor(request),
        )
        return Response(TenantSerializer(tenant).data, status=status.HTTP_201_CREATED)
