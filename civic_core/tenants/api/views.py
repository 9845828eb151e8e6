# civic_core/tenants/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from civic_core.common.api.pagination import paginate
from civic_core.tenants.api.serializers import TenantCreateSerializer, TenantSerializer
from civic_core.tenants.models import Tenant
from civic_core.tenants.selectors import get_tenant, tenant_qs
from civic_core.tenants.services import DEFAULT_TRIAL_DAYS, TenantService


def _actor(request) -> int | None:
    return getattr(request.user, "id", None)


class TenantViewSet(viewsets.GenericViewSet):
    """
    Tenants:
    - list/retrieve/create
    - suspend / reactivate / archive
    """
    serializer_class = TenantSerializer
    queryset = Tenant.objects.none()

    @extend_schema(
        tags=["Tenants"],
        responses={200: TenantSerializer(many=True)},
        parameters=[
            OpenApiParameter(
                name="lifecycle_status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False
            ),
            OpenApiParameter(name="billing_status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        qs = tenant_qs().order_by("name")
        lifecycle = request.query_params.get("lifecycle_status")
        billing = request.query_params.get("billing_status")
        if lifecycle:
            qs = qs.filter(lifecycle_status=lifecycle)
        if billing:
            qs = qs.filter(billing_status=billing)
        return paginate(request, qs, TenantSerializer)

    @extend_schema(tags=["Tenants"], responses={200: TenantSerializer})
    def retrieve(self, request, pk=None):
        return Response(TenantSerializer(get_tenant(tenant_id=UUID(str(pk)))).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Tenants"], request=TenantCreateSerializer, responses={201: TenantSerializer})
    def create(self, request):
        ser = TenantCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        d = ser.validated_data

        tenant = TenantService.create(
            name=d["name"],
            contact_email=d["contact_email"],
            slug=d.get("slug", ""),
            tenant_type=d.get("tenant_type"),
            contact_name=d.get("contact_name", ""),
            siret=d.get("siret", ""),
            address=d.get("address", ""),
            trial_days=d.get("trial_days", DEFAULT_TRIAL_DAYS),
            actor_user_id=_actor(request),
        )
        return Response(TenantSerializer(tenant).data, status=status.HTTP_201_CREATED)

    @extend_schema(tags=["Tenants"], request=None, responses={200: TenantSerializer})
    @action(detail=True, methods=["post"], url_path="suspend")
    def suspend(self, request, pk=None):
        tenant = TenantService.suspend(tenant_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(TenantSerializer(tenant).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Tenants"], request=None, responses={200: TenantSerializer})
    @action(detail=True, methods=["post"], url_path="reactivate")
    def reactivate(self, request, pk=None):
        tenant = TenantService.reactivate(tenant_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(TenantSerializer(tenant).data, status=status.HTTP_200_OK)

    @extend_schema(tags=["Tenants"], request=None, responses={200: TenantSerializer})
    @action(detail=True, methods=["post"], url_path="archive")
    def archive(self, request, pk=None):
        tenant = TenantService.archive(tenant_id=UUID(str(pk)), actor_user_id=_actor(request))
        return Response(TenantSerializer(tenant).data, status=status.HTTP_200_OK)
