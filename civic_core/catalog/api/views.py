# civic_core/catalog/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.response import Response

from civic_core.catalog.api.serializers import AddonSerializer, PlanSerializer
from civic_core.catalog.models import Addon, Plan
from civic_core.catalog.selectors import active_addons, active_plans


class PlanViewSet(viewsets.ViewSet):
    serializer_class = PlanSerializer
    queryset = Plan.objects.none()

    @extend_schema(tags=["Catalog"], responses={200: PlanSerializer(many=True)})
    def list(self, request):
        return Response(PlanSerializer(active_plans(), many=True).data, status=status.HTTP_200_OK)


class AddonViewSet(viewsets.ViewSet):
    serializer_class = AddonSerializer
    queryset = Addon.objects.none()

    @extend_schema(tags=["Catalog"], responses={200: AddonSerializer(many=True)})
    def list(self, request):
        return Response(AddonSerializer(active_addons(), many=True).data, status=status.HTTP_200_OK)
