# civic_core/common/api/views.py
from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import serializers, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from civic_core.common.siret import validate_siret


class SiretValidateRequestSerializer(serializers.Serializer):
    siret = serializers.CharField(max_length=32)
    lookup = serializers.BooleanField(required=False, default=True)


class SiretValidationSerializer(serializers.Serializer):
    is_valid = serializers.BooleanField()
    siret = serializers.CharField()
    siren = serializers.CharField(allow_blank=True, allow_null=True)
    nic = serializers.CharField(allow_blank=True, allow_null=True)
    denomination = serializers.CharField(allow_blank=True, allow_null=True)
    postal_code = serializers.CharField(allow_blank=True, allow_null=True)
    commune = serializers.CharField(allow_blank=True, allow_null=True)
    error = serializers.CharField(allow_blank=True, allow_null=True)


class SiretValidateView(APIView):
    """
    /siret/validate/: format check, then SIRENE lookup when `lookup` is true.
    An invalid SIRET is a 200 with is_valid=false.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["SIRET"], request=SiretValidateRequestSerializer, responses={200: SiretValidationSerializer})
    def post(self, request):
        ser = SiretValidateRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        result = validate_siret(ser.validated_data["siret"], lookup=ser.validated_data["lookup"])
        return Response(result.as_dict(), status=status.HTTP_200_OK)
