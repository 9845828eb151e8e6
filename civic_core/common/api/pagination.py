# civic_core/common/api/pagination.py
from __future__ import annotations

from typing import Any

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DefaultPagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100


def paginate(
    request,
    queryset,
    serializer_class,
    *,
    context: dict[str, Any] | None = None,
    paginator: PageNumberPagination | None = None,
) -> Response:
    """
    List endpoints always answer { count, next, previous, results },
    even for callers that never pass ?page.
    """
    p = paginator or DefaultPagination()
    page = p.paginate_queryset(queryset, request)
    ctx = {"request": request, **(context or {})}
    if page is None:
        page = list(queryset)
        return Response(
            {"count": len(page), "next": None, "previous": None, "results": serializer_class(page, many=True, context=ctx).data}
        )
    return p.get_paginated_response(serializer_class(page, many=True, context=ctx).data)
