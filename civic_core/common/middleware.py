# civic_core/common/middleware.py
from __future__ import annotations

import logging
import threading

from civic_core.common.api.exceptions import ensure_request_id

_local = threading.local()


class RequestIdMiddleware:
    """
    Attaches request.request_id (from X-Request-ID or generated) so the error
    envelope and log lines share the same identifier.
    """

    HEADER = "X-Request-ID"

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        incoming = request.headers.get(self.HEADER)
        if incoming:
            request.request_id = incoming
        rid = ensure_request_id(request)
        _local.request_id = rid
        try:
            response = self.get_response(request)
        finally:
            _local.request_id = None
        response[self.HEADER] = rid
        return response


class RequestIdLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = getattr(_local, "request_id", None) or "-"
        return True
