import logging
import time

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        start = time.monotonic()
        response = self.get_response(request)
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"{request.method} {request.path} -> {response.status_code} "
            f"({len(response.content) if not response.streaming else '-'} bytes, {duration_ms:.1f}ms)"
        )
        return response
