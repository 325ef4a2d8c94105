"""
Custom middleware for request logging.
"""
import logging
import time

from django.conf import settings
from django.core.exceptions import MiddlewareNotUsed

logger = logging.getLogger('storefront.requests')


class RequestLoggingMiddleware:
    """
    Middleware that logs every request with its status and duration.
    Enabled with REQUEST_LOGGING_ENABLED.
    """

    def __init__(self, get_response):
        if not getattr(settings, 'REQUEST_LOGGING_ENABLED', False):
            raise MiddlewareNotUsed()
        self.get_response = get_response
        logger.info("RequestLoggingMiddleware initialized")

    def __call__(self, request):
        start_time = time.time()

        logger.info(
            f"INCOMING REQUEST: {request.method} {request.path} "
            f"User-Agent: {request.META.get('HTTP_USER_AGENT', 'unknown')[:50]}"
        )

        try:
            response = self.get_response(request)

            duration = time.time() - start_time
            logger.info(
                f"RESPONSE: {request.method} {request.path} "
                f"Status: {response.status_code} "
                f"Duration: {duration:.3f}s"
            )

            return response
        except Exception as e:
            logger.error(
                f"ERROR handling request: {request.method} {request.path} "
                f"Error: {e}"
            )
            raise
