"""
Custom middleware for the Academy course marketplace.
"""
import base64
import binascii
import re
import uuid

from django.conf import settings
from django.http import HttpResponse
from django.utils.crypto import constant_time_compare
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_HEADER = 'X-Request-ID'
_REQUEST_ID_RE = re.compile(r'^[A-Za-z0-9._:-]{1,64}$')


class CorrelationIdMiddleware(MiddlewareMixin):
    """
    Attach a correlation id to every request and echo it on the response.
    An inbound X-Request-ID is reused when it is well formed.
    """

    def process_request(self, request):
        incoming = request.headers.get(REQUEST_ID_HEADER, '')
        if incoming and _REQUEST_ID_RE.match(incoming):
            request.correlation_id = incoming
        else:
            request.correlation_id = str(uuid.uuid4())
        return None

    def process_response(self, request, response):
        correlation_id = getattr(request, 'correlation_id', None)
        if correlation_id:
            response[REQUEST_ID_HEADER] = correlation_id
        return response


class BasicAuthDocsMiddleware(MiddlewareMixin):
    """
    Protect only the API documentation URLs with Basic Authentication.
    Credentials are taken from settings.BASIC_AUTH_USERNAME/PASSWORD.
    """

    def process_request(self, request):
        protected_paths = getattr(settings, 'BASIC_AUTH_URLS', ())
        if not any(request.path.startswith(path) for path in protected_paths):
            return None

        auth_header = request.META.get('HTTP_AUTHORIZATION', '')
        if not auth_header.startswith('Basic '):
            return self._unauthorized()

        try:
            username, password = base64.b64decode(auth_header[6:]).decode('utf-8').split(':', 1)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return self._unauthorized()

        expected_username = getattr(settings, 'BASIC_AUTH_USERNAME', '')
        expected_password = getattr(settings, 'BASIC_AUTH_PASSWORD', '')
        if not expected_password:
            return self._unauthorized()

        if constant_time_compare(username, expected_username) and constant_time_compare(password, expected_password):
            return None
        return self._unauthorized()

    def _unauthorized(self):
        response = HttpResponse('Unauthorized', content_type='text/plain', status=401)
        response['WWW-Authenticate'] = 'Basic realm="Documentation"'
        return response
