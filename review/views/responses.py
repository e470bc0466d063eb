import logging

from rest_framework import status
from rest_framework.response import Response

from ..errors import ServiceError

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    'NOT_FOUND': status.HTTP_404_NOT_FOUND,
    'TEAM_EXISTS': status.HTTP_400_BAD_REQUEST,
    'VALIDATION_ERROR': status.HTTP_400_BAD_REQUEST,
    'PR_EXISTS': status.HTTP_409_CONFLICT,
    'PR_MERGED': status.HTTP_409_CONFLICT,
    'NOT_ASSIGNED': status.HTTP_409_CONFLICT,
    'NO_CANDIDATE': status.HTTP_409_CONFLICT,
}


def error_response(code, message, http_status):
    return Response({
        'error': {
            'code': code,
            'message': message
        }
    }, status=http_status)


def service_error_response(exc: ServiceError):
    http_status = STATUS_BY_CODE.get(exc.code)
    if http_status is None:
        logger.error(f"Service failure: {exc.message}")
        return server_error_response()
    return error_response(exc.code, exc.message, http_status)


def server_error_response():
    return error_response('SERVER_ERROR', 'Internal server error', status.HTTP_500_INTERNAL_SERVER_ERROR)
