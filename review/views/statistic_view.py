import logging

from rest_framework.decorators import api_view
from rest_framework.response import Response

from ..services import StatsService
from ..serializers import StatsSerializer
from ..errors import ServiceError
from .responses import server_error_response, service_error_response

logger = logging.getLogger(__name__)


@api_view(['GET'])
def stats_overview(request):
    """
    GET /statistic - Общая статистика системы
    """
    try:
        stats = StatsService().get_review_stats()
        serializer = StatsSerializer(stats)
        return Response(serializer.data)

    except ServiceError as exc:
        return service_error_response(exc)

    except Exception:
        logger.exception("Failed to collect review stats")
        return server_error_response()
