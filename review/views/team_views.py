import logging

from rest_framework import status
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .. import errors
from ..errors import ServiceError
from ..services import TeamService
from ..serializers import TeamSerializer, UserSerializer
from .responses import server_error_response, service_error_response

logger = logging.getLogger(__name__)


@api_view(['POST'])
def team_add(request):
    """POST /team/add - Создать команду с участниками"""
    try:
        team_name = request.data.get('team_name')
        members_data = request.data.get('members', [])

        if not team_name:
            raise errors.validation_failure('team_name is required')

        if not isinstance(members_data, list):
            raise errors.validation_failure('members must be a list')

        for i, member in enumerate(members_data):
            if not isinstance(member, dict) or not all(key in member for key in ['user_id', 'username', 'is_active']):
                raise errors.validation_failure(f'Member at index {i} is missing required fields')
            if not isinstance(member['is_active'], bool):
                raise errors.validation_failure(f'Member at index {i}: is_active must be a boolean')

        team = TeamService().create_team_with_members(team_name, members_data)
        serializer = TeamSerializer(team)

        return Response({
            'team': serializer.data
        }, status=status.HTTP_201_CREATED)

    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        logger.exception("Failed to create team")
        return server_error_response()


@api_view(['GET'])
def team_get(request):
    """GET /team/get - Получить команду с участниками"""
    try:
        team_name = request.query_params.get('team_name')

        if not team_name:
            raise errors.validation_failure('team_name parameter is required')

        team = TeamService().get_team_with_members(team_name)
        serializer = TeamSerializer(team)

        return Response(serializer.data)

    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        logger.exception("Failed to load team")
        return server_error_response()


@api_view(['POST'])
def team_bulk_deactivate(request):
    """POST /team/bulkDeactivate - Деактивировать участников команды"""
    try:
        team_name = request.data.get('team_name')
        user_ids = request.data.get('user_ids')

        if not team_name:
            raise errors.validation_failure('team_name is required')

        if user_ids is not None and not isinstance(user_ids, list):
            raise errors.validation_failure('user_ids must be a list')

        users = TeamService().bulk_deactivate_team_members(team_name, user_ids)

        return Response({
            'team_name': team_name,
            'deactivated': UserSerializer(users, many=True).data
        })

    except ServiceError as e:
        return service_error_response(e)
    except Exception:
        logger.exception("Failed to deactivate team members")
        return server_error_response()
