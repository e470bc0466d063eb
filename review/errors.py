"""
Доменные ошибки сервиса.

Все отказы представлены одним исключением ServiceError с явным видом
(ErrorKind) и стабильным машиночитаемым кодом. Сравнение идет по значению
kind/code, а не по классу исключения.
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = 'NOT_FOUND'
    ALREADY_EXISTS = 'ALREADY_EXISTS'
    INVALID_STATE = 'INVALID_STATE'
    NOT_ASSIGNED = 'NOT_ASSIGNED'
    NO_CANDIDATE = 'NO_CANDIDATE'
    VALIDATION_FAILURE = 'VALIDATION_FAILURE'
    INTERNAL_FAILURE = 'INTERNAL_FAILURE'


class Entity(str, Enum):
    TEAM = 'team'
    USER = 'user'
    PULL_REQUEST = 'pull request'


class ServiceError(Exception):
    def __init__(self, kind: ErrorKind, code: str, message: str, entity: Entity = None):
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.message = message
        self.entity = entity

    def __repr__(self):
        return f"ServiceError(kind={self.kind.value}, code={self.code}, message={self.message!r})"


def not_found(entity: Entity, identifier: str) -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, 'NOT_FOUND', f"{entity.value} '{identifier}' not found", entity)


def already_exists(entity: Entity, identifier: str) -> ServiceError:
    if entity is Entity.TEAM:
        return ServiceError(ErrorKind.ALREADY_EXISTS, 'TEAM_EXISTS', 'team_name already exists', entity)
    return ServiceError(ErrorKind.ALREADY_EXISTS, 'PR_EXISTS', 'PR id already exists', entity)


def pr_merged(pr_id: str) -> ServiceError:
    return ServiceError(ErrorKind.INVALID_STATE, 'PR_MERGED', f"PR '{pr_id}' is already merged",
                        Entity.PULL_REQUEST)


def not_assigned(pr_id: str, user_id: str) -> ServiceError:
    return ServiceError(ErrorKind.NOT_ASSIGNED, 'NOT_ASSIGNED',
                        f"reviewer '{user_id}' is not assigned to PR '{pr_id}'")


def no_candidate(pr_id: str) -> ServiceError:
    return ServiceError(ErrorKind.NO_CANDIDATE, 'NO_CANDIDATE',
                        f"no active replacement candidate in team for PR '{pr_id}'")


def validation_failure(message: str) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION_FAILURE, 'VALIDATION_ERROR', message)


def internal_failure(operation: str, cause: Exception) -> ServiceError:
    return ServiceError(ErrorKind.INTERNAL_FAILURE, 'SERVER_ERROR', f"{operation}: {cause}")
