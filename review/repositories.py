"""
Доступ к данным через Django ORM.

Каждый метод принимает TransactionScope первым аргументом, все запросы идут
через его соединение. Отсутствующие записи возвращаются как DoesNotExist
соответствующей модели.
"""
from django.db.models import Count, F, Q
from django.db.models.functions import Now

from .models import PullRequest, ReviewerAssignment, Team, User


class TeamRepository:

    def create(self, scope, name: str) -> Team:
        return Team.objects.using(scope.using).create(name=name)

    def exists(self, scope, name: str) -> bool:
        return Team.objects.using(scope.using).filter(name=name).exists()

    def get_by_name(self, scope, name: str) -> Team:
        return Team.objects.using(scope.using).prefetch_related('members').get(name=name)


class UserRepository:

    def upsert(self, scope, member: dict, team: Team) -> User:
        user, _ = User.objects.using(scope.using).update_or_create(
            id=member['user_id'],
            defaults={
                'username': member['username'],
                'is_active': member['is_active'],
                'team': team,
            },
        )
        return user

    def get_by_id(self, scope, user_id: str) -> User:
        return User.objects.using(scope.using).select_related('team').get(id=user_id)

    def set_active(self, scope, user_id: str, is_active: bool) -> User:
        updated = User.objects.using(scope.using).filter(id=user_id).update(is_active=is_active, updated_at=Now())
        if not updated:
            raise User.DoesNotExist(f"User '{user_id}' not found")
        return self.get_by_id(scope, user_id)

    def get_active_by_team(self, scope, team_name: str, exclude_ids=()) -> list:
        users = User.objects.using(scope.using).filter(team_id=team_name, is_active=True)
        if exclude_ids:
            users = users.exclude(id__in=list(exclude_ids))
        return list(users.order_by('id'))

    def get_by_team(self, scope, team_name: str, ids=None) -> list:
        users = User.objects.using(scope.using).filter(team_id=team_name)
        if ids is not None:
            users = users.filter(id__in=list(ids))
        return list(users.order_by('id'))

    def get_review_load(self, scope) -> list:
        open_status = Q(review_assignments__pull_request__status=PullRequest.Status.OPEN)
        merged_status = Q(review_assignments__pull_request__status=PullRequest.Status.MERGED)
        return list(
            User.objects.using(scope.using)
            .annotate(
                assigned_total=Count('review_assignments'),
                assigned_open=Count('review_assignments', filter=open_status),
                assigned_merged=Count('review_assignments', filter=merged_status),
            )
            .filter(assigned_total__gt=0)
            .values('id', 'username', 'assigned_total', 'assigned_open', 'assigned_merged')
            .order_by('-assigned_total', 'id')
        )


class PullRequestRepository:

    def create(self, scope, pr_id: str, name: str, author: User):
        PullRequest.objects.using(scope.using).create(id=pr_id, name=name, author=author)
        # created_at проставляет БД
        return PullRequest.objects.using(scope.using).values_list('created_at', flat=True).get(id=pr_id)

    def exists(self, scope, pr_id: str) -> bool:
        return PullRequest.objects.using(scope.using).filter(id=pr_id).exists()

    def assign_reviewer(self, scope, pr_id: str, user_id: str):
        ReviewerAssignment.objects.using(scope.using).create(pull_request_id=pr_id, user_id=user_id)

    def remove_reviewer(self, scope, pr_id: str, user_id: str):
        ReviewerAssignment.objects.using(scope.using).filter(pull_request_id=pr_id, user_id=user_id).delete()

    def is_reviewer_assigned(self, scope, pr_id: str, user_id: str) -> bool:
        return ReviewerAssignment.objects.using(scope.using).filter(
            pull_request_id=pr_id, user_id=user_id
        ).exists()

    def get_by_id(self, scope, pr_id: str, for_update: bool = False) -> PullRequest:
        queryset = PullRequest.objects.using(scope.using)
        if for_update:
            # блокируем строку PR, параллельные изменения ревьюверов сериализуются в БД
            queryset = queryset.select_for_update(of=('self',))
        return queryset.select_related('author').prefetch_related('reviewers').get(id=pr_id)

    def get_by_reviewer(self, scope, user_id: str) -> list:
        return list(
            PullRequest.objects.using(scope.using)
            .filter(assignments__user_id=user_id)
            .select_related('author')
            .order_by('created_at', 'id')
        )

    def get_open_by_reviewer(self, scope, user_id: str) -> list:
        return list(
            PullRequest.objects.using(scope.using)
            .filter(assignments__user_id=user_id, status=PullRequest.Status.OPEN)
            .select_related('author')
            .order_by('created_at', 'id')
        )

    def merge(self, scope, pr_id: str):
        updated = PullRequest.objects.using(scope.using).filter(id=pr_id).update(
            status=PullRequest.Status.MERGED,
            merged_at=Now(),
        )
        if not updated:
            raise PullRequest.DoesNotExist(f"PR '{pr_id}' not found")

    def get_reviewer_counts(self, scope) -> list:
        return list(
            PullRequest.objects.using(scope.using)
            .annotate(reviewers_count=Count('assignments'), team_name=F('author__team_id'))
            .values('id', 'name', 'status', 'team_name', 'reviewers_count', 'created_at', 'merged_at')
            .order_by('-created_at', 'id')
        )
