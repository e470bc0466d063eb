import logging

from django.db import DatabaseError, IntegrityError

from . import errors
from .errors import Entity
from .models import PullRequest, Team, User
from .repositories import PullRequestRepository, TeamRepository, UserRepository
from .selector import CandidateSelector
from .transaction import TransactionManager

logger = logging.getLogger(__name__)

MAX_REVIEWERS = 2


def exists_after_conflict(tx, repo, identifier, scope=None) -> bool:
    """
    Проверяет после IntegrityError, что ключ действительно занят.

    Внутри чужой открытой транзакции повторный запрос невозможен
    (транзакция уже в ошибке), такой конфликт считается внутренним сбоем.
    """
    if scope is not None and scope.active:
        return False
    try:
        return tx.run(lambda tx_scope: repo.exists(tx_scope, identifier))
    except DatabaseError:
        logger.exception(f"Failed to re-check '{identifier}' after integrity error")
        return False


class PullRequestService:
    """
    Сервис для управления Pull Request'ами
    """

    def __init__(self, pr_repo=None, user_repo=None, selector=None, tx=None):
        self.pr_repo = pr_repo or PullRequestRepository()
        self.user_repo = user_repo or UserRepository()
        self.selector = selector or CandidateSelector()
        self.tx = tx or TransactionManager()

    def create_pull_request(self, pr_id: str, pr_name: str, author_id: str, scope=None) -> PullRequest:
        """
        Создает PR и назначает до двух активных ревьюверов из команды автора

        Raises:
            ServiceError: PR_EXISTS, NOT_FOUND (автор)
        """
        try:
            pr = self.tx.run(lambda tx_scope: self._create(tx_scope, pr_id, pr_name, author_id), scope)
        except IntegrityError as exc:
            # параллельное создание с тем же id прошло проверку раньше нас
            if exists_after_conflict(self.tx, self.pr_repo, pr_id, scope):
                logger.info(f"PR '{pr_id}' rejected by unique constraint")
                raise errors.already_exists(Entity.PULL_REQUEST, pr_id) from exc
            raise errors.internal_failure('create_pull_request', exc) from exc
        except DatabaseError as exc:
            raise errors.internal_failure('create_pull_request', exc) from exc

        logger.info(f"PR '{pr_id}' created by '{author_id}', reviewers: {pr.reviewer_ids}")
        return pr

    def _create(self, scope, pr_id, pr_name, author_id) -> PullRequest:
        if self.pr_repo.exists(scope, pr_id):
            raise errors.already_exists(Entity.PULL_REQUEST, pr_id)

        try:
            author = self.user_repo.get_by_id(scope, author_id)
        except User.DoesNotExist:
            raise errors.not_found(Entity.USER, author_id)

        candidates = self.user_repo.get_active_by_team(scope, author.team_id, exclude_ids=[author.id])
        reviewers = self.selector.select(candidates, MAX_REVIEWERS)
        logger.debug(f"PR '{pr_id}': {len(candidates)} candidates, selected {[r.id for r in reviewers]}")

        self.pr_repo.create(scope, pr_id, pr_name, author)
        for reviewer in reviewers:
            self.pr_repo.assign_reviewer(scope, pr_id, reviewer.id)

        return self.pr_repo.get_by_id(scope, pr_id)

    def merge_pull_request(self, pr_id: str, scope=None) -> PullRequest:
        """
        Переводит PR в MERGED. Повторный мерж запрещен (PR_MERGED),
        время мержа не перезаписывается.
        """
        try:
            pr = self.tx.run(lambda tx_scope: self._merge(tx_scope, pr_id), scope)
        except DatabaseError as exc:
            raise errors.internal_failure('merge_pull_request', exc) from exc

        logger.info(f"PR '{pr_id}' merged")
        return pr

    def _merge(self, scope, pr_id) -> PullRequest:
        pr = self._get_for_update(scope, pr_id)
        if pr.is_merged:
            raise errors.pr_merged(pr_id)

        self.pr_repo.merge(scope, pr_id)
        return self.pr_repo.get_by_id(scope, pr_id)

    def reassign_reviewer(self, pr_id: str, old_user_id: str, scope=None) -> tuple:
        """
        Заменяет ревьювера на случайного активного участника его команды.

        Returns:
            tuple: (PR после замены, id нового ревьювера)
        """
        try:
            pr, new_reviewer_id = self.tx.run(
                lambda tx_scope: self._reassign(tx_scope, pr_id, old_user_id), scope
            )
        except DatabaseError as exc:
            raise errors.internal_failure('reassign_reviewer', exc) from exc

        logger.info(f"PR '{pr_id}': reviewer '{old_user_id}' replaced by '{new_reviewer_id}'")
        return pr, new_reviewer_id

    def _reassign(self, scope, pr_id, old_user_id) -> tuple:
        pr = self._get_for_update(scope, pr_id)

        # после мержа список ревьюверов менять нельзя
        if pr.is_merged:
            raise errors.pr_merged(pr_id)

        if not self.pr_repo.is_reviewer_assigned(scope, pr_id, old_user_id):
            raise errors.not_assigned(pr_id, old_user_id)

        try:
            old_reviewer = self.user_repo.get_by_id(scope, old_user_id)
        except User.DoesNotExist:
            raise errors.not_found(Entity.USER, old_user_id)

        new_reviewer = self.selector.pick_one(self.replacement_candidates(scope, pr, old_reviewer))
        if new_reviewer is None:
            raise errors.no_candidate(pr_id)

        self.pr_repo.remove_reviewer(scope, pr_id, old_user_id)
        self.pr_repo.assign_reviewer(scope, pr_id, new_reviewer.id)

        return self.pr_repo.get_by_id(scope, pr_id), new_reviewer.id

    def release_reviewer(self, pr_id: str, old_reviewer: User, scope=None):
        """
        Снимает ревьювера с открытого PR при его деактивации.

        Если есть замена, она назначается вместо него; если нет, ревьювер
        просто снимается. Возвращает id замены или None.
        """
        return self.tx.run(lambda tx_scope: self._release(tx_scope, pr_id, old_reviewer), scope)

    def _release(self, scope, pr_id, old_reviewer):
        pr = self._get_for_update(scope, pr_id)
        if pr.is_merged or old_reviewer.id not in pr.reviewer_ids:
            return None

        new_reviewer = self.selector.pick_one(self.replacement_candidates(scope, pr, old_reviewer))
        self.pr_repo.remove_reviewer(scope, pr_id, old_reviewer.id)
        if new_reviewer is None:
            logger.info(f"PR '{pr_id}': no replacement for '{old_reviewer.id}', reviewer removed")
            return None

        self.pr_repo.assign_reviewer(scope, pr_id, new_reviewer.id)
        logger.info(f"PR '{pr_id}': reviewer '{old_reviewer.id}' replaced by '{new_reviewer.id}'")
        return new_reviewer.id

    def replacement_candidates(self, scope, pr: PullRequest, old_reviewer: User) -> list:
        # исключаем автора и всех текущих ревьюверов, включая заменяемого
        exclude_ids = {pr.author_id, *pr.reviewer_ids}
        candidates = self.user_repo.get_active_by_team(scope, old_reviewer.team_id, exclude_ids=exclude_ids)
        logger.debug(f"PR '{pr.id}': {len(candidates)} replacement candidates for '{old_reviewer.id}'")
        return candidates

    def _get_for_update(self, scope, pr_id) -> PullRequest:
        try:
            return self.pr_repo.get_by_id(scope, pr_id, for_update=True)
        except PullRequest.DoesNotExist:
            raise errors.not_found(Entity.PULL_REQUEST, pr_id)


class UserService:
    """
    Сервис для управления пользователями
    """

    def __init__(self, user_repo=None, pr_repo=None, pr_service=None, tx=None):
        self.user_repo = user_repo or UserRepository()
        self.pr_repo = pr_repo or PullRequestRepository()
        self.tx = tx or TransactionManager()
        self.pr_service = pr_service or PullRequestService(pr_repo=self.pr_repo, user_repo=self.user_repo, tx=self.tx)

    def set_user_active_status(self, user_id: str, is_active: bool, scope=None) -> User:
        """
        Меняет флаг активности. При деактивации снимает пользователя со всех
        открытых PR, подставляя замену, где она есть. Ошибка на любом PR
        откатывает всю деактивацию.
        """
        try:
            user = self.tx.run(lambda tx_scope: self._set_active(tx_scope, user_id, is_active), scope)
        except DatabaseError as exc:
            raise errors.internal_failure('set_user_active_status', exc) from exc

        logger.info(f"User '{user_id}' is_active={user.is_active}")
        return user

    def _set_active(self, scope, user_id, is_active) -> User:
        try:
            user = self.user_repo.get_by_id(scope, user_id)
        except User.DoesNotExist:
            raise errors.not_found(Entity.USER, user_id)

        if is_active or not user.is_active:
            return self.user_repo.set_active(scope, user_id, is_active)

        open_prs = self.pr_repo.get_open_by_reviewer(scope, user_id)
        logger.debug(f"Deactivating '{user_id}': {len(open_prs)} open PRs to release")
        for pr in open_prs:
            self.pr_service.release_reviewer(pr.id, user, scope)

        return self.user_repo.set_active(scope, user_id, False)

    def get_user_review_assignments(self, user_id: str) -> list:
        def load(scope):
            try:
                self.user_repo.get_by_id(scope, user_id)
            except User.DoesNotExist:
                raise errors.not_found(Entity.USER, user_id)
            return self.pr_repo.get_by_reviewer(scope, user_id)

        try:
            prs = self.tx.run(load)
        except DatabaseError as exc:
            raise errors.internal_failure('get_user_review_assignments', exc) from exc

        logger.debug(f"User '{user_id}' reviews {len(prs)} PRs")
        return prs


class TeamService:
    """
    Сервис для управления командами и пользователями
    """

    def __init__(self, team_repo=None, user_repo=None, user_service=None, tx=None):
        self.team_repo = team_repo or TeamRepository()
        self.user_repo = user_repo or UserRepository()
        self.tx = tx or TransactionManager()
        self.user_service = user_service or UserService(user_repo=self.user_repo, tx=self.tx)

    def create_team_with_members(self, team_name: str, members_data: list, scope=None) -> Team:
        """
        Создает команду и добавляет/обновляет ее участников

        Raises:
            ServiceError: TEAM_EXISTS, если команда уже существует
        """
        try:
            team = self.tx.run(lambda tx_scope: self._create(tx_scope, team_name, members_data), scope)
        except IntegrityError as exc:
            if exists_after_conflict(self.tx, self.team_repo, team_name, scope):
                raise errors.already_exists(Entity.TEAM, team_name) from exc
            raise errors.internal_failure('create_team_with_members', exc) from exc
        except DatabaseError as exc:
            raise errors.internal_failure('create_team_with_members', exc) from exc

        logger.info(f"Team '{team_name}' created with {len(members_data)} members")
        return team

    def _create(self, scope, team_name, members_data) -> Team:
        if self.team_repo.exists(scope, team_name):
            raise errors.already_exists(Entity.TEAM, team_name)

        team = self.team_repo.create(scope, team_name)
        for member_data in members_data:
            self.user_repo.upsert(scope, member_data, team)

        return self.team_repo.get_by_name(scope, team_name)

    def get_team_with_members(self, team_name: str) -> Team:
        def load(scope):
            try:
                return self.team_repo.get_by_name(scope, team_name)
            except Team.DoesNotExist:
                raise errors.not_found(Entity.TEAM, team_name)

        try:
            return self.tx.run(load)
        except DatabaseError as exc:
            raise errors.internal_failure('get_team_with_members', exc) from exc

    def bulk_deactivate_team_members(self, team_name: str, user_ids: list = None) -> list:
        """
        Массовая деактивация пользователей команды с переназначением открытых PR.
        Вся пачка выполняется в одной транзакции.
        """
        try:
            users = self.tx.run(lambda tx_scope: self._bulk_deactivate(tx_scope, team_name, user_ids))
        except DatabaseError as exc:
            raise errors.internal_failure('bulk_deactivate_team_members', exc) from exc

        logger.info(f"Team '{team_name}': deactivated {[user.id for user in users]}")
        return users

    def _bulk_deactivate(self, scope, team_name, user_ids) -> list:
        if not self.team_repo.exists(scope, team_name):
            raise errors.not_found(Entity.TEAM, team_name)

        members = self.user_repo.get_by_team(scope, team_name, ids=user_ids)
        return [
            self.user_service.set_user_active_status(member.id, False, scope)
            for member in members
        ]


class StatsService:
    """
    Сервис для сбора статистики по нагрузке ревьюверов
    """

    def __init__(self, user_repo=None, pr_repo=None, tx=None):
        self.user_repo = user_repo or UserRepository()
        self.pr_repo = pr_repo or PullRequestRepository()
        self.tx = tx or TransactionManager()

    def get_review_stats(self) -> dict:
        """
        Returns:
            dict: reviewers - назначения по пользователям,
                  pull_requests - число ревьюверов по каждому PR
        """
        def load(scope):
            return {
                'reviewers': self.user_repo.get_review_load(scope),
                'pull_requests': self.pr_repo.get_reviewer_counts(scope),
            }

        try:
            return self.tx.run(load)
        except DatabaseError as exc:
            raise errors.internal_failure('get_review_stats', exc) from exc
