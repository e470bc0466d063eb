import random
from unittest.mock import patch

from django.db import IntegrityError, OperationalError
from django.test import TestCase
from django.utils import timezone

from review.errors import Entity, ErrorKind, ServiceError
from review.models import Team, User, PullRequest
from review.selector import CandidateSelector
from review.services import PullRequestService
from review.tests.utils import FirstPickRandom


class PullRequestServiceTest(TestCase):
    def setUp(self):
        self.team = Team.objects.create(name="backend")

        self.author = User.objects.create(id="author1", username="Author", is_active=True, team=self.team)
        self.reviewer1 = User.objects.create(id="reviewer1", username="Reviewer 1", is_active=True, team=self.team)
        self.reviewer2 = User.objects.create(id="reviewer2", username="Reviewer 2", is_active=True, team=self.team)
        self.reviewer3 = User.objects.create(id="reviewer3", username="Reviewer 3", is_active=True, team=self.team)
        self.inactive_reviewer = User.objects.create(id="inactive1", username="Inactive", is_active=False,
                                                     team=self.team)

        self.service = PullRequestService(selector=CandidateSelector(FirstPickRandom()))

    def _open_pr(self, pr_id, *reviewers, author=None):
        pr = PullRequest.objects.create(id=pr_id, name="Test PR", author=author or self.author)
        pr.reviewers.add(*reviewers)
        return pr

    def test_create_pull_request_success(self):
        """Тест успешного создания PR"""
        pr = self.service.create_pull_request("pr-1", "Test PR", "author1")

        self.assertEqual(pr.id, "pr-1")
        self.assertEqual(pr.name, "Test PR")
        self.assertEqual(pr.author, self.author)
        self.assertEqual(pr.status, PullRequest.Status.OPEN)
        self.assertIsNotNone(pr.created_at)
        self.assertIsNone(pr.merged_at)
        self.assertEqual(sorted(pr.reviewer_ids), ["reviewer1", "reviewer2"])

    def test_create_pull_request_random_reviewers_exclude_author(self):
        """Тест что автор и неактивные никогда не попадают в ревьюверы"""
        service = PullRequestService(selector=CandidateSelector(random.Random(3)))
        for i in range(20):
            pr = service.create_pull_request(f"pr-{i}", "Test PR", "author1")

            self.assertEqual(len(pr.reviewer_ids), 2)
            self.assertEqual(len(set(pr.reviewer_ids)), 2)
            self.assertNotIn("author1", pr.reviewer_ids)
            self.assertNotIn("inactive1", pr.reviewer_ids)

    def test_create_pull_request_duplicate(self):
        """Тест создания дубликата PR"""
        self.service.create_pull_request("pr-1", "Test PR", "author1")

        with self.assertRaises(ServiceError) as context:
            self.service.create_pull_request("pr-1", "Another PR", "author1")

        self.assertEqual(context.exception.kind, ErrorKind.ALREADY_EXISTS)
        self.assertEqual(context.exception.code, 'PR_EXISTS')
        self.assertEqual(PullRequest.objects.get(id="pr-1").name, "Test PR")

    def test_create_pull_request_unique_violation_is_already_exists(self):
        """Тест гонки: проверка прошла, но вставку отверг уникальный ключ"""
        self._open_pr("pr-1")
        real_exists = self.service.pr_repo.exists
        calls = []

        def exists_missed_first(scope, pr_id):
            # первая проверка не видит PR, повторная после конфликта видит
            calls.append(pr_id)
            return len(calls) > 1 and real_exists(scope, pr_id)

        with patch.object(self.service.pr_repo, 'exists', side_effect=exists_missed_first):
            with self.assertRaises(ServiceError) as context:
                self.service.create_pull_request("pr-1", "Racing PR", "author1")

        self.assertEqual(context.exception.code, 'PR_EXISTS')
        self.assertIsInstance(context.exception.__cause__, IntegrityError)
        self.assertEqual(len(calls), 2)
        self.assertEqual(PullRequest.objects.get(id="pr-1").name, "Test PR")

    def test_create_pull_request_other_integrity_error_is_internal_failure(self):
        """Нарушение целостности при назначении ревьювера не выдаётся за PR_EXISTS"""
        with patch.object(self.service.pr_repo, 'assign_reviewer',
                          side_effect=IntegrityError("FOREIGN KEY constraint failed")):
            with self.assertRaises(ServiceError) as context:
                self.service.create_pull_request("pr-1", "Test PR", "author1")

        self.assertEqual(context.exception.kind, ErrorKind.INTERNAL_FAILURE)
        self.assertIsInstance(context.exception.__cause__, IntegrityError)
        self.assertFalse(PullRequest.objects.filter(id="pr-1").exists())

    def test_create_pull_request_integrity_error_in_outer_scope_is_internal_failure(self):
        """Внутри внешней транзакции конфликт не перепроверяется"""
        self._open_pr("pr-1")

        def create_in_outer_scope(scope):
            with patch.object(self.service.pr_repo, 'exists', return_value=False):
                self.service.create_pull_request("pr-1", "Racing PR", "author1", scope)

        with self.assertRaises(ServiceError) as context:
            self.service.tx.run(create_in_outer_scope)

        self.assertEqual(context.exception.kind, ErrorKind.INTERNAL_FAILURE)

    def test_create_pull_request_author_not_found(self):
        """Тест создания PR с несуществующим автором"""
        with self.assertRaises(ServiceError) as context:
            self.service.create_pull_request("pr-1", "Test PR", "nonexistent")

        self.assertEqual(context.exception.kind, ErrorKind.NOT_FOUND)
        self.assertEqual(context.exception.entity, Entity.USER)
        self.assertFalse(PullRequest.objects.filter(id="pr-1").exists())

    def test_create_pull_request_insufficient_reviewers(self):
        """Тест создания PR когда доступен только один ревьювер"""
        User.objects.filter(id__in=["reviewer2", "reviewer3"]).update(is_active=False)

        pr = self.service.create_pull_request("pr-1", "Test PR", "author1")

        self.assertEqual(pr.reviewer_ids, ["reviewer1"])

    def test_create_pull_request_no_reviewers(self):
        """Тест создания PR когда нет доступных ревьюверов"""
        User.objects.exclude(id="author1").update(is_active=False)

        pr = self.service.create_pull_request("pr-1", "Test PR", "author1")

        self.assertEqual(pr.reviewer_ids, [])
        self.assertTrue(PullRequest.objects.filter(id="pr-1").exists())

    def test_create_pull_request_only_author_team(self):
        """Тест что ревьюверы берутся только из команды автора"""
        other = Team.objects.create(name="frontend")
        User.objects.create(id="front1", username="Front", is_active=True, team=other)
        User.objects.exclude(id__in=["author1", "front1"]).update(is_active=False)

        pr = self.service.create_pull_request("pr-1", "Test PR", "author1")

        self.assertEqual(pr.reviewer_ids, [])

    def test_create_pull_request_rolls_back_on_failure(self):
        """Тест что при сбое назначения PR не остается в БД"""
        with patch.object(self.service.pr_repo, 'assign_reviewer', side_effect=OperationalError("boom")):
            with self.assertRaises(ServiceError) as context:
                self.service.create_pull_request("pr-1", "Test PR", "author1")

        self.assertEqual(context.exception.kind, ErrorKind.INTERNAL_FAILURE)
        self.assertFalse(PullRequest.objects.filter(id="pr-1").exists())

    def test_merge_pull_request_success(self):
        """Тест успешного мержа PR"""
        self._open_pr("pr-1", self.reviewer1)

        merged_pr = self.service.merge_pull_request("pr-1")

        self.assertEqual(merged_pr.status, PullRequest.Status.MERGED)
        self.assertIsNotNone(merged_pr.merged_at)
        self.assertTrue(merged_pr.merged_at <= timezone.now())
        self.assertLessEqual(merged_pr.created_at, merged_pr.merged_at)
        self.assertEqual(merged_pr.reviewer_ids, ["reviewer1"])

    def test_merge_pull_request_twice_rejected(self):
        """Тест что повторный мерж отклоняется и не меняет время мержа"""
        self._open_pr("pr-1")
        first_merge_time = self.service.merge_pull_request("pr-1").merged_at

        with self.assertRaises(ServiceError) as context:
            self.service.merge_pull_request("pr-1")

        self.assertEqual(context.exception.kind, ErrorKind.INVALID_STATE)
        self.assertEqual(context.exception.code, 'PR_MERGED')
        self.assertEqual(PullRequest.objects.get(id="pr-1").merged_at, first_merge_time)

    def test_merge_pull_request_not_found(self):
        """Тест мержа несуществующего PR"""
        with self.assertRaises(ServiceError) as context:
            self.service.merge_pull_request("nonexistent")

        self.assertEqual(context.exception.kind, ErrorKind.NOT_FOUND)
        self.assertEqual(context.exception.entity, Entity.PULL_REQUEST)

    def test_reassign_reviewer_success(self):
        """Тест успешного переназначения ревьювера"""
        self._open_pr("pr-1", self.reviewer1, self.reviewer2)

        updated_pr, new_reviewer_id = self.service.reassign_reviewer("pr-1", "reviewer1")

        self.assertEqual(new_reviewer_id, "reviewer3")
        self.assertEqual(sorted(updated_pr.reviewer_ids), ["reviewer2", "reviewer3"])

    def test_reassign_reviewer_never_picks_excluded(self):
        """Тест что новый ревьювер не автор и не один из прежних"""
        User.objects.create(id="reviewer4", username="Reviewer 4", is_active=True, team=self.team)
        service = PullRequestService(selector=CandidateSelector(random.Random(11)))

        for i in range(10):
            self._open_pr(f"pr-{i}", self.reviewer1, self.reviewer2)
            _, new_reviewer_id = service.reassign_reviewer(f"pr-{i}", "reviewer1")
            self.assertIn(new_reviewer_id, ["reviewer3", "reviewer4"])

    def test_reassign_reviewer_can_pick_previously_removed(self):
        """Тест что снятый ранее ревьювер снова может быть выбран"""
        self._open_pr("pr-1", self.reviewer1, self.reviewer2)

        _, first_replacement = self.service.reassign_reviewer("pr-1", "reviewer1")
        updated_pr, second_replacement = self.service.reassign_reviewer("pr-1", first_replacement)

        self.assertEqual(first_replacement, "reviewer3")
        self.assertEqual(second_replacement, "reviewer1")
        self.assertEqual(sorted(updated_pr.reviewer_ids), ["reviewer1", "reviewer2"])

    def test_reassign_reviewer_merged_pr(self):
        """Тест переназначения на мерженом PR"""
        pr = self._open_pr("pr-1", self.reviewer1)
        pr.status = PullRequest.Status.MERGED
        pr.merged_at = timezone.now()
        pr.save()

        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("pr-1", "reviewer1")

        self.assertEqual(context.exception.kind, ErrorKind.INVALID_STATE)
        self.assertEqual(context.exception.code, 'PR_MERGED')
        self.assertEqual(PullRequest.objects.get(id="pr-1").reviewer_ids, ["reviewer1"])

    def test_reassign_reviewer_merged_pr_checked_before_assignment(self):
        """Тест что на мерженом PR ошибка PR_MERGED даже для не назначенного"""
        self._open_pr("pr-1")
        self.service.merge_pull_request("pr-1")

        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("pr-1", "nonexistent")

        self.assertEqual(context.exception.code, 'PR_MERGED')

    def test_reassign_reviewer_not_assigned(self):
        """Тест переназначения не назначенного ревьювера"""
        self._open_pr("pr-1", self.reviewer1)

        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("pr-1", "reviewer2")

        self.assertEqual(context.exception.kind, ErrorKind.NOT_ASSIGNED)
        self.assertEqual(PullRequest.objects.get(id="pr-1").reviewer_ids, ["reviewer1"])

    def test_reassign_reviewer_no_candidates(self):
        """Тест когда нет кандидатов для переназначения"""
        self._open_pr("pr-1", self.reviewer1, self.reviewer2, self.reviewer3)

        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("pr-1", "reviewer1")

        self.assertEqual(context.exception.kind, ErrorKind.NO_CANDIDATE)
        self.assertIn("reviewer1", PullRequest.objects.get(id="pr-1").reviewer_ids)

    def test_reassign_reviewer_uses_old_reviewer_team(self):
        """Тест что замена ищется в команде заменяемого ревьювера"""
        other = Team.objects.create(name="frontend")
        front1 = User.objects.create(id="front1", username="Front 1", is_active=True, team=other)
        User.objects.create(id="front2", username="Front 2", is_active=True, team=other)
        self._open_pr("pr-1", front1)

        _, new_reviewer_id = self.service.reassign_reviewer("pr-1", "front1")

        self.assertEqual(new_reviewer_id, "front2")

    def test_reassign_reviewer_pr_not_found(self):
        """Тест переназначения для несуществующего PR"""
        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("nonexistent", "reviewer1")

        self.assertEqual(context.exception.entity, Entity.PULL_REQUEST)

    def test_reassign_reviewer_user_not_found(self):
        """Тест переназначения несуществующего пользователя"""
        self._open_pr("pr-1")

        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("pr-1", "nonexistent")

        self.assertEqual(context.exception.kind, ErrorKind.NOT_ASSIGNED)

    def test_database_error_becomes_internal_failure(self):
        """Тест оборачивания неожиданных ошибок БД"""
        with patch.object(self.service.pr_repo, 'get_by_id', side_effect=OperationalError("gone")):
            with self.assertRaises(ServiceError) as context:
                self.service.merge_pull_request("pr-1")

        self.assertEqual(context.exception.kind, ErrorKind.INTERNAL_FAILURE)
        self.assertEqual(context.exception.code, 'SERVER_ERROR')
        self.assertIn("merge_pull_request", context.exception.message)


class PullRequestScenarioTest(TestCase):
    def setUp(self):
        self.team = Team.objects.create(name="team1")
        for user_id in ["author", "r1", "r2", "r3"]:
            User.objects.create(id=user_id, username=user_id.upper(), is_active=True, team=self.team)
        self.service = PullRequestService()

    def test_create_assigns_two_of_three_teammates(self):
        """Сценарий A: два ревьювера из трех, автор исключен"""
        pr = self.service.create_pull_request("p1", "Feature", "author")

        self.assertEqual(len(pr.reviewer_ids), 2)
        self.assertTrue(set(pr.reviewer_ids) <= {"r1", "r2", "r3"})

    def test_merged_pr_rejects_reassign(self):
        """Сценарий B: после мержа переназначение запрещено"""
        self.service.create_pull_request("p1", "Feature", "author")
        self.service.merge_pull_request("p1")

        pr = PullRequest.objects.get(id="p1")
        self.assertEqual(pr.status, PullRequest.Status.MERGED)
        self.assertIsNotNone(pr.merged_at)

        reviewers_before = sorted(pr.reviewer_ids)
        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("p1", "r1")

        self.assertEqual(context.exception.kind, ErrorKind.INVALID_STATE)
        self.assertEqual(sorted(PullRequest.objects.get(id="p1").reviewer_ids), reviewers_before)

    def test_no_candidate_keeps_reviewer(self):
        """Сценарий C: нет замены, ревьювер остается"""
        User.objects.filter(id__in=["r2", "r3"]).update(is_active=False)
        pr = PullRequest.objects.create(id="p4", name="Fix", author_id="author")
        pr.reviewers.add("r1")

        with self.assertRaises(ServiceError) as context:
            self.service.reassign_reviewer("p4", "r1")

        self.assertEqual(context.exception.kind, ErrorKind.NO_CANDIDATE)
        self.assertEqual(PullRequest.objects.get(id="p4").reviewer_ids, ["r1"])
