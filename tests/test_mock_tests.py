"""
Tests for mock tests, practice results and leaderboards
"""
import os
import random
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import mock_tests
import practice
import session_engine
from utils.errors import InsufficientQuestions, PermissionDenied

NOW = datetime(2026, 5, 10, 9, 0, 0)


def seed_questions(fake_db, subject, count, access='free', topic='t1'):
    for i in range(count):
        fake_db.seed(f'practice_questions/{subject}{i}', {
            'questionText': f'{subject} question {i}',
            'questionType': 'MCQ',
            'options': ['A', 'B', 'C', 'D'],
            'correctAnswer': 'A',
            'subjectId': subject,
            'topicId': topic,
            'accessLevel': access,
            'difficultyLevel': 'Easy',
        })


def official_test(**overrides):
    test = {
        'id': 'mt1',
        'title': 'JEE Main Mock 1',
        'startTime': (NOW - timedelta(hours=1)).isoformat(),
        'accessLevel': 'free',
        'publicationStatus': 'published',
        'config': {'subjects': [
            {'subjectId': 'phy', 'subjectName': 'Physics', 'numQuestions': 2, 'duration': 20},
            {'subjectId': 'che', 'subjectName': 'Chemistry', 'numQuestions': 1, 'duration': 10},
        ]},
    }
    test.update(overrides)
    return test


# ============================================================================
# LEADERBOARD
# ============================================================================

class TestLeaderboardRanking:
    """Best attempt per student and competition ranking on score"""

    def test_best_attempt_per_student(self):
        rows = mock_tests.rank_attempts([
            {'studentId': 's1', 'studentName': 'Asha', 'score': 10, 'timeTaken': 900},
            {'studentId': 's1', 'studentName': 'Asha', 'score': 14, 'timeTaken': 1200},
            {'studentId': 's1', 'studentName': 'Asha', 'score': 14, 'timeTaken': 1000},
        ])
        assert len(rows) == 1
        assert rows[0]['score'] == 14
        assert rows[0]['timeTaken'] == 1000
        assert rows[0]['attempts'] == 3

    def test_equal_scores_share_rank_and_skip(self):
        rows = mock_tests.rank_attempts([
            {'studentId': 's1', 'studentName': 'Asha', 'score': 5, 'timeTaken': 10},
            {'studentId': 's2', 'studentName': 'Bilal', 'score': 5, 'timeTaken': 20},
            {'studentId': 's3', 'studentName': 'Chitra', 'score': 3, 'timeTaken': 5},
        ])
        assert [(r['studentName'], r['rank']) for r in rows] == [('Asha', 1), ('Bilal', 1), ('Chitra', 3)]

    def test_ties_share_rank(self):
        rows = mock_tests.rank_attempts([
            {'studentId': 's1', 'studentName': 'Asha', 'score': 12, 'timeTaken': 600},
            {'studentId': 's2', 'studentName': 'Bilal', 'score': 12, 'timeTaken': 700},
            {'studentId': 's3', 'studentName': 'Chitra', 'score': 9, 'timeTaken': 300},
            {'studentId': 's4', 'studentName': 'Dev', 'score': 15, 'timeTaken': 1800},
        ])
        assert [(r['studentName'], r['rank']) for r in rows] == [
            ('Dev', 1), ('Asha', 2), ('Bilal', 2), ('Chitra', 4)
        ]
        groups = mock_tests.group_by_rank(rows)
        assert [g['rank'] for g in groups] == [1, 2, 4]
        assert len(groups[1]['students']) == 2

    def test_recent_attempt_breaks_full_tie(self):
        rows = mock_tests.rank_attempts([
            {'studentId': 's1', 'studentName': 'Asha', 'score': 8, 'timeTaken': 400,
             'submittedAt': '2026-11-01T09:00:00'},
            {'studentId': 's2', 'studentName': 'Bilal', 'score': 8, 'timeTaken': 400,
             'submittedAt': '2026-11-02T09:00:00'},
        ])
        assert [r['studentName'] for r in rows] == ['Bilal', 'Asha']
        assert [r['rank'] for r in rows] == [1, 1]
        assert rows[0]['lastAttemptAt'] == datetime(2026, 11, 2, 9, 0)

    def test_leaderboard_is_capped(self):
        attempts = [{'studentId': f's{i}', 'studentName': f'S{i}', 'score': i, 'timeTaken': 60}
                    for i in range(40)]
        assert len(mock_tests.rank_attempts(attempts)) == mock_tests.LEADERBOARD_SIZE

    def test_leaderboard_for_unknown_test_is_empty(self, fake_db):
        assert mock_tests.leaderboard('missing') == []


# ============================================================================
# OFFICIAL TESTS
# ============================================================================

class TestOfficialTests:
    """Definitions, access and session start"""

    def test_total_questions_and_duration(self):
        test = official_test()
        assert mock_tests.total_questions(test) == 3
        assert mock_tests.total_duration(test) == 30

    def test_custom_totals(self):
        test = {'config': {'totalQuestions': 25, 'duration': 60}}
        assert mock_tests.total_questions(test) == 25
        assert mock_tests.total_duration(test) == 60

    def test_paid_test_needs_subscription(self):
        test = official_test(accessLevel='paid')
        assert mock_tests.can_take(test, {'subscriptionStatus': 'canceled'}) is False
        assert mock_tests.can_take(test, {'subscriptionStatus': 'active'}) is True
        assert mock_tests.can_take(test, {}, is_teacher=True) is True

    def test_upcoming_test_cannot_start(self, fake_db):
        test = official_test(startTime=(NOW + timedelta(days=1)).isoformat())
        assert mock_tests.is_upcoming(test, NOW) is True
        with pytest.raises(PermissionDenied):
            mock_tests.start_official_session(test, {}, now=NOW)

    def test_start_builds_timed_session(self, fake_db):
        seed_questions(fake_db, 'phy', 4)
        seed_questions(fake_db, 'che', 3)
        session = mock_tests.start_official_session(official_test(), {}, now=NOW, rng=random.Random(2))
        assert session.kind == 'official'
        assert session.total == 3
        assert session.duration_seconds == 1800
        assert [q['subjectName'] for q in session.questions] == ['Physics', 'Physics', 'Chemistry']

    def test_start_without_questions(self, fake_db):
        with pytest.raises(InsufficientQuestions):
            mock_tests.start_official_session(official_test(), {}, now=NOW)

    def test_custom_test_without_limit_is_untimed(self, fake_db):
        seed_questions(fake_db, 'phy', 2)
        test = {'id': 'ct1', 'title': 'Revision set', 'config': {'questionIds': ['phy0', 'phy1'], 'duration': 0}}
        session = mock_tests.start_custom_session(test, now=NOW)
        assert session.duration_seconds is None
        session.answer('A', now=NOW + timedelta(hours=3))
        assert session.finished is False
        assert session.time_left(NOW + timedelta(hours=3)) is None

    def test_custom_test_keeps_its_limit(self, fake_db):
        seed_questions(fake_db, 'phy', 2)
        test = {'id': 'ct1', 'title': 'Revision set', 'config': {'questionIds': ['phy0', 'phy1'], 'duration': 20}}
        assert mock_tests.start_custom_session(test, now=NOW).duration_seconds == 1200

    def test_list_hides_drafts(self, fake_db):
        fake_db.seed('mock_tests/a', {'title': 'A', 'startTime': '2026-05-01T09:00:00', 'publicationStatus': 'published'})
        fake_db.seed('mock_tests/b', {'title': 'B', 'startTime': '2026-05-02T09:00:00', 'publicationStatus': 'draft'})
        assert [t['id'] for t in mock_tests.list_official_tests()] == ['a']
        assert [t['id'] for t in mock_tests.list_official_tests(include_drafts=True)] == ['b', 'a']

    def test_only_author_can_edit(self, fake_db):
        fake_db.seed('mock_tests/mt1', {'title': 'Old', 'teacherId': 'teacher1'})
        data = {
            'title': 'New', 'startTime': NOW, 'examCategory': 'JEE Main', 'accessLevel': 'free',
            'publicationStatus': 'published', 'subjects': [{'subjectId': 'phy', 'numQuestions': 5, 'duration': 10}],
        }
        with pytest.raises(PermissionDenied):
            mock_tests.update_official_test('mt1', data, 'teacher2')
        mock_tests.update_official_test('mt1', data, 'admin1', admin=True)
        assert fake_db.read('mock_tests/mt1')['title'] == 'New'


# ============================================================================
# RESULTS
# ============================================================================

class TestResults:
    """Stored results for submitted sessions"""

    def test_official_result_feeds_leaderboard(self, fake_db):
        profile = {'firstName': 'Asha', 'lastName': 'Rao'}
        for uid, answer in (('s1', 'A'), ('s2', 'B')):
            session = session_engine.TestSession(
                [{'id': 'q1', 'correctAnswer': 'A'}], kind='official', duration_seconds=600,
                started_at=NOW, test_id='mt1', session_id=f'sess-{uid}',
            )
            session.answer(answer, now=NOW)
            session.submit(NOW + timedelta(seconds=120))
            mock_tests.record_test_result(uid, profile, session)

        history = fake_db.read('test_analytics/mt1')['attemptHistory']
        assert len(history) == 2
        assert fake_db.read('users/s1/test_results/sess-s1')['score'] == 1
        groups = mock_tests.leaderboard('mt1')
        assert groups[0]['students'][0]['studentId'] == 's1'
        assert groups[0]['students'][0]['studentName'] == 'Asha Rao'

    def test_custom_result_skips_leaderboard(self, fake_db):
        session = session_engine.TestSession([{'id': 'q1', 'correctAnswer': 'A'}], kind='custom',
                                             started_at=NOW, test_id='ct1', session_id='c1')
        session.submit(NOW)
        mock_tests.record_test_result('s1', {}, session)
        assert fake_db.read('test_analytics/ct1') is None

    def test_session_persistence(self, fake_db):
        session = session_engine.TestSession([{'id': 'q1', 'correctAnswer': 'A'}], kind='custom',
                                             started_at=NOW, session_id='keep')
        session.answer('A', now=NOW)
        mock_tests.save_session('s1', session)
        restored = mock_tests.load_session('s1', 'keep')
        assert restored.value_of('q1') == 'A'


class TestPractice:
    """Practice sessions and progress"""

    def test_start_practice_session(self, fake_db):
        seed_questions(fake_db, 'phy', 6, topic='t1')
        fake_db.seed('topics/t1', {'name': 'Kinematics', 'subjectId': 'phy'})
        fake_db.seed('subjects/phy', {'name': 'Physics'})
        session = practice.start_practice_session({'topicId': 't1', 'count': '4'}, rng=random.Random(4), now=NOW)
        assert session.kind == 'practice'
        assert session.total == 4
        assert session.title == 'Kinematics'
        assert session.duration_seconds is None
        assert all(q['subjectName'] == 'Physics' for q in session.questions)

    def test_start_practice_without_topics(self, fake_db):
        assert practice.start_practice_session({}) is None

    def test_progress_overview_flags_weak_topics(self, fake_db):
        fake_db.seed('topics/t1', {'name': 'Kinematics', 'subjectId': 'phy'})
        fake_db.seed('topics/t2', {'name': 'Optics', 'subjectId': 'phy'})
        questions = [
            {'id': 'a', 'topicId': 't1', 'correctAnswer': 'A'},
            {'id': 'b', 'topicId': 't1', 'correctAnswer': 'A'},
            {'id': 'c', 'topicId': 't2', 'correctAnswer': 'A'},
        ]
        session = session_engine.TestSession(questions, kind='practice', started_at=NOW, session_id='p1')
        session.answer('A', now=NOW)
        session.select(2, now=NOW)
        session.answer('B', now=NOW)
        session.submit(NOW)
        practice.record_practice_result('s1', session)

        overview = practice.progress_overview('s1')
        assert overview['sessions'] == 1
        assert overview['practice_questions'] == 3
        assert overview['overall'] == 33.3
        by_topic = {t['topic']: t['accuracy'] for t in overview['topics']}
        assert by_topic == {'Kinematics': 50.0, 'Optics': 0.0}
        assert [t['topic'] for t in overview['weak_topics']] == ['Kinematics', 'Optics']
