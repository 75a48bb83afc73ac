"""
Tests for live batches
Weekly schedule, holiday/cancellation notices, session accounting and enrollment
"""
import os
import sys
from datetime import date, datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import live_batches
from utils.errors import NotFound, PaymentError, PermissionDenied, ValidationFailed

# 2026-11-02 is a Monday
MONDAY = date(2026, 11, 2)


def weekly_batch(**overrides):
    batch = {
        'id': 'b1',
        'name': 'JEE 2027 Evening',
        'teacherId': 'teacher1',
        'accessLevel': 'free',
        'publicationStatus': 'published',
        'batchStartDate': '2026-10-01',
        'subjectSchedules': [{
            'subjectId': 'phy',
            'daysOfWeek': ['Monday', 'Wednesday'],
            'startTime': '17:00',
            'endTime': '18:30',
        }],
    }
    batch.update(overrides)
    return batch


def meeting(day, at='10:00', **extra):
    return {'type': 'meeting', 'date': day, 'meetingTime': at, **extra}


# ============================================================================
# DATE HELPERS
# ============================================================================

class TestDateHelpers:
    """Parsing and range expansion"""

    def test_day_name_starts_week_on_sunday(self):
        assert live_batches.day_name(MONDAY) == 'Monday'
        assert live_batches.day_name(date(2026, 11, 1)) == 'Sunday'

    def test_parse_helpers(self):
        assert live_batches.parse_ymd('2026-11-02') == MONDAY
        assert live_batches.parse_ymd('02/11/2026') is None
        assert live_batches.parse_ymd_hm('2026-11-02', '17:30') == datetime(2026, 11, 2, 17, 30)
        assert live_batches.parse_ymd_hm('2026-11-02', '') is None

    def test_expand_range(self):
        assert live_batches.expand_range('2026-11-04', '2026-11-06') == ['2026-11-04', '2026-11-05', '2026-11-06']
        assert live_batches.expand_range('2026-11-04', '2026-11-01') == ['2026-11-04']
        assert live_batches.expand_range('bad', '2026-11-01') == []


# ============================================================================
# SCHEDULE
# ============================================================================

class TestSchedule:
    """Notices, upcoming slots and the next class"""

    def test_holiday_range_notice(self):
        notices = live_batches.schedule_notices([
            {'type': 'holiday', 'date': '2026-11-04', 'holidayEndDate': '2026-11-05', 'reason': 'Diwali'},
        ])
        assert set(notices) == {'2026-11-04', '2026-11-05'}
        assert notices['2026-11-05'] == {'type': 'holiday', 'text': 'Holiday (2026-11-04 to 2026-11-05) - Diwali'}

    def test_holiday_overrides_cancellation(self):
        cancelled = {'type': 'cancelled', 'date': '2026-11-04', 'sessionLabel': 'Physics', 'reason': 'Teacher unwell'}
        holiday = {'type': 'holiday', 'date': '2026-11-04'}
        for sessions in ([cancelled, holiday], [holiday, cancelled]):
            assert live_batches.schedule_notices(sessions)['2026-11-04']['type'] == 'holiday'

    def test_cancellation_text(self):
        notices = live_batches.schedule_notices([
            {'type': 'cancelled', 'date': '2026-11-09', 'sessionLabel': 'Physics', 'reason': 'Teacher unwell'},
        ])
        assert notices['2026-11-09']['text'] == 'Cancelled - Physics (Teacher unwell)'

    def test_upcoming_slots_follow_weekly_schedule(self):
        sessions = [
            {'type': 'holiday', 'date': '2026-11-04', 'reason': 'Diwali'},
            {'type': 'cancelled', 'date': '2026-11-09'},
        ]
        slots = live_batches.upcoming_slots(weekly_batch(), sessions, MONDAY, {'phy': 'Physics'})
        assert [s['date'] for s in slots] == ['2026-11-02', '2026-11-04', '2026-11-09', '2026-11-11']
        assert [s['noticeType'] for s in slots] == [None, 'holiday', 'cancelled', None]
        assert slots[0]['subjectName'] == 'Physics'
        assert slots[0]['dayName'] == 'Monday'

    def test_window_starts_at_batch_start(self):
        batch = weekly_batch(batchStartDate='2026-11-10')
        slots = live_batches.upcoming_slots(batch, [], MONDAY)
        assert slots[0]['date'] == '2026-11-11'

    def test_per_day_timings(self):
        batch = weekly_batch(subjectSchedules=[{
            'subjectId': 'mat',
            'daysOfWeek': ['Monday', 'Wednesday'],
            'useDifferentTimingPerDay': True,
            'dayTimings': {'Monday': {'startTime': '07:00', 'endTime': '08:00'}},
        }])
        slots = live_batches.upcoming_slots(batch, [], MONDAY)
        # Wednesday has no timing configured
        assert {s['dayName'] for s in slots} == {'Monday'}
        assert slots[0]['startTime'] == '07:00'

    def test_slots_are_capped(self):
        batch = weekly_batch(subjectSchedules=[{
            'subjectId': 'phy',
            'daysOfWeek': live_batches.DAY_NAMES,
            'startTime': '09:00',
            'endTime': '10:00',
        }, {
            'subjectId': 'che',
            'daysOfWeek': live_batches.DAY_NAMES,
            'startTime': '11:00',
            'endTime': '12:00',
        }])
        assert len(live_batches.upcoming_slots(batch, [], MONDAY)) == live_batches.MAX_UPCOMING_SLOTS

    def test_next_class_prefers_earliest(self):
        sessions = [
            {'type': 'holiday', 'date': '2026-11-04'},
            meeting('2026-11-06', '10:00', meetingTitle='Doubt clearing', zoomLink='https://zoom.us/j/1'),
        ]
        upcoming = live_batches.next_class(weekly_batch(), sessions, datetime(2026, 11, 2, 18, 0))
        assert upcoming['title'] == 'Doubt clearing'
        assert upcoming['zoomLink'] == 'https://zoom.us/j/1'
        assert upcoming['when'] == datetime(2026, 11, 6, 10, 0)

    def test_next_class_uses_regular_slot(self):
        upcoming = live_batches.next_class(weekly_batch(), [], datetime(2026, 11, 2, 9, 0), {'phy': 'Physics'})
        assert upcoming['title'] == 'Physics Class'
        assert upcoming['when'] == datetime(2026, 11, 2, 17, 0)

    def test_no_schedule_no_next_class(self):
        assert live_batches.next_class(weekly_batch(subjectSchedules=[]), [], datetime(2026, 11, 2)) is None


# ============================================================================
# SESSION ACCOUNTING
# ============================================================================

class TestSessionAccounting:
    """Conducted meetings and paid access"""

    SESSIONS = [
        meeting('2026-10-30'),
        meeting('2026-11-01'),
        meeting('2026-11-02'),
        meeting('2026-11-20'),
    ]

    def test_remaining_batch_sessions(self):
        batch = weekly_batch(totalSessions=5)
        assert live_batches.remaining_batch_sessions(batch, self.SESSIONS, datetime(2026, 11, 3)) == 2
        assert live_batches.remaining_batch_sessions(weekly_batch(), self.SESSIONS) == 0

    def test_paid_sessions_count_from_first_purchase(self):
        enrollment = {'sessionsPurchased': 2, 'paidAt': '2026-11-01T00:00:00'}
        assert live_batches.remaining_paid_sessions(enrollment, self.SESSIONS, datetime(2026, 11, 1, 12, 0)) == 1
        assert live_batches.remaining_paid_sessions(enrollment, self.SESSIONS, datetime(2026, 11, 3)) == 0

    def test_meeting_earlier_on_purchase_day_is_not_used(self):
        # 05:30 UTC is 11:00 in India, after the 10:00 class
        enrollment = {'sessionsPurchased': 2, 'paidAt': '2026-11-02T05:30:00+00:00'}
        sessions = [meeting('2026-11-02', '10:00'), meeting('2026-11-02', '18:00')]
        evening = datetime(2026, 11, 2, 19, 0)
        assert live_batches.remaining_paid_sessions(enrollment, sessions, evening) == 1

    def test_india_clock(self):
        expected = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=5, minutes=30)
        assert abs(live_batches.local_now() - expected) < timedelta(seconds=5)
        assert live_batches.local_stamp(datetime(2026, 11, 2, 11, 0)) == '2026-11-02T11:00:00+05:30'
        assert live_batches.to_local(datetime(2026, 11, 2, 5, 30, tzinfo=timezone.utc)) == datetime(2026, 11, 2, 11, 0)

    def test_classroom_access(self):
        paid = weekly_batch(accessLevel='paid')
        enrollment = {'sessionsPurchased': 2, 'paidAt': '2026-11-01T00:00:00'}
        assert live_batches.has_classroom_access(paid, enrollment, self.SESSIONS, now=datetime(2026, 11, 1, 12)) is True
        assert live_batches.has_classroom_access(paid, enrollment, self.SESSIONS, now=datetime(2026, 11, 3)) is False
        assert live_batches.has_classroom_access(paid, None, self.SESSIONS, is_teacher=True) is True
        assert live_batches.has_classroom_access(weekly_batch(), {'accessLevel': 'free'}, []) is True
        assert live_batches.has_classroom_access(weekly_batch(), None, []) is False


# ============================================================================
# PERSISTENCE AND ENROLLMENT
# ============================================================================

class TestBatchStore:
    """Batches, sessions and enrollment against the in-memory store"""

    def test_hidden_batches(self, fake_db):
        fake_db.seed('live_batches/a', {'publicationStatus': 'published', 'batchStartDate': '2026-09-01'})
        fake_db.seed('live_batches/b', {'publicationStatus': 'draft', 'batchStartDate': '2026-10-01'})
        fake_db.seed('live_batches/c', {'publicationStatus': 'deleted', 'batchStartDate': '2026-11-01'})
        assert [b['id'] for b in live_batches.list_batches()] == ['a']
        assert [b['id'] for b in live_batches.list_batches(include_hidden=True)] == ['b', 'a']
        with pytest.raises(NotFound):
            live_batches.get_batch('b')
        assert live_batches.get_batch('b', staff=True)['id'] == 'b'
        with pytest.raises(NotFound):
            live_batches.get_batch('c', staff=True)

    def test_only_owner_adds_sessions(self, fake_db):
        fake_db.seed('live_batches/b1', weekly_batch())
        with pytest.raises(PermissionDenied):
            live_batches.add_session('b1', {'type': 'meeting', 'date': '2026-11-06'}, 'teacher2')
        with pytest.raises(ValidationFailed):
            live_batches.add_session('b1', {'type': 'holiday', 'date': '2026-11-06', 'holidayEndDate': '2026-11-05'},
                                     'teacher1')
        added = live_batches.add_session('b1', {'type': 'meeting', 'date': '2026-11-06', 'meetingTime': '10:00',
                                                'zoomLink': ''}, 'teacher1')
        assert 'zoomLink' not in added
        assert [s['id'] for s in live_batches.list_sessions('b1')] == [added['id']]
        live_batches.delete_session(added['id'], 'admin1', admin=True)
        assert live_batches.list_sessions('b1') == []

    def test_soft_delete(self, fake_db):
        fake_db.seed('live_batches/b1', weekly_batch())
        live_batches.delete_batch('b1', 'teacher1')
        assert fake_db.read('live_batches/b1')['publicationStatus'] == 'deleted'

    def test_free_enrollment(self, fake_db):
        fake_db.seed('live_batches/b1', weekly_batch())
        live_batches.enroll_free('s1', weekly_batch())
        assert live_batches.get_enrollment('s1', 'b1')['accessLevel'] == 'free'
        assert [b['id'] for b in live_batches.enrolled_batches('s1')] == ['b1']
        with pytest.raises(PaymentError):
            live_batches.enroll_free('s1', weekly_batch(accessLevel='paid'))

    def test_purchases_accumulate(self, fake_db):
        batch = weekly_batch(accessLevel='paid', totalSessions=10, perSessionFee=250)
        now = datetime(2026, 11, 1, 8, 0)
        live_batches.purchase_sessions('s1', batch, [], 3, 'pay_1', now)
        result = live_batches.purchase_sessions('s1', batch, [], 2, 'pay_2', now)
        assert result['amount'] == 500
        stored = fake_db.read('users/s1/enrolled_live_batches/b1')
        assert stored['sessionsPurchased'] == 5
        assert stored['amountPaid'] == 1250
        assert [h['paymentId'] for h in stored['sessionPurchaseHistory']] == ['pay_1', 'pay_2']

    def test_purchase_after_morning_class(self, fake_db):
        batch = weekly_batch(accessLevel='paid', totalSessions=10, perSessionFee=250)
        sessions = [meeting('2026-11-02', '10:00'), meeting('2026-11-02', '18:00')]
        live_batches.purchase_sessions('s1', batch, sessions, 2, 'pay_1', datetime(2026, 11, 2, 11, 0))
        stored = fake_db.read('users/s1/enrolled_live_batches/b1')
        assert stored['paidAt'] == '2026-11-02T11:00:00+05:30'
        assert live_batches.remaining_paid_sessions(stored, sessions, datetime(2026, 11, 2, 19, 0)) == 1

    def test_purchase_limits(self, fake_db):
        batch = weekly_batch(accessLevel='paid', totalSessions=2, perSessionFee=250)
        with pytest.raises(ValidationFailed):
            live_batches.purchase_sessions('s1', batch, [], 3)
        with pytest.raises(ValidationFailed):
            live_batches.purchase_sessions('s1', batch, [], 0)
        with pytest.raises(ValidationFailed):
            live_batches.purchase_sessions('s1', weekly_batch(), [], 1)
        with pytest.raises(PaymentError):
            live_batches.purchase_sessions('s1', weekly_batch(accessLevel='paid', totalSessions=2), [], 1)
