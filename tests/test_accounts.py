"""
Tests for accounts: roles, blocking, plans and subscriptions
"""
import hashlib
import hmac
import os
import sys
from datetime import date, datetime

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import roles
import subscriptions
from utils.errors import NotFound, PaymentError, ValidationFailed
from utils.security import verify_razorpay_signature

ADMIN_EMAIL = 'owner@dcam.example'

STUDENT = {'firstName': 'Asha', 'lastName': 'Rao', 'email': 'asha@example.com'}
TEACHER = {'firstName': 'Vikram', 'lastName': 'Sen', 'email': 'vikram@example.com', 'phoneNumber': '9876543210'}


# ============================================================================
# ROLES
# ============================================================================

class TestRegistration:
    """Profiles and role markers written at sign-up"""

    def test_student_registration(self, fake_db):
        profile = roles.register_student('u1', STUDENT, 'hash', ADMIN_EMAIL)
        assert profile['roleId'] == 'student'
        assert fake_db.read('users/u1')['password_hash'] == 'hash'
        assert roles.is_staff('u1') is False

    def test_designated_admin_is_case_insensitive(self, fake_db):
        roles.register_student('u1', {**STUDENT, 'email': 'Owner@DCAM.example'}, 'hash', ADMIN_EMAIL)
        assert roles.is_admin('u1') is True
        assert roles.is_teacher('u1') is True

    def test_teacher_waits_for_approval(self, fake_db):
        profile = roles.register_teacher('t1', TEACHER, 'hash', ADMIN_EMAIL)
        assert profile['teacherStatus'] == 'pending'
        assert roles.is_teacher('t1') is False
        assert [u['id'] for u in roles.list_pending_teachers()] == ['t1']

        roles.approve_teacher('t1')
        assert roles.is_teacher('t1') is True
        assert fake_db.read('users/t1')['teacherStatus'] == 'approved'
        assert roles.list_pending_teachers() == []

    def test_promote_existing_account(self, fake_db):
        roles.register_student('u1', STUDENT, 'hash')
        roles.promote_designated_admin('u1', '9000000000')
        assert roles.is_admin('u1') is True
        assert fake_db.read('users/u1')['phoneNumber'] == '9000000000'


class TestRoleManagement:
    """Role changes keep the marker collections in sync"""

    def test_set_role_moves_markers(self, fake_db):
        roles.register_student('u1', STUDENT, 'hash')
        roles.set_role('u1', 'admin')
        assert roles.is_admin('u1') is True
        roles.set_role('u1', 'teacher')
        assert roles.is_admin('u1') is False
        assert roles.is_teacher('u1') is True
        roles.set_role('u1', 'student')
        assert roles.is_staff('u1') is False
        assert fake_db.read('users/u1')['roleId'] == 'student'

    def test_unknown_role(self, fake_db):
        with pytest.raises(ValidationFailed):
            roles.set_role('u1', 'superuser')

    def test_missing_user(self, fake_db):
        with pytest.raises(NotFound):
            roles.set_role('ghost', 'teacher')

    def test_display_name(self):
        assert roles.display_name({'firstName': 'Asha', 'lastName': 'Rao'}) == 'Asha Rao'
        assert roles.display_name({'email': 'x@example.com'}) == 'x@example.com'
        assert roles.display_name(None) == 'Unknown'

    def test_live_class_access_needs_plan_with_classes(self, fake_db):
        fake_db.seed('subscription_plans/basic', {'numberOfLiveClasses': 0})
        fake_db.seed('subscription_plans/pro', {'numberOfLiveClasses': 8})
        assert roles.has_live_class_access({'subscriptionStatus': 'active', 'subscriptionPlanId': 'pro'}) is True
        assert roles.has_live_class_access({'subscriptionStatus': 'active', 'subscriptionPlanId': 'basic'}) is False
        assert roles.has_live_class_access({'subscriptionStatus': 'past_due', 'subscriptionPlanId': 'pro'}) is False


class TestBlocking:
    """Blocked emails"""

    def test_block_and_unblock(self, fake_db):
        roles.register_student('u1', STUDENT, 'hash')
        roles.block_user('u1')
        assert roles.is_email_blocked('ASHA@example.com') is True
        assert fake_db.read('users/u1')['status'] == 'blocked'
        assert [e['email'] for e in roles.list_blocked_emails()] == ['asha@example.com']

        roles.unblock_email('asha@example.com')
        assert roles.is_email_blocked('asha@example.com') is False
        assert fake_db.read('users/u1')['status'] == 'active'

    def test_delete_blocked_user(self, fake_db):
        roles.register_student('u1', STUDENT, 'hash')
        roles.block_user('u1')
        assert roles.delete_blocked_user('asha@example.com') == 'u1'
        assert fake_db.read('users/u1') is None
        assert roles.is_email_blocked('asha@example.com') is False

    def test_unblock_unknown_email(self, fake_db):
        with pytest.raises(NotFound):
            roles.unblock_email('nobody@example.com')


class TestPasswordReset:
    """Reset tokens for accounts that lost or never had a password"""

    def test_token_is_stored_as_digest(self, fake_db):
        roles.create_password_reset('u1', 'tok-123')
        digest = hashlib.sha256(b'tok-123').hexdigest()
        assert fake_db.read(f'password_resets/{digest}')['userId'] == 'u1'
        assert fake_db.read('password_resets/tok-123') is None
        assert roles.password_reset_user('tok-123') == 'u1'

    def test_unknown_or_blank_token(self, fake_db):
        assert roles.password_reset_user('nope') is None
        assert roles.password_reset_user('') is None

    def test_token_expires(self, fake_db):
        issued = datetime(2026, 10, 1, 9, 0)
        roles.create_password_reset('u1', 'tok-123', ttl_minutes=30, now=issued)
        assert roles.password_reset_user('tok-123', now=datetime(2026, 10, 1, 9, 29)) == 'u1'
        assert roles.password_reset_user('tok-123', now=datetime(2026, 10, 1, 9, 31)) is None

    def test_completing_sets_hash_and_burns_token(self, fake_db):
        roles.register_student('u1', STUDENT, None)
        roles.create_password_reset('u1', 'tok-123')
        roles.complete_password_reset('tok-123', 'u1', 'new-hash')
        profile = fake_db.read('users/u1')
        assert profile['password_hash'] == 'new-hash'
        assert 'passwordResetAt' in profile
        assert roles.password_reset_user('tok-123') is None


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

class TestBillingPeriods:
    """Calendar-month arithmetic"""

    def test_add_months_clamps_day(self):
        assert subscriptions.add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert subscriptions.add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)

    def test_add_months_rolls_year(self):
        assert subscriptions.add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)

    def test_period_end(self):
        start = datetime(2026, 3, 31, 12, 0)
        assert subscriptions.period_end(start, 'monthly') == datetime(2026, 4, 30, 12, 0)
        assert subscriptions.period_end(start, 'yearly') == datetime(2027, 3, 31, 12, 0)

    def test_parse_features(self):
        assert subscriptions.parse_features('Mock tests\n\n  Live classes  \n') == ['Mock tests', 'Live classes']
        assert subscriptions.parse_features(None) == []


class TestPlans:
    """Plan storage"""

    PLAN = {
        'name': 'JEE Pro', 'price': 4999, 'billingInterval': 'yearly', 'examTypeId': 'jee',
        'features': 'All mock tests\nLive doubt sessions', 'numberOfLiveClasses': 12, 'subjectId': 'phy',
    }

    def test_create_and_update_plan(self, fake_db):
        plan = subscriptions.create_plan(self.PLAN, 'admin1')
        assert plan['features'] == ['All mock tests', 'Live doubt sessions']
        updated = subscriptions.update_plan(plan['id'], {**self.PLAN, 'subjectId': '', 'price': 3999}, 'admin1')
        assert updated['price'] == 3999
        assert 'subjectId' not in fake_db.read(f"subscription_plans/{plan['id']}")

    def test_plans_sorted_by_price(self, fake_db):
        subscriptions.create_plan({**self.PLAN, 'name': 'Pro', 'price': 4999}, 'admin1')
        subscriptions.create_plan({**self.PLAN, 'name': 'Basic', 'price': 999}, 'admin1')
        assert [p['name'] for p in subscriptions.list_plans()] == ['Basic', 'Pro']

    def test_delete_missing_plan(self, fake_db):
        with pytest.raises(NotFound):
            subscriptions.delete_plan('nope', 'admin1')


class _FakeOrders:
    def __init__(self):
        self.created = []

    def create(self, data):
        self.created.append(data)
        return {'id': 'order_123', **data}


class _FakeRazorpay:
    def __init__(self):
        self.order = _FakeOrders()


class TestCheckout:
    """Orders, signatures and activation"""

    def test_order_amount_in_paise(self, monkeypatch):
        client = _FakeRazorpay()
        monkeypatch.setattr(subscriptions, 'get_razorpay_client', lambda: client)
        order = subscriptions.create_order(499.5, receipt='r1', notes={'planId': 'pro'})
        assert order['id'] == 'order_123'
        assert client.order.created[0]['amount'] == 49950
        assert client.order.created[0]['currency'] == 'INR'

    def test_order_requires_positive_amount(self, monkeypatch):
        monkeypatch.setattr(subscriptions, 'get_razorpay_client', lambda: _FakeRazorpay())
        with pytest.raises(PaymentError):
            subscriptions.create_order(0)

    def test_signature_verification(self):
        secret = 'rzp_secret'
        signature = hmac.new(secret.encode(), b'order_1|pay_1', hashlib.sha256).hexdigest()
        assert verify_razorpay_signature('order_1', 'pay_1', signature, secret) is True
        assert verify_razorpay_signature('order_1', 'pay_2', signature, secret) is False
        assert verify_razorpay_signature('order_1', 'pay_1', '', secret) is False

    def test_activate_subscription(self, fake_db):
        fake_db.seed('users/u1', {'roleId': 'student'})
        start = datetime(2026, 1, 31, 9, 0)
        subscription = subscriptions.activate_subscription('u1', {'id': 'pro', 'billingInterval': 'monthly'}, start)
        assert subscription['currentPeriodEnd'] == datetime(2026, 2, 28, 9, 0).isoformat()
        assert fake_db.read('users/u1')['subscriptionStatus'] == 'active'
        assert subscriptions.get_subscription('u1')['planId'] == 'pro'
