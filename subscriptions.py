"""
Subscription plans and Razorpay checkout for DCAM Classes
"""
import calendar
import time
from datetime import datetime

import razorpay
from flask import current_app

from firebase_config import db
from utils.errors import NotFound, PaymentError
from utils.logger import logger
from utils.security import verify_razorpay_signature

PLANS_COL = 'subscription_plans'
ORDERS_SUBCOL = 'payment_orders'
PAYMENTS_COL = 'payments'
CURRENCY = 'INR'
OPTIONAL_SCOPE_FIELDS = ('classId', 'subjectId', 'topicId', 'linkedContentType', 'linkedContentId')


def parse_features(text):
    """One feature per line; blank lines dropped"""
    return [line.strip() for line in (text or '').splitlines() if line.strip()]


def add_months(moment, months):
    """Calendar-month arithmetic clamped to the last day of the target month"""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_end(start, billing_interval):
    return add_months(start, 1 if billing_interval == 'monthly' else 12)


# ============================================================================
# PLANS
# ============================================================================

def _plan_record(data):
    record = {
        'name': data['name'],
        'price': data['price'],
        'billingInterval': data['billingInterval'],
        'examTypeId': data['examTypeId'],
        'features': parse_features(data['features']),
        'numberOfLiveClasses': data.get('numberOfLiveClasses') or 0,
    }
    for field in OPTIONAL_SCOPE_FIELDS:
        if data.get(field):
            record[field] = data[field]
    if data.get('sessionFee') is not None:
        record['sessionFee'] = data['sessionFee']
    return record


def list_plans():
    plans = [{**doc.to_dict(), 'id': doc.id} for doc in db.collection(PLANS_COL).stream()]
    plans.sort(key=lambda p: (p.get('price') or 0, p.get('name') or ''))
    return plans


def get_plan(plan_id):
    doc = db.collection(PLANS_COL).document(plan_id).get()
    if not doc.exists:
        raise NotFound('Subscription plan not found.', plan_id=plan_id)
    return {**doc.to_dict(), 'id': doc.id}


def create_plan(data, uid):
    record = {**_plan_record(data), 'createdBy': uid, 'createdAt': datetime.utcnow().isoformat()}
    ref = db.collection(PLANS_COL).document()
    ref.set(record)
    logger.info("plan_created", plan_id=ref.id, user_id=uid)
    return {**record, 'id': ref.id}


def update_plan(plan_id, data, uid):
    existing = get_plan(plan_id)
    existing.pop('id')
    # scope fields cleared in the form must disappear from the stored plan
    for field in OPTIONAL_SCOPE_FIELDS + ('sessionFee',):
        existing.pop(field, None)
    record = {**existing, **_plan_record(data), 'updatedAt': datetime.utcnow().isoformat()}
    db.collection(PLANS_COL).document(plan_id).set(record)
    logger.info("plan_updated", plan_id=plan_id, user_id=uid)
    return {**record, 'id': plan_id}


def delete_plan(plan_id, uid):
    get_plan(plan_id)
    db.collection(PLANS_COL).document(plan_id).delete()
    logger.info("plan_deleted", plan_id=plan_id, user_id=uid)


# ============================================================================
# CHECKOUT
# ============================================================================

def get_razorpay_client():
    key_id = current_app.config.get('RAZORPAY_KEY_ID')
    key_secret = current_app.config.get('RAZORPAY_KEY_SECRET')
    if not key_id or not key_secret:
        raise PaymentError('Payment gateway is not configured.')
    return razorpay.Client(auth=(key_id, key_secret))


def create_order(amount, receipt=None, notes=None):
    """Create a Razorpay order for a rupee amount; returns the order dict"""
    if amount is None or amount <= 0:
        raise PaymentError('A positive amount is required to create an order.', amount=amount)
    client = get_razorpay_client()
    order_data = {
        'amount': int(round(amount * 100)),
        'currency': CURRENCY,
        'receipt': receipt or f"receipt_{int(time.time())}",
        'notes': notes or {},
    }
    try:
        order = client.order.create(data=order_data)
    except Exception as e:
        logger.error("razorpay_order_error", error=str(e), amount=order_data['amount'])
        raise PaymentError('Failed to create payment order. Please try again.') from e
    logger.info("razorpay_order_created", order_id=order.get('id'), amount=order_data['amount'])
    return order


def verify_payment(order_id, payment_id, signature):
    secret = current_app.config.get('RAZORPAY_KEY_SECRET')
    return verify_razorpay_signature(order_id, payment_id, signature, secret)


def _orders(uid):
    return db.collection('users').document(uid).collection(ORDERS_SUBCOL)


def record_order(uid, order, target):
    """
    Store what an order pays for under users/{uid}/payment_orders/{orderId}.

    `target` is {'planId': ...} or {'batchId': ..., 'sessions': n}. Fulfilment
    reads this record, never the values posted back by the browser.
    """
    record = {
        **target,
        'orderId': order['id'],
        'amount': order['amount'],
        'currency': order.get('currency', CURRENCY),
        'status': 'created',
        'createdAt': datetime.utcnow().isoformat(),
    }
    _orders(uid).document(order['id']).set(record)
    return record


def claim_order(uid, order_id, payment_id):
    """The stored order for a verified payment; refuses unknown orders and reused payments"""
    doc = _orders(uid).document(order_id).get() if order_id else None
    if doc is None or not doc.exists:
        raise PaymentError('Payment does not match an order placed by this account.', order_id=order_id)
    order = doc.to_dict()
    if order.get('status') == 'paid':
        raise PaymentError('This order has already been fulfilled.', order_id=order_id)
    if db.collection(PAYMENTS_COL).document(payment_id).get().exists:
        raise PaymentError('This payment has already been used.', payment_id=payment_id)
    return order


def mark_order_paid(uid, order_id, payment_id):
    now = datetime.utcnow().isoformat()
    batch = db.batch()
    batch.update(_orders(uid).document(order_id), {'status': 'paid', 'paymentId': payment_id, 'paidAt': now})
    batch.set(db.collection(PAYMENTS_COL).document(payment_id),
              {'userId': uid, 'orderId': order_id, 'usedAt': now})
    batch.commit()
    logger.info("payment_order_fulfilled", user_id=uid, order_id=order_id, payment_id=payment_id)


def activate_subscription(uid, plan, now=None):
    now = now or datetime.utcnow()
    end = period_end(now, plan.get('billingInterval', 'yearly'))
    user_ref = db.collection('users').document(uid)
    user_ref.update({'subscriptionStatus': 'active', 'subscriptionPlanId': plan['id']})
    subscription = {
        'id': 'main',
        'planId': plan['id'],
        'status': 'active',
        'currentPeriodStart': now.isoformat(),
        'currentPeriodEnd': end.isoformat(),
    }
    user_ref.collection('subscriptions').document('main').set(subscription, merge=True)
    logger.info("subscription_activated", user_id=uid, plan_id=plan['id'], period_end=end.isoformat())
    return subscription


def get_subscription(uid):
    doc = db.collection('users').document(uid).collection('subscriptions').document('main').get()
    return doc.to_dict() if doc.exists else None
