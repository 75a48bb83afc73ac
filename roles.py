"""
Identity and roles for DCAM Classes
User profiles, role markers, teacher approval and account blocking
"""
import hashlib
from datetime import datetime, timedelta

from firebase_config import db
from utils.errors import NotFound, ValidationFailed
from utils.logger import logger

USERS_COL = 'users'
ADMIN_MARKERS_COL = 'roles_admin'
TEACHER_MARKERS_COL = 'roles_teacher'
BLOCKED_EMAILS_COL = 'blocked_emails'
PASSWORD_RESETS_COL = 'password_resets'
PLANS_COL = 'subscription_plans'

ROLES = ('student', 'teacher', 'admin')
SUBSCRIBED_STATES = ('active', 'trialing')


def _email_key(email):
    return (email or '').strip().lower()


def get_profile(uid):
    if not uid:
        return None
    doc = db.collection(USERS_COL).document(uid).get()
    if not doc.exists:
        return None
    return {**doc.to_dict(), 'id': doc.id}


def is_admin(uid):
    return bool(uid) and db.collection(ADMIN_MARKERS_COL).document(uid).get().exists


def is_teacher(uid):
    return bool(uid) and db.collection(TEACHER_MARKERS_COL).document(uid).get().exists


def is_staff(uid):
    return is_teacher(uid) or is_admin(uid)


def is_subscribed(profile):
    return bool(profile) and profile.get('subscriptionStatus') in SUBSCRIBED_STATES


def has_live_class_access(profile):
    if not is_subscribed(profile) or not profile.get('subscriptionPlanId'):
        return False
    plan = db.collection(PLANS_COL).document(profile['subscriptionPlanId']).get()
    if not plan.exists:
        return False
    return (plan.to_dict().get('numberOfLiveClasses') or 0) > 0


def is_designated_admin(email, admin_email):
    return bool(admin_email) and _email_key(email) == _email_key(admin_email)


def display_name(profile):
    if not profile:
        return 'Unknown'
    name = f"{profile.get('firstName', '')} {profile.get('lastName', '')}".strip()
    return name or profile.get('email', 'Unknown')


# ============================================================================
# REGISTRATION
# ============================================================================

def register_student(uid, data, password_hash, admin_email=None):
    """Create the users/{uid} document for a new student account"""
    profile = {
        'id': uid,
        'firstName': data['firstName'],
        'lastName': data['lastName'],
        'email': data['email'],
        'roleId': 'student',
        'status': 'active',
        'password_hash': password_hash,
        'about': '',
        'createdAt': datetime.utcnow().isoformat(),
    }
    if is_designated_admin(data['email'], admin_email):
        profile.update({'roleId': 'admin', 'teacherStatus': 'approved'})
    db.collection(USERS_COL).document(uid).set(profile)
    if profile['roleId'] == 'admin':
        _write_admin_markers(uid)
    logger.info("student_registered", user_id=uid, role=profile['roleId'])
    return profile


def register_teacher(uid, data, password_hash, admin_email=None):
    """Create a teacher account awaiting approval (designated admin is approved outright)"""
    admin = is_designated_admin(data['email'], admin_email)
    profile = {
        'id': uid,
        'firstName': data['firstName'],
        'lastName': data['lastName'],
        'email': data['email'],
        'phoneNumber': data['phoneNumber'],
        'roleId': 'admin' if admin else 'teacher',
        'teacherStatus': 'approved' if admin else 'pending',
        'status': 'active',
        'password_hash': password_hash,
        'about': '',
        'createdAt': datetime.utcnow().isoformat(),
    }
    db.collection(USERS_COL).document(uid).set(profile)
    if admin:
        _write_admin_markers(uid)
    logger.info("teacher_registered", user_id=uid, role=profile['roleId'])
    return profile


def promote_designated_admin(uid, phone_number=None):
    """An existing account re-registering as teacher with the admin email"""
    updates = {'roleId': 'admin', 'teacherStatus': 'approved'}
    if phone_number:
        updates['phoneNumber'] = phone_number
    db.collection(USERS_COL).document(uid).update(updates)
    _write_admin_markers(uid)
    logger.security_event("designated_admin_promoted", user_id=uid)


def _write_admin_markers(uid):
    now = datetime.utcnow().isoformat()
    batch = db.batch()
    batch.set(db.collection(ADMIN_MARKERS_COL).document(uid), {'grantedAt': now})
    batch.set(db.collection(TEACHER_MARKERS_COL).document(uid), {'grantedAt': now})
    batch.commit()


# ============================================================================
# ROLE MANAGEMENT
# ============================================================================

def set_role(uid, role):
    if role not in ROLES:
        raise ValidationFailed(f"Unknown role: {role}")
    user_ref = db.collection(USERS_COL).document(uid)
    if not user_ref.get().exists:
        raise NotFound('User not found.', user_id=uid)
    admin_ref = db.collection(ADMIN_MARKERS_COL).document(uid)
    teacher_ref = db.collection(TEACHER_MARKERS_COL).document(uid)
    now = datetime.utcnow().isoformat()

    batch = db.batch()
    batch.update(user_ref, {'roleId': role})
    if role == 'student':
        batch.delete(admin_ref)
        batch.delete(teacher_ref)
    elif role == 'teacher':
        batch.set(teacher_ref, {'grantedAt': now})
        batch.delete(admin_ref)
    else:
        batch.delete(teacher_ref)
        batch.set(admin_ref, {'grantedAt': now})
    batch.commit()
    logger.security_event("role_changed", user_id=uid, role=role)


def approve_teacher(uid):
    user_ref = db.collection(USERS_COL).document(uid)
    if not user_ref.get().exists:
        raise NotFound('User not found.', user_id=uid)
    batch = db.batch()
    batch.update(user_ref, {'teacherStatus': 'approved'})
    batch.set(db.collection(TEACHER_MARKERS_COL).document(uid), {'grantedAt': datetime.utcnow().isoformat()})
    batch.commit()
    logger.security_event("teacher_approved", user_id=uid)


def list_users(role=None):
    query = db.collection(USERS_COL)
    if role:
        query = query.where('roleId', '==', role)
    users = [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
    users.sort(key=lambda u: (u.get('firstName') or '').lower())
    return users


def list_pending_teachers():
    return [u for u in list_users('teacher') if u.get('teacherStatus') == 'pending']


# ============================================================================
# BLOCKING
# ============================================================================

def is_email_blocked(email):
    key = _email_key(email)
    return bool(key) and db.collection(BLOCKED_EMAILS_COL).document(key).get().exists


def block_user(uid):
    profile = get_profile(uid)
    if not profile:
        raise NotFound('User not found.', user_id=uid)
    batch = db.batch()
    batch.update(db.collection(USERS_COL).document(uid), {'status': 'blocked'})
    batch.set(db.collection(BLOCKED_EMAILS_COL).document(_email_key(profile.get('email'))), {
        'userId': uid,
        'email': profile.get('email'),
        'blockedAt': datetime.utcnow().isoformat(),
    })
    batch.commit()
    logger.security_event("user_blocked", user_id=uid)


def list_blocked_emails():
    entries = [{**doc.to_dict(), 'email': doc.to_dict().get('email') or doc.id}
               for doc in db.collection(BLOCKED_EMAILS_COL).stream()]
    entries.sort(key=lambda e: e.get('blockedAt') or '', reverse=True)
    return entries


def unblock_email(email):
    entry_ref = db.collection(BLOCKED_EMAILS_COL).document(_email_key(email))
    entry = entry_ref.get()
    if not entry.exists:
        raise NotFound('That email is not blocked.', email=email)
    batch = db.batch()
    batch.delete(entry_ref)
    uid = entry.to_dict().get('userId')
    if uid and db.collection(USERS_COL).document(uid).get().exists:
        batch.update(db.collection(USERS_COL).document(uid), {'status': 'active'})
    batch.commit()
    logger.security_event("user_unblocked", user_id=uid, email=email)


def delete_blocked_user(email):
    entry_ref = db.collection(BLOCKED_EMAILS_COL).document(_email_key(email))
    entry = entry_ref.get()
    if not entry.exists:
        raise NotFound('That email is not blocked.', email=email)
    uid = entry.to_dict().get('userId')
    batch = db.batch()
    if uid:
        batch.delete(db.collection(USERS_COL).document(uid))
    batch.delete(entry_ref)
    batch.commit()
    logger.security_event("blocked_user_deleted", user_id=uid, email=email)
    return uid


# ============================================================================
# PASSWORD RESET
# ============================================================================

def _reset_ref(token):
    # only a digest of the emailed token is stored
    return db.collection(PASSWORD_RESETS_COL).document(hashlib.sha256(token.encode('utf-8')).hexdigest())


def create_password_reset(uid, token, ttl_minutes=60, now=None):
    now = now or datetime.utcnow()
    _reset_ref(token).set({
        'userId': uid,
        'createdAt': now.isoformat(),
        'expiresAt': (now + timedelta(minutes=ttl_minutes)).isoformat(),
    })
    logger.security_event("password_reset_requested", user_id=uid)


def password_reset_user(token, now=None):
    """The uid a live reset token belongs to, or None when unknown or expired"""
    if not token:
        return None
    doc = _reset_ref(token).get()
    if not doc.exists:
        return None
    data = doc.to_dict()
    if datetime.fromisoformat(data['expiresAt']) < (now or datetime.utcnow()):
        return None
    return data.get('userId')


def complete_password_reset(token, uid, password_hash):
    batch = db.batch()
    batch.update(db.collection(USERS_COL).document(uid), {
        'password_hash': password_hash,
        'passwordResetAt': datetime.utcnow().isoformat(),
    })
    batch.delete(_reset_ref(token))
    batch.commit()
    logger.security_event("password_reset_completed", user_id=uid)
