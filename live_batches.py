"""
Live batches for DCAM Classes

A batch carries a weekly subject schedule. Teachers add dated sessions
(meetings, recordings of previous sessions, holidays, cancellations) and
students enroll, paying per session for paid batches.
"""
from datetime import datetime, timedelta, timezone

from firebase_admin import firestore

from firebase_config import db
from roles import display_name
from utils.errors import NotFound, PaymentError, PermissionDenied, ValidationFailed
from utils.logger import logger

BATCHES_COL = 'live_batches'
SESSIONS_COL = 'live_batch_sessions'
ENROLLMENTS_SUBCOL = 'enrolled_live_batches'

UPCOMING_WINDOW_DAYS = 10
MAX_UPCOMING_SLOTS = 12
DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']
VISIBLE_TO_STUDENTS = ('published',)

# Schedules and meeting times are entered as India wall-clock times
IST = timezone(timedelta(hours=5, minutes=30))


def local_now():
    """Current India wall-clock time as a naive datetime"""
    return datetime.now(IST).replace(tzinfo=None)


def local_today():
    return local_now().date()


def to_local(moment):
    """Offset-aware stamps are converted; naive ones are already India wall-clock"""
    if moment.tzinfo is not None:
        return moment.astimezone(IST).replace(tzinfo=None)
    return moment


def local_stamp(moment=None):
    return (moment or local_now()).replace(tzinfo=IST).isoformat()


def parse_ymd(value):
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        return None


def parse_ymd_hm(day, hm):
    parsed = parse_ymd(day)
    if parsed is None or not hm:
        return None
    try:
        hours, minutes = (int(part) for part in hm.split(':'))
        return datetime(parsed.year, parsed.month, parsed.day, hours, minutes)
    except ValueError:
        return None


def day_name(day):
    # date.weekday() is Monday=0; DAY_NAMES starts on Sunday
    return DAY_NAMES[(day.weekday() + 1) % 7]


def expand_range(start, end):
    """Every YYYY-MM-DD from start to end inclusive (just start when end precedes it)"""
    first, last = parse_ymd(start), parse_ymd(end) or parse_ymd(start)
    if first is None:
        return []
    if last < first:
        last = first
    return [(first + timedelta(days=i)).isoformat() for i in range((last - first).days + 1)]


# ============================================================================
# SCHEDULE
# ============================================================================

def schedule_notices(sessions):
    """{date: {'type': 'holiday'|'cancelled', 'text': ...}}; a holiday overrides a cancellation"""
    notices = {}
    for session in sessions:
        if not session.get('date'):
            continue
        if session.get('type') == 'holiday':
            start = session['date']
            end = session.get('holidayEndDate') or start
            days = expand_range(start, end)
            text = 'Holiday'
            if len(days) > 1:
                text += f" ({days[0]} to {days[-1]})"
            if session.get('reason'):
                text += f" - {session['reason']}"
            for day in days:
                notices[day] = {'type': 'holiday', 'text': text}
        elif session.get('type') == 'cancelled' and session['date'] not in notices:
            text = 'Cancelled'
            if session.get('sessionLabel'):
                text += f" - {session['sessionLabel']}"
            if session.get('reason'):
                text += f" ({session['reason']})"
            notices[session['date']] = {'type': 'cancelled', 'text': text}
    return notices


def _slot_times(schedule, name):
    if schedule.get('useDifferentTimingPerDay'):
        timing = (schedule.get('dayTimings') or {}).get(name) or {}
        return timing.get('startTime', ''), timing.get('endTime', '')
    return schedule.get('startTime', ''), schedule.get('endTime', '')


def upcoming_slots(batch, sessions, today=None, subject_names=None):
    """Weekly-schedule slots over the next ten days from max(today, batch start), at most twelve"""
    schedules = batch.get('subjectSchedules') or []
    if not schedules:
        return []
    subject_names = subject_names or {}
    today = today or local_today()
    start = parse_ymd(batch.get('batchStartDate'))
    window_start = start if start and start > today else today
    notices = schedule_notices(sessions)

    slots = []
    for offset in range(UPCOMING_WINDOW_DAYS):
        day = window_start + timedelta(days=offset)
        name = day_name(day)
        ymd = day.isoformat()
        for schedule in schedules:
            if name not in (schedule.get('daysOfWeek') or []):
                continue
            start_time, end_time = _slot_times(schedule, name)
            if not start_time:
                continue
            notice = notices.get(ymd) or {}
            slots.append({
                'date': ymd,
                'dayName': name,
                'subjectName': subject_names.get(schedule.get('subjectId')) or schedule.get('subjectId') or 'Subject',
                'startTime': start_time,
                'endTime': end_time,
                'noticeType': notice.get('type'),
                'noticeText': notice.get('text'),
            })
    slots.sort(key=lambda s: f"{s['date']} {s['startTime']}")
    return slots[:MAX_UPCOMING_SLOTS]


def upcoming_meetings(sessions, today=None):
    today_ymd = (today or local_today()).isoformat()
    meetings = [s for s in sessions if s.get('type') == 'meeting' and (s.get('date') or '') >= today_ymd]
    meetings.sort(key=lambda s: f"{s.get('date', '')} {s.get('meetingTime', '')}")
    return meetings


def next_class(batch, sessions, now=None, subject_names=None):
    """Earliest future scheduled meeting, or regular slot that has no holiday/cancellation"""
    now = now or local_now()
    subject_names = subject_names or {}
    candidates = []
    for meeting in upcoming_meetings(sessions, now.date()):
        when = parse_ymd_hm(meeting.get('date'), meeting.get('meetingTime'))
        if when is None or when < now:
            continue
        candidates.append({
            'when': when,
            'title': meeting.get('meetingTitle') or 'Live Session',
            'subject': subject_names.get(meeting.get('subjectId')) or meeting.get('subjectName') or 'All Subjects',
            'zoomLink': meeting.get('zoomLink'),
        })
    for slot in upcoming_slots(batch, sessions, now.date(), subject_names):
        if slot['noticeType']:
            continue
        when = parse_ymd_hm(slot['date'], slot['startTime'])
        if when is None or when < now:
            continue
        candidates.append({
            'when': when,
            'title': f"{slot['subjectName']} Class",
            'subject': slot['subjectName'],
            'zoomLink': None,
        })
    if not candidates:
        return None
    return min(candidates, key=lambda c: c['when'])


def conducted_meetings(sessions, now=None, since=None):
    """Meetings whose start time has passed (optionally only those at or after `since`)"""
    now = now or local_now()
    conducted = []
    for session in sessions:
        if session.get('type') != 'meeting':
            continue
        when = parse_ymd_hm(session.get('date'), session.get('meetingTime'))
        if when is None or when > now:
            continue
        if since is not None and when < since:
            continue
        conducted.append(session)
    return conducted


def remaining_batch_sessions(batch, sessions, now=None):
    total = int(batch.get('totalSessions') or 0)
    if total <= 0:
        return 0
    return max(0, total - len(conducted_meetings(sessions, now)))


def _first_purchase_at(enrollment):
    stamps = [item.get('purchasedAt') for item in enrollment.get('sessionPurchaseHistory') or []]
    stamps += [enrollment.get('paidAt'), enrollment.get('enrolledAt')]
    parsed = [to_local(datetime.fromisoformat(s)) for s in stamps if s]
    return min(parsed) if parsed else None


def remaining_paid_sessions(enrollment, sessions, now=None):
    if not enrollment:
        return 0
    purchased = int(enrollment.get('sessionsPurchased') or 0)
    first = _first_purchase_at(enrollment)
    used = len(conducted_meetings(sessions, now, since=first))
    return max(0, purchased - used)


def has_classroom_access(batch, enrollment, sessions, is_teacher=False, now=None):
    if is_teacher:
        return True
    if not enrollment:
        return False
    if batch.get('accessLevel', 'free') == 'free':
        return True
    return remaining_paid_sessions(enrollment, sessions, now) > 0


# ============================================================================
# PERSISTENCE
# ============================================================================

def list_batches(include_hidden=False, teacher_id=None):
    query = db.collection(BATCHES_COL)
    if teacher_id:
        query = query.where('teacherId', '==', teacher_id)
    batches = [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
    if not include_hidden:
        batches = [b for b in batches if b.get('publicationStatus') in VISIBLE_TO_STUDENTS]
    else:
        batches = [b for b in batches if b.get('publicationStatus') != 'deleted']
    batches.sort(key=lambda b: b.get('batchStartDate') or '', reverse=True)
    return batches


def get_batch(batch_id, staff=False):
    doc = db.collection(BATCHES_COL).document(batch_id).get()
    if not doc.exists:
        raise NotFound('Live batch not found.', batch_id=batch_id)
    batch = {**doc.to_dict(), 'id': doc.id}
    status = batch.get('publicationStatus')
    if status == 'deleted' or (status not in VISIBLE_TO_STUDENTS and not staff):
        raise NotFound('Live batch not found.', batch_id=batch_id)
    return batch


def create_batch(data, teacher_profile):
    record = {
        **data,
        'subjectSchedules': [dict(s) for s in data.get('subjectSchedules') or []],
        'teacherId': teacher_profile['id'],
        'teacherName': display_name(teacher_profile),
        'createdAt': datetime.utcnow().isoformat(),
    }
    ref = db.collection(BATCHES_COL).document()
    ref.set(record)
    logger.info("live_batch_created", batch_id=ref.id, teacher_id=teacher_profile['id'])
    return {**record, 'id': ref.id}


def _check_owner(batch, uid, admin):
    if batch.get('teacherId') != uid and not admin:
        raise PermissionDenied('Only the batch teacher can change this batch.', batch_id=batch['id'])


def update_batch(batch_id, data, uid, admin=False):
    batch = get_batch(batch_id, staff=True)
    _check_owner(batch, uid, admin)
    updates = {**data, 'updatedAt': datetime.utcnow().isoformat()}
    if 'subjectSchedules' in updates:
        updates['subjectSchedules'] = [dict(s) for s in updates['subjectSchedules']]
    db.collection(BATCHES_COL).document(batch_id).update(updates)
    logger.info("live_batch_updated", batch_id=batch_id, user_id=uid)


def delete_batch(batch_id, uid, admin=False):
    """Soft delete: the batch stays for enrolled students' history but disappears from listings"""
    batch = get_batch(batch_id, staff=True)
    _check_owner(batch, uid, admin)
    db.collection(BATCHES_COL).document(batch_id).update({'publicationStatus': 'deleted'})
    logger.info("live_batch_deleted", batch_id=batch_id, user_id=uid)


def list_sessions(batch_id):
    query = db.collection(SESSIONS_COL).where('batchId', '==', batch_id)
    sessions = [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
    sessions.sort(key=lambda s: f"{s.get('date', '')} {s.get('meetingTime', '')}")
    return sessions


def add_session(batch_id, data, uid, admin=False):
    batch = get_batch(batch_id, staff=True)
    _check_owner(batch, uid, admin)
    if data['type'] == 'holiday' and data.get('holidayEndDate') and data['holidayEndDate'] < data['date']:
        raise ValidationFailed('A holiday cannot end before it starts.')
    record = {k: v for k, v in data.items() if v not in ('', None)}
    record.update({'batchId': batch_id, 'createdBy': uid, 'createdAt': datetime.utcnow().isoformat()})
    ref = db.collection(SESSIONS_COL).document()
    ref.set(record)
    logger.info("live_session_added", batch_id=batch_id, session_id=ref.id, type=data['type'])
    return {**record, 'id': ref.id}


def delete_session(session_id, uid, admin=False):
    doc = db.collection(SESSIONS_COL).document(session_id).get()
    if not doc.exists:
        raise NotFound('Session not found.', session_id=session_id)
    batch = get_batch(doc.to_dict()['batchId'], staff=True)
    _check_owner(batch, uid, admin)
    db.collection(SESSIONS_COL).document(session_id).delete()
    logger.info("live_session_deleted", batch_id=batch['id'], session_id=session_id, user_id=uid)


# ============================================================================
# ENROLLMENT
# ============================================================================

def _enrollment_ref(uid, batch_id):
    return db.collection('users').document(uid).collection(ENROLLMENTS_SUBCOL).document(batch_id)


def get_enrollment(uid, batch_id):
    doc = _enrollment_ref(uid, batch_id).get()
    return doc.to_dict() if doc.exists else None


def enrolled_batches(uid):
    entries = [{**doc.to_dict(), 'batchId': doc.id} for doc in
               db.collection('users').document(uid).collection(ENROLLMENTS_SUBCOL).stream()]
    batches = []
    for entry in entries:
        doc = db.collection(BATCHES_COL).document(entry['batchId']).get()
        if doc.exists and doc.to_dict().get('publicationStatus') != 'deleted':
            batches.append({**doc.to_dict(), 'id': doc.id, 'enrollment': entry})
    return batches


def enroll_free(uid, batch):
    if batch.get('accessLevel', 'free') != 'free':
        raise PaymentError('This batch requires purchasing sessions.', batch_id=batch['id'])
    record = {'batchId': batch['id'], 'enrolledAt': local_stamp(), 'accessLevel': 'free'}
    _enrollment_ref(uid, batch['id']).set(record, merge=True)
    logger.info("live_batch_enrolled", user_id=uid, batch_id=batch['id'])
    return record


def purchasable_sessions(batch, sessions, now=None):
    return remaining_batch_sessions(batch, sessions, now)


def purchase_sessions(uid, batch, sessions, count, payment_id=None, now=None):
    """Record a paid session purchase; the amount is sessions x per-session fee"""
    if batch.get('accessLevel') != 'paid':
        raise ValidationFailed('This batch is free to join.', batch_id=batch['id'])
    if int(batch.get('totalSessions') or 0) <= 0:
        raise ValidationFailed('This live batch does not have total sessions configured yet.', batch_id=batch['id'])
    fee = float(batch.get('perSessionFee') or 0)
    if fee <= 0:
        raise PaymentError('This batch has no per-session fee configured.', batch_id=batch['id'])
    remaining = remaining_batch_sessions(batch, sessions, now)
    if count < 1 or count > remaining:
        raise ValidationFailed(
            f"You can purchase between 1 and {remaining} sessions.",
            requested=count, remaining=remaining,
        )
    stamp = local_stamp(now)
    amount = round(count * fee, 2)
    existing = get_enrollment(uid, batch['id']) or {}
    record = {
        'batchId': batch['id'],
        'accessLevel': 'paid',
        'enrolledAt': existing.get('enrolledAt') or stamp,
        'paidAt': existing.get('paidAt') or stamp,
        'sessionsPurchased': int(existing.get('sessionsPurchased') or 0) + count,
        'amountPaid': round(float(existing.get('amountPaid') or 0) + amount, 2),
        'totalSessionsInBatch': int(batch.get('totalSessions') or 0),
        'sessionPurchaseHistory': firestore.ArrayUnion([{
            'sessions': count,
            'amount': amount,
            'paymentId': payment_id,
            'purchasedAt': stamp,
        }]),
    }
    _enrollment_ref(uid, batch['id']).set(record, merge=True)
    logger.info("live_batch_sessions_purchased", user_id=uid, batch_id=batch['id'], sessions=count, amount=amount)
    return {**record, 'amount': amount}


def batch_students(batch_id):
    """Enrolled students of a batch for the teacher's roster"""
    students = []
    for user_doc in db.collection('users').where('roleId', '==', 'student').stream():
        enrollment = _enrollment_ref(user_doc.id, batch_id).get()
        if enrollment.exists:
            students.append({**user_doc.to_dict(), 'id': user_doc.id, 'enrollment': enrollment.to_dict()})
    return students
