"""
Student doubts and teacher answers for DCAM Classes
"""
from datetime import datetime

from firebase_config import db
from roles import display_name
from utils.errors import NotFound, PermissionDenied, SessionClosed
from utils.logger import logger

DOUBTS_COL = 'doubts'


def _doubts(query):
    items = [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
    items.sort(key=lambda d: d.get('createdAt') or '', reverse=True)
    return items


def get_doubt(doubt_id):
    doc = db.collection(DOUBTS_COL).document(doubt_id).get()
    if not doc.exists:
        raise NotFound('Doubt not found.', doubt_id=doubt_id)
    return {**doc.to_dict(), 'id': doc.id}


def ask_doubt(profile, data):
    record = {
        'studentId': profile['id'],
        'studentName': display_name(profile),
        'topicId': data['topicId'],
        'question': data['question'],
        'questionAttachments': list(data.get('attachmentUrls') or []),
        'status': 'open',
        'createdAt': datetime.utcnow().isoformat(),
    }
    ref = db.collection(DOUBTS_COL).document()
    ref.set(record)
    logger.info("doubt_asked", doubt_id=ref.id, student_id=profile['id'])
    return {**record, 'id': ref.id}


def doubts_for_student(uid):
    return _doubts(db.collection(DOUBTS_COL).where('studentId', '==', uid))


def doubt_board():
    """Teacher view: open doubts and the answered/closed ones"""
    doubts = _doubts(db.collection(DOUBTS_COL))
    return {
        'open': [d for d in doubts if d.get('status') == 'open'],
        'answered': [d for d in doubts if d.get('status') in ('answered', 'closed')],
    }


def count_open():
    return len(list(db.collection(DOUBTS_COL).where('status', '==', 'open').stream()))


def answer_doubt(doubt_id, teacher_profile, data):
    """Record the answer; returns the updated doubt so the caller can notify the student"""
    doubt = get_doubt(doubt_id)
    if doubt.get('status') == 'closed':
        raise SessionClosed('This doubt has been closed.', doubt_id=doubt_id)
    updates = {
        'answer': data['answer'],
        'answerAttachments': list(data.get('attachmentUrls') or []),
        'status': 'answered',
        'teacherId': teacher_profile['id'],
        'teacherName': display_name(teacher_profile),
        'answeredAt': datetime.utcnow().isoformat(),
    }
    db.collection(DOUBTS_COL).document(doubt_id).update(updates)
    logger.info("doubt_answered", doubt_id=doubt_id, teacher_id=teacher_profile['id'])
    return {**doubt, **updates}


def close_doubt(doubt_id, uid):
    doubt = get_doubt(doubt_id)
    if doubt.get('studentId') != uid:
        raise PermissionDenied('You can only close your own doubts.', doubt_id=doubt_id)
    db.collection(DOUBTS_COL).document(doubt_id).update({'status': 'closed'})
    logger.info("doubt_closed", doubt_id=doubt_id, student_id=uid)
