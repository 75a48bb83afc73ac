"""
Study requirements: students post what they need, teachers pick them up
"""
from datetime import datetime

from firebase_admin import firestore

from firebase_config import db
from roles import display_name
from utils.errors import NotFound, PermissionDenied, ValidationFailed
from utils.logger import logger

REQUIREMENTS_COL = 'study_requirements'


def posted_label(created_at, now=None):
    """Relative age of a post, e.g. '3 hours ago'"""
    if not created_at:
        return 'just now'
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at)
    if created_at.tzinfo is not None:
        created_at = created_at.replace(tzinfo=None)
    seconds = int(((now or datetime.utcnow()) - created_at).total_seconds())
    if seconds < 60:
        return 'just now'
    for unit, size in (('day', 86400), ('hour', 3600), ('minute', 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return 'just now'


def _requirements(query):
    return [{**doc.to_dict(), 'id': doc.id}
            for doc in query.order_by('createdAt', direction=firestore.Query.DESCENDING).stream()]


def post_requirement(profile, data):
    record = {
        'subject': data['subject'],
        'examType': data['examType'],
        'classPreference': data['classPreference'],
        'studentId': profile['id'],
        'studentName': display_name(profile),
        'studentEmail': profile.get('email', ''),
        'status': 'Open',
        'createdAt': datetime.utcnow().isoformat(),
    }
    ref = db.collection(REQUIREMENTS_COL).document()
    ref.set(record)
    logger.info("study_requirement_posted", requirement_id=ref.id, student_id=profile['id'])
    return {**record, 'id': ref.id}


def requirements_for_student(uid):
    return _requirements(db.collection(REQUIREMENTS_COL).where('studentId', '==', uid))


def requirements_by_status(status):
    return _requirements(db.collection(REQUIREMENTS_COL).where('status', '==', status))


def _get(requirement_id):
    doc = db.collection(REQUIREMENTS_COL).document(requirement_id).get()
    if not doc.exists:
        raise NotFound('Requirement not found.', requirement_id=requirement_id)
    return doc.to_dict()


def delete_requirement(requirement_id, uid):
    requirement = _get(requirement_id)
    if requirement.get('studentId') != uid:
        raise PermissionDenied('You can only delete your own requirements.', requirement_id=requirement_id)
    if requirement.get('status') != 'Open':
        raise ValidationFailed('Only open requirements can be deleted.', requirement_id=requirement_id)
    db.collection(REQUIREMENTS_COL).document(requirement_id).delete()
    logger.info("study_requirement_deleted", requirement_id=requirement_id, student_id=uid)


def close_requirement(requirement_id, teacher_id):
    requirement = _get(requirement_id)
    if requirement.get('status') != 'Open':
        raise ValidationFailed('This requirement is already closed.', requirement_id=requirement_id)
    db.collection(REQUIREMENTS_COL).document(requirement_id).update({
        'status': 'Closed',
        'closedBy': teacher_id,
    })
    logger.info("study_requirement_closed", requirement_id=requirement_id, teacher_id=teacher_id)
