"""
Content library and courses for DCAM Classes
"""
from datetime import datetime
from urllib.parse import parse_qs, urlparse

from firebase_admin import firestore

from firebase_config import db
from utils.errors import NotFound, PermissionDenied
from utils.logger import logger

CONTENT_COL = 'content'
COURSES_COL = 'courses'
MAX_COURSE_CONTENT = 30

CONTENT_FIELDS = (
    'title', 'description', 'type', 'videoUrl', 'fileUrl', 'examTypeId', 'classId',
    'subjectId', 'topicId', 'difficultyLevel', 'accessLevel',
)
COURSE_FIELDS = (
    'title', 'description', 'price', 'imageUrl', 'classLevel', 'subjectIds', 'contentIds',
    'accessLevel', 'publicationStatus',
)


def embed_url(url):
    """('youtube', embed) for YouTube links, ('direct', url) for other links, (None, None) otherwise"""
    if not url:
        return None, None
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None, None
    host = parsed.netloc.lower()
    if 'youtu.be' in host:
        video_id = parsed.path.lstrip('/')
    elif 'youtube.com' in host:
        video_id = (parse_qs(parsed.query).get('v') or [''])[0]
    else:
        return 'direct', url
    if not video_id:
        return None, None
    return 'youtube', f"https://www.youtube.com/embed/{video_id}"


def is_locked(item, subscribed, staff=False):
    """Paid items sit behind the subscribe prompt for everyone but subscribers and staff"""
    return item.get('accessLevel', 'free') == 'paid' and not (subscribed or staff)


# ============================================================================
# CONTENT
# ============================================================================

def list_content(**filters):
    query = db.collection(CONTENT_COL)
    for field, value in filters.items():
        if value:
            query = query.where(field, '==', value)
    items = [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
    items.sort(key=lambda c: c.get('createdAt') or '', reverse=True)
    return items


def get_content(content_id):
    doc = db.collection(CONTENT_COL).document(content_id).get()
    if not doc.exists:
        raise NotFound('Content not found.', content_id=content_id)
    return {**doc.to_dict(), 'id': doc.id}


def create_content(data, teacher_id):
    record = {field: data.get(field, '') for field in CONTENT_FIELDS}
    record.update({'teacherId': teacher_id, 'createdAt': datetime.utcnow().isoformat()})
    ref = db.collection(CONTENT_COL).document()
    ref.set(record)
    logger.info("content_created", content_id=ref.id, teacher_id=teacher_id, type=record['type'])
    return {**record, 'id': ref.id}


def _owned_content(content_id, uid, admin):
    item = get_content(content_id)
    if item.get('teacherId') not in (None, uid) and not admin:
        raise PermissionDenied('You can only change your own content.', content_id=content_id)
    return item


def update_content(content_id, data, uid, admin=False):
    _owned_content(content_id, uid, admin)
    record = {field: data.get(field, '') for field in CONTENT_FIELDS}
    record['updatedAt'] = datetime.utcnow().isoformat()
    db.collection(CONTENT_COL).document(content_id).update(record)
    logger.info("content_updated", content_id=content_id, user_id=uid)


def delete_content(content_id, uid, admin=False):
    _owned_content(content_id, uid, admin)
    db.collection(CONTENT_COL).document(content_id).delete()
    logger.info("content_deleted", content_id=content_id, user_id=uid)


# ============================================================================
# COURSES
# ============================================================================

def list_courses(include_drafts=False, teacher_id=None):
    query = db.collection(COURSES_COL)
    if teacher_id:
        query = query.where('teacherId', '==', teacher_id)
    courses = [{**doc.to_dict(), 'id': doc.id} for doc in
               query.order_by('createdAt', direction=firestore.Query.DESCENDING).stream()]
    if not include_drafts:
        courses = [c for c in courses if c.get('publicationStatus', 'published') == 'published']
    return courses


def get_course(course_id):
    doc = db.collection(COURSES_COL).document(course_id).get()
    if not doc.exists:
        raise NotFound('Course not found.', course_id=course_id)
    return {**doc.to_dict(), 'id': doc.id}


def course_content(course):
    """Content items of a course, capped at the first 30 ids"""
    items = []
    for content_id in (course.get('contentIds') or [])[:MAX_COURSE_CONTENT]:
        doc = db.collection(CONTENT_COL).document(content_id).get()
        if doc.exists:
            items.append({**doc.to_dict(), 'id': doc.id})
    return items


def create_course(data, teacher_id):
    record = {field: data.get(field) for field in COURSE_FIELDS}
    record.update({'teacherId': teacher_id, 'createdAt': datetime.utcnow().isoformat()})
    ref = db.collection(COURSES_COL).document()
    ref.set(record)
    logger.info("course_created", course_id=ref.id, teacher_id=teacher_id)
    return {**record, 'id': ref.id}
