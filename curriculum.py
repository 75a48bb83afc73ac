"""
Curriculum for DCAM Classes
Exam types, classes, subjects and topics with cascading lookups
"""
from datetime import datetime

from firebase_config import db
from templates.jee_syllabus import EXAM_TYPES, JEE_SYLLABUS, iter_topics
from utils.cache import CacheManager, cached
from utils.logger import logger

EXAM_TYPES_COL = 'exam_types'
CLASSES_COL = 'classes'
SUBJECTS_COL = 'subjects'
TOPICS_COL = 'topics'

CACHE_TTL = 300


def _docs(query):
    return [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]


def _by_name(items):
    return sorted(items, key=lambda item: (item.get('name') or '').lower())


def invalidate():
    """Drop every cached curriculum lookup after a write"""
    for fn in (list_exam_types, list_classes, list_subjects, list_topics):
        CacheManager.delete_prefix(fn.cache_prefix)


# ============================================================================
# READS
# ============================================================================

@cached(ttl=CACHE_TTL, prefix='curriculum.exam_types')
def list_exam_types():
    return _by_name(_docs(db.collection(EXAM_TYPES_COL)))


@cached(ttl=CACHE_TTL, prefix='curriculum.classes')
def list_classes():
    return _by_name(_docs(db.collection(CLASSES_COL)))


@cached(ttl=CACHE_TTL, prefix='curriculum.subjects')
def list_subjects():
    return _by_name(_docs(db.collection(SUBJECTS_COL)))


@cached(ttl=CACHE_TTL, prefix='curriculum.topics')
def list_topics():
    return _by_name(_docs(db.collection(TOPICS_COL)))


def subject_names():
    return {s['id']: s.get('name', '') for s in list_subjects()}


def topic_names():
    return {t['id']: t.get('name', '') for t in list_topics()}


def classes_for_exam(exam_type_id):
    return [c for c in list_classes() if c.get('examTypeId') == exam_type_id]


def subjects_for_class(class_id):
    return [s for s in list_subjects() if s.get('classId') == class_id]


def topics_for_subject(subject_id):
    return [t for t in list_topics() if t.get('subjectId') == subject_id]


def curriculum_tree():
    """Subjects sorted by name, each carrying its topics sorted by name"""
    subjects = list_subjects()
    topics_by_subject = {s['id']: [] for s in subjects}
    for topic in list_topics():
        # orphaned topics are dropped
        if topic.get('subjectId') in topics_by_subject:
            topics_by_subject[topic['subjectId']].append(topic)
    return [{**s, 'topics': _by_name(topics_by_subject[s['id']])} for s in subjects]


# ============================================================================
# WRITES
# ============================================================================

def _add(collection, data):
    ref = db.collection(collection).document()
    record = {**data, 'createdAt': datetime.utcnow().isoformat()}
    ref.set(record)
    invalidate()
    logger.info("curriculum_item_added", collection=collection, item_id=ref.id, name=data.get('name'))
    return {**record, 'id': ref.id}


def add_exam_type(data):
    return _add(EXAM_TYPES_COL, {'name': data['name']})


def add_class(data):
    return _add(CLASSES_COL, {'name': data['name'], 'examTypeId': data['examTypeId']})


def add_subject(data):
    record = {'name': data['name']}
    if data.get('classId'):
        record['classId'] = data['classId']
    return _add(SUBJECTS_COL, record)


def add_topic(data):
    return _add(TOPICS_COL, {
        'name': data['name'],
        'description': data.get('description', ''),
        'subjectId': data['subjectId'],
    })


def _find_by_name(collection, name, **filters):
    query = db.collection(collection).where('name', '==', name)
    for field, value in filters.items():
        query = query.where(field, '==', value)
    for doc in query.limit(1).stream():
        return doc.id
    return None


def _ensure(collection, record, **filters):
    existing = _find_by_name(collection, record['name'], **filters)
    if existing:
        return existing, False
    ref = db.collection(collection).document()
    ref.set({**record, 'createdAt': datetime.utcnow().isoformat()})
    return ref.id, True


def seed_default_curriculum():
    """Load the bundled JEE syllabus; items are matched by name so reruns add nothing"""
    created = {'exam_types': 0, 'classes': 0, 'subjects': 0, 'topics': 0}
    for exam_name, class_names in EXAM_TYPES.items():
        exam_id, new = _ensure(EXAM_TYPES_COL, {'name': exam_name})
        created['exam_types'] += new
        for class_name in class_names:
            _, new = _ensure(CLASSES_COL, {'name': class_name, 'examTypeId': exam_id}, examTypeId=exam_id)
            created['classes'] += new
    for subject_name in JEE_SYLLABUS:
        subject_id, new = _ensure(SUBJECTS_COL, {'name': subject_name})
        created['subjects'] += new
        for topic in iter_topics(subject_name):
            _, new = _ensure(
                TOPICS_COL,
                {'name': topic['name'], 'description': topic.get('overview', ''), 'subjectId': subject_id},
                subjectId=subject_id,
            )
            created['topics'] += new
    invalidate()
    logger.info("curriculum_seeded", **created)
    return created
