"""
Question bank for DCAM Classes
Practice questions shared by practice sessions and mock tests
"""
from datetime import datetime

from firebase_config import db
from utils.logger import logger

QUESTIONS_COL = 'practice_questions'


def _to_question(doc):
    return {**doc.to_dict(), 'id': doc.id}


def create_question(data, teacher_id):
    """Store a validated question; MCQ/Numerical fields not in play are dropped"""
    record = {
        'questionText': data['questionText'],
        'questionType': data['questionType'],
        'subjectId': data['subjectId'],
        'topicId': data['topicId'],
        'difficultyLevel': data['difficultyLevel'],
        'accessLevel': data['accessLevel'],
        'teacherId': teacher_id,
        'createdAt': datetime.utcnow().isoformat(),
    }
    if data['questionType'] == 'MCQ':
        record['options'] = [o.strip() for o in data['options'] if o.strip()]
        record['correctAnswer'] = data['correctAnswer']
    else:
        record['numericalAnswer'] = data['numericalAnswer']
    for optional in ('examTypeId', 'imageUrl', 'explanationImageUrl'):
        if data.get(optional):
            record[optional] = data[optional]
    ref = db.collection(QUESTIONS_COL).document()
    ref.set(record)
    logger.info("question_created", question_id=ref.id, teacher_id=teacher_id, topic_id=data['topicId'])
    return {**record, 'id': ref.id}


def get_question(question_id):
    doc = db.collection(QUESTIONS_COL).document(question_id).get()
    return _to_question(doc) if doc.exists else None


def fetch_questions(**filters):
    """Equality filters on any question field; empty values are ignored"""
    query = db.collection(QUESTIONS_COL)
    for field, value in filters.items():
        if value not in (None, ''):
            query = query.where(field, '==', value)
    return [_to_question(doc) for doc in query.stream()]


def fetch_by_ids(question_ids):
    """Load questions keeping the order of the ids; missing ids are skipped"""
    questions = []
    for question_id in question_ids:
        question = get_question(question_id)
        if question:
            questions.append(question)
    return questions


def fetch_by_topics(topic_ids, **filters):
    """{topic_id: [question, ...]} for the requested topics"""
    return {topic_id: fetch_questions(topicId=topic_id, **filters) for topic_id in topic_ids}


def library(topic_names=None):
    """All questions ordered by topic name then text, for the practice library page"""
    topic_names = topic_names or {}
    questions = fetch_questions()
    questions.sort(key=lambda q: (topic_names.get(q.get('topicId'), '').lower(), q.get('questionText', '')))
    return questions


def prefill_from_extraction(extracted):
    """Map an AI image extraction onto question form defaults"""
    options = list(extracted.get('options') or [])[:4]
    options += [''] * (4 - len(options))
    return {
        'questionText': extracted.get('questionText', ''),
        'questionType': 'MCQ',
        'options': options,
        'correctAnswer': '',
    }
