"""
Practice sessions and student progress for DCAM Classes
"""
from collections import defaultdict
from datetime import datetime

from firebase_admin import firestore

import curriculum
import question_bank
from firebase_config import db
from session_engine import TestSession, is_correct, parse_topic_quotas, sample_practice
from utils.logger import logger

WEAK_TOPIC_THRESHOLD = 60.0
QUESTION_FILTERS = ('difficultyLevel', 'accessLevel', 'examTypeId')


def start_practice_session(args, rng=None, now=None):
    """
    Build an untimed practice session from request arguments
    (topics, topicId, count, difficultyLevel, accessLevel, examTypeId).
    Returns None when nothing could be loaded.
    """
    quotas = parse_topic_quotas(args.get('topics'), args.get('topicId'), args.get('count'))
    if not quotas:
        return None
    filters = {key: args.get(key) for key in QUESTION_FILTERS if args.get(key)}
    by_topic = question_bank.fetch_by_topics([topic_id for topic_id, _ in quotas], **filters)
    questions = sample_practice(by_topic, quotas, curriculum.subject_names(), rng=rng)
    if not questions:
        return None
    names = curriculum.topic_names()
    title = ', '.join(names.get(topic_id, 'Practice') for topic_id, _ in quotas)
    return TestSession(questions, kind='practice', started_at=now, title=title,
                       topics=[topic_id for topic_id, _ in quotas])


def record_practice_result(uid, session):
    breakdown = defaultdict(lambda: {'correct': 0, 'total': 0})
    for question in session.questions:
        entry = breakdown[question.get('topicId') or 'unknown']
        entry['total'] += 1
        if is_correct(question, session.value_of(question['id'])):
            entry['correct'] += 1
    result = {
        'topics': sorted({q.get('topicId') for q in session.questions if q.get('topicId')}),
        'questionsAttempted': len(session.answers),
        'questionsCorrect': session.score or 0,
        'totalQuestions': session.total,
        'topicBreakdown': dict(breakdown),
        'submittedAt': (session.submitted_at or datetime.utcnow()).isoformat(),
    }
    db.collection('users').document(uid).collection('practice_results').document(session.session_id).set(result)
    logger.info("practice_submitted", user_id=uid, score=session.score, total=session.total)
    return result


def progress_overview(uid):
    """Accuracy per topic and overall across every stored practice result"""
    names = curriculum.topic_names()
    per_topic = defaultdict(lambda: {'correct': 0, 'total': 0})
    results = [doc.to_dict() for doc in
               db.collection('users').document(uid).collection('practice_results').stream()]
    for result in results:
        for topic_id, counts in (result.get('topicBreakdown') or {}).items():
            per_topic[topic_id]['correct'] += counts.get('correct', 0)
            per_topic[topic_id]['total'] += counts.get('total', 0)

    topics = []
    for topic_id, counts in per_topic.items():
        if not counts['total']:
            continue
        topics.append({
            'topicId': topic_id,
            'topic': names.get(topic_id, 'Unknown Topic'),
            'accuracy': round(counts['correct'] / counts['total'] * 100, 1),
            'correct': counts['correct'],
            'total': counts['total'],
        })
    topics.sort(key=lambda t: t['topic'].lower())

    correct = sum(r.get('questionsCorrect', 0) for r in results)
    total = sum(r.get('totalQuestions', 0) for r in results)
    return {
        'topics': topics,
        'weak_topics': [t for t in topics if t['accuracy'] < WEAK_TOPIC_THRESHOLD],
        'overall': round(correct / total * 100, 1) if total else 0,
        'practice_questions': total,
        'sessions': len(results),
    }


def recent_test_results(uid, limit=3):
    query = (db.collection('users').document(uid).collection('test_results')
             .order_by('submittedAt', direction=firestore.Query.DESCENDING).limit(limit))
    return [{**doc.to_dict(), 'id': doc.id} for doc in query.stream()]
