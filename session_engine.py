"""
Test/practice session engine for DCAM Classes

A TestSession tracks per-question answer status, the active question, the
timer and the final score. Sessions are persisted in
users/{uid}/test_sessions/{sessionId} and driven by the JSON endpoints in app.py.
"""
import random
import uuid
from datetime import datetime
from enum import Enum

from utils.errors import InsufficientQuestions, SessionClosed, ValidationFailed

DEFAULT_PRACTICE_COUNT = 10
UNKNOWN_SUBJECT = 'Unknown Subject'


class QuestionStatus(str, Enum):
    NOT_ANSWERED = 'not_answered'
    ANSWERED = 'answered'
    MARKED_FOR_REVIEW = 'marked_for_review'
    ANSWERED_AND_MARKED_FOR_REVIEW = 'answered_and_marked_for_review'
    NOT_VISITED = 'not_visited'


MARKED_STATES = (QuestionStatus.MARKED_FOR_REVIEW, QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW)


def format_time(seconds):
    """Render a second count as MM:SS (minutes are not wrapped at 60)"""
    seconds = max(0, int(seconds or 0))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def _as_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_correct(question, value):
    """MCQ: exact option match. Numerical: numeric equality, unparseable is wrong."""
    if value is None or value == '':
        return False
    if question.get('questionType', 'MCQ') == 'Numerical':
        expected = _as_float(question.get('numericalAnswer'))
        given = _as_float(value)
        return expected is not None and given is not None and expected == given
    return question.get('correctAnswer') == value


def correct_answer_of(question):
    if question.get('questionType', 'MCQ') == 'Numerical':
        return question.get('numericalAnswer')
    return question.get('correctAnswer')


class TestSession:
    """State machine for one attempt at a practice set or mock test"""

    KINDS = ('practice', 'custom', 'official')

    def __init__(self, questions, kind='practice', duration_seconds=None, started_at=None,
                 session_id=None, test_id=None, title='', topics=None):
        if kind not in self.KINDS:
            raise ValidationFailed(f"Unknown session kind: {kind}")
        self.session_id = session_id or uuid.uuid4().hex
        self.questions = list(questions)
        self.kind = kind
        self.test_id = test_id
        self.title = title
        self.topics = list(topics or [])
        self.duration_seconds = duration_seconds
        self.started_at = started_at or datetime.utcnow()
        self.current_index = 0
        self.answers = {}
        self.finished = False
        self.score = None
        self.submitted_at = None
        self.time_taken = None

    # ------------------------------------------------------------------
    # lookups

    @property
    def total(self):
        return len(self.questions)

    @property
    def current_question(self):
        if not self.questions:
            return None
        return self.questions[self.current_index]

    def _question_id(self, index):
        return str(self.questions[index]['id'])

    def status_of(self, question_id):
        entry = self.answers.get(str(question_id))
        return entry[1] if entry else QuestionStatus.NOT_VISITED

    def value_of(self, question_id):
        entry = self.answers.get(str(question_id))
        return entry[0] if entry else ''

    def is_locked(self, question_id):
        """Practice answers are final once given; feedback is shown instead"""
        return self.kind == 'practice' and self.value_of(question_id) != ''

    # ------------------------------------------------------------------
    # timer

    def elapsed(self, now=None):
        now = now or datetime.utcnow()
        return max(0, int((now - self.started_at).total_seconds()))

    def time_left(self, now=None):
        if self.duration_seconds is None:
            return None
        return max(0, self.duration_seconds - self.elapsed(now))

    def is_expired(self, now=None):
        return self.duration_seconds is not None and self.time_left(now) == 0

    def _guard(self, now=None):
        if not self.finished and self.is_expired(now):
            self.submit(now)
        if self.finished:
            raise SessionClosed('This session has already been submitted.', session_id=self.session_id)
        if not self.questions:
            raise SessionClosed('This session has no questions.', session_id=self.session_id)

    def _guard_unlocked(self, question_id):
        if self.is_locked(question_id):
            raise ValidationFailed('This question has already been answered.', question_id=question_id)

    # ------------------------------------------------------------------
    # transitions

    def select(self, index, now=None):
        self._guard(now)
        if not isinstance(index, int) or index < 0 or index >= self.total:
            raise ValidationFailed(f"Question index out of range: {index}")
        current_id = self._question_id(self.current_index)
        if self.status_of(current_id) == QuestionStatus.NOT_VISITED:
            self.answers[current_id] = ('', QuestionStatus.NOT_ANSWERED)
        self.current_index = index

    def save_and_next(self, now=None):
        self._guard(now)
        if self.current_index < self.total - 1:
            self.select(self.current_index + 1, now)

    def mark_for_review(self, now=None):
        self._guard(now)
        current_id = self._question_id(self.current_index)
        self._guard_unlocked(current_id)
        value = self.value_of(current_id)
        status = QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW if value != '' else QuestionStatus.MARKED_FOR_REVIEW
        self.answers[current_id] = (value, status)
        self.save_and_next(now)

    def clear_response(self, now=None):
        self._guard(now)
        current_id = self._question_id(self.current_index)
        self._guard_unlocked(current_id)
        self.answers[current_id] = ('', QuestionStatus.NOT_ANSWERED)

    def answer(self, value, now=None):
        self._guard(now)
        current_id = self._question_id(self.current_index)
        self._guard_unlocked(current_id)
        value = '' if value is None else str(value).strip()
        if self.status_of(current_id) in MARKED_STATES:
            status = QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW
        else:
            status = QuestionStatus.ANSWERED
        self.answers[current_id] = (value, status)

    def submit(self, now=None):
        if self.finished:
            raise SessionClosed('This session has already been submitted.', session_id=self.session_id)
        now = now or datetime.utcnow()
        by_id = {str(q['id']): q for q in self.questions}
        score = 0
        for question_id, (value, _status) in self.answers.items():
            question = by_id.get(question_id)
            if question is not None and is_correct(question, value):
                score += 1
        self.score = score
        self.finished = True
        self.submitted_at = now
        elapsed = self.elapsed(now)
        if self.duration_seconds is not None:
            elapsed = min(elapsed, self.duration_seconds)
        self.time_taken = elapsed
        return score

    # ------------------------------------------------------------------
    # reporting

    def summary(self):
        counts = {
            'answered': 0,
            'not_answered': 0,
            'marked_for_review': 0,
            'answered_and_marked': 0,
        }
        keys = {
            QuestionStatus.ANSWERED: 'answered',
            QuestionStatus.NOT_ANSWERED: 'not_answered',
            QuestionStatus.MARKED_FOR_REVIEW: 'marked_for_review',
            QuestionStatus.ANSWERED_AND_MARKED_FOR_REVIEW: 'answered_and_marked',
        }
        for _value, status in self.answers.values():
            if status in keys:
                counts[keys[status]] += 1
        counts['not_visited'] = self.total - sum(counts.values())
        return counts

    def sections(self):
        """Questions grouped by subject in first-appearance order"""
        grouped = {}
        for index, question in enumerate(self.questions):
            name = question.get('subjectName') or UNKNOWN_SUBJECT
            grouped.setdefault(name, []).append({'index': index, 'id': str(question['id'])})
        return [{'subject': name, 'questions': items} for name, items in grouped.items()]

    def feedback(self, question_id):
        value = self.value_of(question_id)
        if value == '':
            return None
        question = next((q for q in self.questions if str(q['id']) == str(question_id)), None)
        if question is None:
            return None
        return {
            'is_correct': is_correct(question, value),
            'user_answer': value,
            'correct_answer': correct_answer_of(question),
            'explanation_image_url': question.get('explanationImageUrl') or None,
        }

    def review(self):
        """Per-question rows for the result page"""
        rows = []
        for index, question in enumerate(self.questions):
            value = self.value_of(question['id'])
            rows.append({
                'index': index,
                'question': question,
                'user_answer': value,
                'is_correct': is_correct(question, value),
                'correct_answer': correct_answer_of(question),
            })
        return rows

    def percentage(self):
        if not self.total or self.score is None:
            return '0.00'
        return f"{self.score / self.total * 100:.2f}"

    def state(self, now=None):
        """JSON view of the session as the test page renders it"""
        question = self.current_question
        public = None
        if question is not None:
            public = {k: v for k, v in question.items()
                      if k not in ('correctAnswer', 'numericalAnswer', 'explanationImageUrl')}
        left = self.time_left(now)
        state = {
            'sessionId': self.session_id,
            'kind': self.kind,
            'title': self.title,
            'currentIndex': self.current_index,
            'total': self.total,
            'question': public,
            'value': self.value_of(question['id']) if question else '',
            'locked': self.is_locked(question['id']) if question else False,
            'palette': [
                {'index': i, 'status': self.status_of(q['id']).value}
                for i, q in enumerate(self.questions)
            ],
            'sections': self.sections(),
            'summary': self.summary(),
            'timeLeft': left,
            'timeLeftLabel': format_time(left) if left is not None else None,
            'finished': self.finished,
            'score': self.score,
        }
        if question is not None and self.kind == 'practice':
            state['feedback'] = self.feedback(question['id'])
        return state

    # ------------------------------------------------------------------
    # persistence

    def to_dict(self):
        return {
            'sessionId': self.session_id,
            'kind': self.kind,
            'testId': self.test_id,
            'title': self.title,
            'topics': self.topics,
            'questions': self.questions,
            'currentIndex': self.current_index,
            'answers': {qid: {'value': value, 'status': status.value}
                        for qid, (value, status) in self.answers.items()},
            'durationSeconds': self.duration_seconds,
            'startedAt': self.started_at.isoformat(),
            'finished': self.finished,
            'score': self.score,
            'submittedAt': self.submitted_at.isoformat() if self.submitted_at else None,
            'timeTaken': self.time_taken,
        }

    @classmethod
    def from_dict(cls, data):
        session = cls(
            data.get('questions', []),
            kind=data.get('kind', 'practice'),
            duration_seconds=data.get('durationSeconds'),
            started_at=datetime.fromisoformat(data['startedAt']),
            session_id=data.get('sessionId'),
            test_id=data.get('testId'),
            title=data.get('title', ''),
            topics=data.get('topics'),
        )
        session.current_index = data.get('currentIndex', 0)
        session.answers = {
            qid: (entry.get('value', ''), QuestionStatus(entry.get('status', QuestionStatus.NOT_ANSWERED.value)))
            for qid, entry in (data.get('answers') or {}).items()
        }
        session.finished = data.get('finished', False)
        session.score = data.get('score')
        submitted = data.get('submittedAt')
        session.submitted_at = datetime.fromisoformat(submitted) if submitted else None
        session.time_taken = data.get('timeTaken')
        return session


# ============================================================================
# QUESTION SELECTION
# ============================================================================

def shuffled(items, rng=None):
    """Fisher-Yates shuffle into a new list"""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


def parse_topic_quotas(topics_param=None, topic_id=None, count=None):
    """
    Parse "topicA:5,topicB:10" into [(topic_id, count), ...].

    Entries with an empty id or a non-numeric / non-positive count are
    skipped. A single topic_id with an optional count (default 10) is
    accepted when no multi-topic string is given.
    """
    quotas = []
    if topics_param:
        for entry in topics_param.split(','):
            tid, _, raw_count = entry.partition(':')
            tid = tid.strip()
            try:
                n = int(raw_count.strip())
            except ValueError:
                continue
            if tid and n > 0:
                quotas.append((tid, n))
        return quotas
    if topic_id:
        try:
            n = int(count) if count not in (None, '') else DEFAULT_PRACTICE_COUNT
        except (TypeError, ValueError):
            n = DEFAULT_PRACTICE_COUNT
        if n > 0:
            quotas.append((topic_id, n))
    return quotas


def sample_practice(questions_by_topic, quotas, subject_names=None, rng=None):
    """Random subset per topic quota, then one global shuffle"""
    rng = rng or random
    subject_names = subject_names or {}
    picked = []
    for topic_id, n in quotas:
        pool = questions_by_topic.get(topic_id, [])
        for question in shuffled(pool, rng)[:n]:
            picked.append({
                **question,
                'subjectName': subject_names.get(question.get('subjectId'), UNKNOWN_SUBJECT),
            })
    return shuffled(picked, rng)


def sample_by_subject(pool, subject_configs, access_level=None, rng=None):
    """
    Build an official-test paper: per configured subject shuffle the matching
    questions and take numQuestions. Returns (questions, total_minutes).
    """
    questions = []
    total_minutes = 0
    for cfg in subject_configs:
        total_minutes += int(cfg.get('duration') or 0)
        candidates = [
            q for q in pool
            if q.get('subjectId') == cfg['subjectId']
            and (access_level is None or q.get('accessLevel', 'free') == access_level)
        ]
        for question in shuffled(candidates, rng)[:int(cfg['numQuestions'])]:
            questions.append({**question, 'subjectName': cfg.get('subjectName') or UNKNOWN_SUBJECT})
    return questions, total_minutes


def auto_select(pool, subject_configs, total_questions, access_level=None, subject_names=None, rng=None):
    """Pick question ids for a custom test; returns the id list"""
    subject_names = subject_names or {}
    if not subject_configs or not total_questions or total_questions <= 0:
        raise ValidationFailed('Configure at least one subject and a positive total before auto-selecting.')
    requested = sum(int(cfg['numQuestions']) for cfg in subject_configs)
    if requested != total_questions:
        raise ValidationFailed(
            f"Subject quotas add up to {requested} but the test has {total_questions} questions.",
            requested=requested, total=total_questions,
        )
    chosen = []
    seen = set()
    for cfg in subject_configs:
        need = int(cfg['numQuestions'])
        candidates = [
            q for q in pool
            if q.get('subjectId') == cfg['subjectId']
            and str(q['id']) not in seen
            and (access_level is None or q.get('accessLevel', 'free') == access_level)
        ]
        if len(candidates) < need:
            name = subject_names.get(cfg['subjectId'], cfg['subjectId'])
            raise InsufficientQuestions(
                f"Not enough questions for {name}: found {len(candidates)}, need {need}.",
                subject=name, found=len(candidates), needed=need,
            )
        for question in shuffled(candidates, rng)[:need]:
            seen.add(str(question['id']))
            chosen.append(str(question['id']))
    return chosen
