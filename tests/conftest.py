"""
Shared fixtures for the DCAM Classes test suite
An in-memory Firestore stand-in plus Flask app/client fixtures
"""
import copy
import itertools
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
os.environ.setdefault('FLASK_ENV', 'testing')

import firebase_config  # noqa: E402
from utils.cache import CacheManager  # noqa: E402


# ============================================================================
# IN-MEMORY FIRESTORE
# ============================================================================

_ids = itertools.count(1)


def _apply_value(current, value):
    """ArrayUnion sentinels carry their elements in `values`"""
    if type(value).__name__ == 'ArrayUnion':
        merged = list(current or [])
        for item in value.values:
            if item not in merged:
                merged.append(item)
        return merged
    return copy.deepcopy(value)


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field):
        return (self._data or {}).get(field)


class FakeDocument:
    def __init__(self, store, path):
        self._store = store
        self.path = path
        self.id = path[-1]

    def collection(self, name):
        return FakeCollection(self._store, self.path + (name,))

    def get(self):
        return FakeSnapshot(self, self._store.docs.get(self.path))

    def set(self, data, merge=False):
        current = dict(self._store.docs.get(self.path) or {}) if merge else {}
        for key, value in data.items():
            current[key] = _apply_value(current.get(key), value)
        self._store.docs[self.path] = current

    def update(self, data):
        if self.path not in self._store.docs:
            raise KeyError(f"No document to update: {'/'.join(self.path)}")
        self.set(data, merge=True)

    def delete(self):
        self._store.docs.pop(self.path, None)


class FakeQuery:
    OPERATORS = {
        '==': lambda a, b: a == b,
        '!=': lambda a, b: a != b,
        '>': lambda a, b: a is not None and a > b,
        '>=': lambda a, b: a is not None and a >= b,
        '<': lambda a, b: a is not None and a < b,
        '<=': lambda a, b: a is not None and a <= b,
        'in': lambda a, b: a in b,
        'array_contains': lambda a, b: isinstance(a, list) and b in a,
    }

    def __init__(self, store, path, filters=(), orders=(), max_results=None):
        self._store = store
        self._path = path
        self._filters = tuple(filters)
        self._orders = tuple(orders)
        self._limit = max_results

    def where(self, field, op, value):
        return FakeQuery(self._store, self._path, self._filters + ((field, op, value),),
                         self._orders, self._limit)

    def order_by(self, field, direction='ASCENDING'):
        return FakeQuery(self._store, self._path, self._filters,
                         self._orders + ((field, str(direction).upper().endswith('DESCENDING')),),
                         self._limit)

    def limit(self, count):
        return FakeQuery(self._store, self._path, self._filters, self._orders, count)

    def stream(self):
        depth = len(self._path) + 1
        rows = [
            (path, data) for path, data in self._store.docs.items()
            if len(path) == depth and path[:-1] == self._path
        ]
        for field, op, value in self._filters:
            rows = [(p, d) for p, d in rows if self.OPERATORS[op](d.get(field), value)]
        for field, descending in reversed(self._orders):
            rows = [(p, d) for p, d in rows if d.get(field) is not None]
            rows.sort(key=lambda row: row[1][field], reverse=descending)
        if self._limit is not None:
            rows = rows[:self._limit]
        for path, data in rows:
            yield FakeSnapshot(FakeDocument(self._store, path), data)

    def get(self):
        return list(self.stream())


class FakeCollection(FakeQuery):
    def __init__(self, store, path):
        super().__init__(store, path)
        self.id = path[-1]

    def document(self, doc_id=None):
        return FakeDocument(self._store, self._path + (doc_id or f"doc{next(_ids)}",))

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeBatch:
    def __init__(self):
        self._ops = []

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def update(self, ref, data):
        self._ops.append(lambda: ref.update(data))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        for op in self._ops:
            op()
        self._ops = []


class FakeFirestore:
    """Dict-backed client covering the calls the app makes"""

    def __init__(self):
        self.docs = {}

    def collection(self, name):
        return FakeCollection(self, (name,))

    def batch(self):
        return FakeBatch()

    def seed(self, path, data):
        self.docs[tuple(path.split('/'))] = copy.deepcopy(data)

    def read(self, path):
        return self.docs.get(tuple(path.split('/')))


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def fake_db():
    store = FakeFirestore()
    firebase_config.use_client(store)
    CacheManager.clear()
    yield store
    firebase_config.use_client(None)
    CacheManager.clear()


@pytest.fixture
def app(fake_db):
    """Create application for testing"""
    # Import app here so FLASK_ENV is already set
    import app as flask_app
    flask_app.app.config['TESTING'] = True
    flask_app.app.config['SECRET_KEY'] = 'test-secret-key'
    flask_app.app.config['WTF_CSRF_ENABLED'] = False
    flask_app.app.config['MAIL_SUPPRESS_SEND'] = True
    return flask_app.app


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


def make_user(store, uid, role='student', **extra):
    profile = {
        'id': uid,
        'firstName': extra.pop('firstName', uid.title()),
        'lastName': extra.pop('lastName', 'User'),
        'email': extra.pop('email', f'{uid}@example.com'),
        'roleId': role,
        'status': 'active',
        'teacherStatus': 'approved' if role != 'student' else None,
    }
    profile.update(extra)
    store.seed(f'users/{uid}', profile)
    if role in ('teacher', 'admin'):
        store.seed(f'roles_teacher/{uid}', {'grantedAt': '2026-01-01T00:00:00'})
    if role == 'admin':
        store.seed(f'roles_admin/{uid}', {'grantedAt': '2026-01-01T00:00:00'})
    return profile


def login_as(client, uid):
    with client.session_transaction() as sess:
        sess['uid'] = uid
