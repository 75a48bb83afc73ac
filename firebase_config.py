import firebase_admin
from firebase_admin import credentials, firestore
import os
import json

_client = None


def _load_credentials():
    # Try to load from file first, then from environment variable
    if os.path.exists('serviceAccountKey.json'):
        return credentials.Certificate('serviceAccountKey.json')
    firebase_creds = os.environ.get('FIREBASE_CREDENTIALS')
    if firebase_creds:
        return credentials.Certificate(json.loads(firebase_creds))
    raise FileNotFoundError("Firebase credentials not found!")


def get_client():
    """Return the Firestore client, initializing firebase_admin on first use."""
    global _client
    if _client is None:
        if not firebase_admin._apps:
            firebase_admin.initialize_app(_load_credentials())
        _client = firestore.client()
    return _client


def use_client(client):
    """Install a different Firestore client (the test-suite's in-memory fake)."""
    global _client
    _client = client


class _LazyClient:
    def __getattr__(self, name):
        return getattr(get_client(), name)


db = _LazyClient()
