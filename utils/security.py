"""
Security utilities for DCAM Classes
Password hashing, login throttling, tokens and payment signatures
"""
import hashlib
import hmac
import re
import secrets
import threading
from collections import defaultdict
from datetime import datetime, timedelta

import bcrypt


class PasswordManager:
    """bcrypt-backed password hashing"""

    MIN_LENGTH = 8

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    @staticmethod
    def verify_password(password: str, stored_hash: str) -> bool:
        if not password or not stored_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), stored_hash.encode('utf-8'))
        except ValueError:
            return False

    @classmethod
    def is_strong_password(cls, password: str) -> tuple[bool, str]:
        if not password or len(password) < cls.MIN_LENGTH:
            return False, f"Password must be at least {cls.MIN_LENGTH} characters long"
        if not re.search(r'[A-Z]', password):
            return False, "Password must contain at least one uppercase letter"
        if not re.search(r'[a-z]', password):
            return False, "Password must contain at least one lowercase letter"
        if not re.search(r'\d', password):
            return False, "Password must contain at least one digit"
        if not re.search(r'[^A-Za-z0-9]', password):
            return False, "Password must contain at least one special character"
        return True, "Password is strong"


class RateLimiter:
    """In-memory attempt counter over a sliding window"""

    def __init__(self, max_attempts=5, window_minutes=15):
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)
        self._attempts = defaultdict(list)
        self._lock = threading.Lock()

    def _prune(self, identifier):
        cutoff = datetime.utcnow() - self.window
        self._attempts[identifier] = [t for t in self._attempts[identifier] if t > cutoff]

    def is_allowed(self, identifier, max_attempts=None):
        limit = max_attempts or self.max_attempts
        with self._lock:
            self._prune(identifier)
            return len(self._attempts[identifier]) < limit

    def record_attempt(self, identifier):
        with self._lock:
            self._attempts[identifier].append(datetime.utcnow())

    def reset_attempts(self, identifier):
        with self._lock:
            self._attempts.pop(identifier, None)


class TokenManager:
    @staticmethod
    def generate_secure_token(length=32):
        return secrets.token_urlsafe(length)

    @staticmethod
    def generate_csrf_token():
        return secrets.token_hex(16)


def verify_razorpay_signature(order_id, payment_id, signature, secret):
    """Razorpay checkout signature: HMAC-SHA256 of "order_id|payment_id"."""
    if not (order_id and payment_id and signature and secret):
        return False
    expected = hmac.new(
        secret.encode('utf-8'),
        f"{order_id}|{payment_id}".encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


login_rate_limiter = RateLimiter()
