"""
Utility package for DCAM Classes
Security, validation, caching, logging and domain errors
"""
from .cache import CacheManager, cached
from .errors import (
    DCAMError, InsufficientQuestions, NotFound, PaymentError, PermissionDenied,
    SessionClosed, ValidationFailed
)
from .logger import logger
from .security import (
    PasswordManager, RateLimiter, TokenManager, login_rate_limiter, verify_razorpay_signature
)
from .validators import (
    class_schema, content_schema, course_schema, custom_test_schema, direct_message_schema,
    doubt_answer_schema, doubt_schema, exam_type_schema, group_message_schema,
    live_batch_schema, live_session_schema, official_test_create_schema,
    official_test_schema, password_reset_schema, plan_schema, profile_schema, question_schema,
    student_registration_schema, study_requirement_schema, subject_schema,
    teacher_registration_schema, topic_schema, user_login_schema, validate_email,
    validate_schema
)

__all__ = [
    'CacheManager', 'cached', 'logger',
    'DCAMError', 'InsufficientQuestions', 'NotFound', 'PaymentError', 'PermissionDenied',
    'SessionClosed', 'ValidationFailed',
    'PasswordManager', 'RateLimiter', 'TokenManager', 'login_rate_limiter',
    'verify_razorpay_signature', 'validate_schema', 'validate_email',
    'class_schema', 'content_schema', 'course_schema', 'custom_test_schema',
    'direct_message_schema', 'doubt_answer_schema', 'doubt_schema', 'exam_type_schema',
    'group_message_schema', 'live_batch_schema', 'live_session_schema',
    'official_test_create_schema', 'official_test_schema', 'password_reset_schema',
    'plan_schema', 'profile_schema',
    'question_schema', 'student_registration_schema', 'study_requirement_schema',
    'subject_schema', 'teacher_registration_schema', 'topic_schema', 'user_login_schema',
]
