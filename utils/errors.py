"""Domain errors mapped to HTTP status codes by the app's error handler"""


class DCAMError(Exception):
    status_code = 400
    kind = 'error'

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'error': self.kind, 'message': self.message}
        if self.details:
            body['details'] = self.details
        return body


class ValidationFailed(DCAMError):
    status_code = 400
    kind = 'validation_failed'


class PermissionDenied(DCAMError):
    status_code = 403
    kind = 'permission_denied'


class NotFound(DCAMError):
    status_code = 404
    kind = 'not_found'


class InsufficientQuestions(DCAMError):
    status_code = 409
    kind = 'insufficient_questions'


class SessionClosed(DCAMError):
    status_code = 409
    kind = 'session_closed'


class PaymentError(DCAMError):
    status_code = 402
    kind = 'payment_error'
