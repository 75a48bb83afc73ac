"""
Structured logging for DCAM Classes
Each call takes an event name plus keyword fields rendered as JSON
"""
import json
import logging
import os
import sys


class StructuredLogger:
    """Thin wrapper over logging.Logger that accepts keyword fields"""

    def __init__(self, name='dcam', level=None):
        self._logger = logging.getLogger(name)
        self._security = logging.getLogger(f'{name}.security')
        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s [%(name)s] %(message)s'
            ))
            self._logger.addHandler(handler)
        self._logger.setLevel(level or os.environ.get('LOG_LEVEL', 'INFO'))

    @staticmethod
    def _render(event, fields):
        if not fields:
            return str(event)
        return f"{event} {json.dumps(fields, default=str, sort_keys=True)}"

    def _log(self, level, event, exc_info=False, **fields):
        self._logger.log(level, self._render(event, fields), exc_info=exc_info)

    def debug(self, event, **fields):
        self._log(logging.DEBUG, event, **fields)

    def info(self, event, **fields):
        self._log(logging.INFO, event, **fields)

    def warning(self, event, **fields):
        self._log(logging.WARNING, event, **fields)

    def error(self, event, exc_info=False, **fields):
        self._log(logging.ERROR, event, exc_info=exc_info, **fields)

    def security_event(self, event, user_id=None, ip_address=None, **extra):
        """Audit trail for auth, role and blocking actions"""
        fields = {'user_id': user_id, 'ip_address': ip_address, **extra}
        self._security.warning(self._render(event, fields))


logger = StructuredLogger()
