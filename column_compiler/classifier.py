import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from column_compiler.config import ClassificationRules
from column_compiler.models import ErrorKind

logger = logging.getLogger(__name__)


class ErrorClassifier:
    """Turns raw failures into an ErrorKind at the point where they happen."""

    def __init__(self, rules=None):
        self.rules = rules or ClassificationRules()

    def classify_exception(self, exc):
        # TimeoutError subclasses Error, so it has to be checked first
        if isinstance(exc, PlaywrightTimeoutError):
            return ErrorKind.TIMEOUT
        if isinstance(exc, PlaywrightError):
            message = str(exc)
            if any(marker in message for marker in self.rules.network_timeout_markers):
                return ErrorKind.TIMEOUT
            if any(marker in message for marker in self.rules.network_not_found_markers):
                return ErrorKind.NOT_FOUND
        return ErrorKind.UNKNOWN

    def classify_status(self, status):
        """Return the kind for a failing HTTP status, or None if the status is usable."""
        if status is None or status < 400:
            return None
        return self.rules.status_kinds.get(status, ErrorKind.UNKNOWN)

    def classify_page_text(self, text):
        lowered = (text or "").lower()
        for marker in self.rules.auth_markers:
            if marker.lower() in lowered:
                logger.debug("Auth marker matched: %r", marker)
                return ErrorKind.AUTH_OR_PERMISSION
        return None
