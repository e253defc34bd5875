from typing import Optional


class CaseGenError(Exception):
    """Base class for all casegen errors"""


class InputValidationError(CaseGenError):
    """Caller supplied malformed input (e.g. a missing issue key)"""


class TransientProviderError(CaseGenError):
    """Network, timeout or rate-limit failure from the generation API"""


class EmptyResponseError(TransientProviderError):
    """The generation API answered without any usable text"""


class TerminalProviderError(CaseGenError):
    """The generation API rejected the request in a way retries cannot fix"""


class GenerationError(CaseGenError):
    """Generation failed for good, either exhausted or terminal."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ImageProcessingError(CaseGenError):
    """An uploaded image could not be decoded, stored or read back"""


class SessionNotFoundError(CaseGenError):
    """Image session is absent, expired or owned by someone else"""


class GenerationNotFoundError(CaseGenError):
    """Generation record is absent or owned by someone else"""


class IssueSourceError(CaseGenError):
    """The issue tracker could not supply the requested issue."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
