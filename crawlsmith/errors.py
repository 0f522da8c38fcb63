"""
Exception hierarchy for crawling, fetching and extraction.

Fetch, content and extraction errors are per-URL: the orchestrator attaches them to
that URL's CrawlResult. Only LinkSelectorError aborts a whole crawl.
"""

import re


class CrawlsmithError(Exception):
    """Base exception for the package."""
    pass


class LinkSelectorError(CrawlsmithError):
    """Raised when a link-following selector or URL pattern cannot be compiled."""
    pass


# === FETCH ERRORS ===

class FetchError(CrawlsmithError):
    """Transport or browser automation failure."""

    def __init__(self, message, url=None, status_code=None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class AntiBotError(FetchError):
    """Anti-bot protection blocked the request or served a challenge page."""

    def __init__(self, message, url=None, challenge=None, status_code=None):
        super().__init__(message, url=url, status_code=status_code)
        self.challenge = challenge


class CaptchaChallengeError(AntiBotError):
    """An interactive CAPTCHA was detected or reported unsolvable."""
    pass


class ChallengeTimeoutError(AntiBotError):
    """Timed out while a page executed; usually a challenge that never resolves."""
    pass


class FlareSolverrUnavailableError(FetchError):
    """The challenge-solving proxy could not be reached or returned garbage."""
    pass


# === CONTENT ERRORS ===

class InsufficientContentError(CrawlsmithError):
    """Cleaned content fell below the minimum size; the page likely needs dynamic fetch mode."""

    def __init__(self, content_size, min_required):
        self.content_size = content_size
        self.min_required = min_required
        super().__init__(
            f"insufficient content: got {content_size} bytes, need at least {min_required} "
            f"(page may require JavaScript rendering)"
        )


# === EXTRACTION ERRORS ===

class SchemaGenerationError(CrawlsmithError):
    """The schema could not produce its JSON schema. Never retried."""
    pass


class ResponseParseError(CrawlsmithError):
    """The completion response was not parseable as schema data."""

    def __init__(self, message, raw_response=""):
        super().__init__(message)
        self.raw_response = raw_response


class ValidationFailedError(CrawlsmithError):
    """Parsed data failed schema validation. Rendered into the next prompt."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(self.render())

    def render(self):
        return "".join(f'- Field "{err.field}": {err.message}\n' for err in self.errors)


class CompletionError(CrawlsmithError):
    """The completion service failed. retryable is decided where the failure is detected."""

    def __init__(self, message, status_code=None, retryable=None):
        super().__init__(message)
        self.status_code = status_code
        if retryable is None:
            retryable = is_rate_limit(message, status_code)
        self.retryable = retryable


class ExtractionError(CrawlsmithError):
    """Extraction gave up. result holds accumulated usage and attempt data."""

    def __init__(self, message, attempts, cause=None, result=None):
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause
        self.result = result


_RATE_LIMIT_RE = re.compile(r"rate limit|\b429\b")


def is_rate_limit(message, status_code=None):
    if status_code == 429:
        return True
    return _RATE_LIMIT_RE.search(str(message).lower()) is not None
