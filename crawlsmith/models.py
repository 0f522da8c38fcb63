from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _now():
    return datetime.now(timezone.utc)


class FetchMode(Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"
    AUTO = "auto"


class ChallengeKind(Enum):
    # Challenge pages recognised in fetched HTML
    CLOUDFLARE = "cloudflare"
    CLOUDFLARE_TURNSTILE = "cloudflare-turnstile"
    HCAPTCHA = "hcaptcha"
    RECAPTCHA = "recaptcha"
    ANTI_BOT = "anti-bot"
    # Failure kinds reported by the challenge-solving proxy
    TIMEOUT = "timeout"
    UNSOLVABLE = "unsolvable"
    CAPTCHA = "captcha"
    BLOCKED = "blocked"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    domain: str = ""


@dataclass
class FetchOptions:
    """Per-request fetch overrides. Zero values fall back to the fetcher config."""
    user_agent: str = ""
    timeout: float = 0
    wait_for_selector: str = ""   # dynamic fetchers only
    wait_duration: float = 0      # extra sleep after load, seconds
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[Cookie] = field(default_factory=list)


@dataclass
class FetchResult:
    """
    Page content produced by one fetch attempt.
    Transient: lives for the processing of a single URL.
    """
    url: str
    html: str = ""
    text: str = ""
    title: str = ""
    status_code: int = 0
    content_type: str = ""
    fetched_at: datetime = field(default_factory=_now)
    links: List[str] = field(default_factory=list)


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, other):
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        return self

    def to_dict(self):
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass(frozen=True)
class ValidationError:
    """A single field-level schema violation."""
    field: str
    message: str
    value: Any = None

    def __str__(self):
        return f"{self.field}: {self.message}"


@dataclass
class ExtractionAttempt:
    number: int
    usage: Usage = field(default_factory=Usage)
    data: Any = None
    raw_response: str = ""
    error: Optional[Exception] = None
    duration: float = 0.0


@dataclass
class ExtractionResult:
    data: Any = None
    raw_response: str = ""
    validation_errors: List[ValidationError] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    retry_count: int = 0
    llm_duration: float = 0.0
    attempts: List[ExtractionAttempt] = field(default_factory=list)


@dataclass
class CrawlResult:
    """
    One processed URL. Emitted exactly once per URL whether it succeeded or not;
    consumers must check error before relying on data.
    """
    url: str
    depth: int = 0
    data: Any = None
    raw_response: str = ""
    validation_errors: List[ValidationError] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    error: Optional[Exception] = None
    fetched_at: Optional[datetime] = None
    fetch_duration: float = 0.0
    extract_duration: float = 0.0

    @property
    def ok(self):
        return self.error is None

    def to_dict(self):
        out = {
            "url": self.url,
            "depth": self.depth,
            "data": self.data,
            "usage": self.usage.to_dict(),
            "fetch_duration_ms": int(self.fetch_duration * 1000),
            "extract_duration_ms": int(self.extract_duration * 1000),
        }
        if self.fetched_at is not None:
            out["fetched_at"] = self.fetched_at.isoformat()
        if self.validation_errors:
            out["validation_errors"] = [
                {"field": e.field, "message": e.message} for e in self.validation_errors
            ]
        if self.error is not None:
            out["error"] = str(self.error)
            out["error_type"] = type(self.error).__name__
        return out
