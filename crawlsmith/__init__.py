from crawlsmith.models import (
    ChallengeKind,
    Cookie,
    CrawlResult,
    ExtractionResult,
    FetchMode,
    FetchOptions,
    FetchResult,
    Usage,
    ValidationError,
)
from crawlsmith.errors import (
    CrawlsmithError,
    LinkSelectorError,
    FetchError,
    AntiBotError,
    CaptchaChallengeError,
    ChallengeTimeoutError,
    FlareSolverrUnavailableError,
    InsufficientContentError,
    SchemaGenerationError,
    ResponseParseError,
    ValidationFailedError,
    CompletionError,
    ExtractionError,
)
from crawlsmith.frontier import Frontier, normalize_url, is_same_domain
from crawlsmith.selectors import LinkSelector, PaginationSelector
from crawlsmith.fetcher import (
    Fetcher,
    FetcherConfig,
    StaticFetcher,
    AutoFetcher,
    needs_javascript,
    new_fetcher,
)
from crawlsmith.extractor import Extractor, ExtractorConfig
from crawlsmith.schema import Schema, ModelSchema, schema_from_dict, schema_from_file
from crawlsmith.cleaner import Cleaner, ChainCleaner, MarkdownCleaner, NoopCleaner, TextCleaner, new_cleaner
from crawlsmith.engine import Crawler, CrawlConfig, CrawlStream

__version__ = "0.1.0"
