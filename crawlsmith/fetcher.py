"""
FILE DESCRIPTION: Fetch strategy layer. Turns a URL into a FetchResult using plain HTTP,
a headless browser, or static-first with automatic escalation.
KEY FUNCTIONS/CLASSES: Fetcher, FetcherConfig, StaticFetcher, AutoFetcher, needs_javascript, new_fetcher
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from crawlsmith.core import (
    REQUEST_TIMEOUT,
    USER_AGENT,
    FLARESOLVERR_URL,
    JS_RENDER_WORKERS,
    JS_MIN_TEXT_LENGTH,
    JS_SPA_MARKERS,
    JS_LOADING_INDICATORS,
    JS_NOSCRIPT_INDICATORS,
)
from crawlsmith.errors import FetchError
from crawlsmith.models import FetchMode, FetchOptions, FetchResult

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}

_NON_CONTENT_TAGS = ["script", "style", "noscript", "iframe", "svg"]


@dataclass
class FetcherConfig:
    user_agent: str = USER_AGENT
    timeout: float = REQUEST_TIMEOUT
    stealth: bool = False
    googlebot: bool = False
    random_user_agent: bool = False
    flaresolverr_url: str = FLARESOLVERR_URL
    render_workers: int = JS_RENDER_WORKERS
    screenshot_dir: Optional[str] = None   # None = system temp dir


class Fetcher(ABC):
    """
    Retrieves one page. Implementations must be safe to call from several crawl workers at once.
    """
    fetcher_type = "base"

    @abstractmethod
    def fetch(self, url: str, options: Optional[FetchOptions] = None) -> FetchResult:
        """Raises FetchError (or a subclass) on failure."""
        pass

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def clean_text(s):
    return " ".join(s.split())


def parse_page(result: FetchResult) -> FetchResult:
    """Fills title, visible text and absolute links from result.html."""
    if not result.html:
        return result

    soup = BeautifulSoup(result.html, "lxml")

    title_tag = soup.find("title")
    result.title = title_tag.get_text().strip() if title_tag else ""

    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()

    body = soup.find("body")
    result.text = clean_text(body.get_text(" ")) if body else ""

    links = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith("#"):
            continue
        try:
            links.append(urljoin(result.url, href))
        except ValueError:
            continue
    result.links = links
    return result


# === STATIC FETCHER ===

class StaticFetcher(Fetcher):
    """
    FLOW: Merges per-request overrides over the config -> GETs the URL with browser-like headers ->
    Fails on transport errors and HTTP >= 400 -> Parses title, text and links from the body.
    """
    fetcher_type = "static"

    def __init__(self, config: Optional[FetcherConfig] = None, session=None):
        self.config = config or FetcherConfig()
        self.session = session or requests.Session()

    def fetch(self, url, options=None):
        options = options or FetchOptions()
        headers = dict(BROWSER_HEADERS)
        headers["User-Agent"] = options.user_agent or self.config.user_agent
        headers.update(options.headers)
        cookies = {c.name: c.value for c in options.cookies}
        timeout = options.timeout or self.config.timeout

        start_time = time.time()
        try:
            r = self.session.get(
                url,
                headers=headers,
                cookies=cookies,
                timeout=timeout,
                allow_redirects=True,
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(f"fetch error: {e}", url=url) from e

        fetch_time_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"[FETCH] {r.status_code} {url} in {fetch_time_ms}ms")

        if r.status_code >= 400:
            raise FetchError(f"fetch error: HTTP {r.status_code}", url=url, status_code=r.status_code)

        result = FetchResult(
            url=url,
            html=r.text,
            status_code=r.status_code,
            content_type=r.headers.get("Content-Type", ""),
        )
        return parse_page(result)

    def close(self):
        self.session.close()


# === JS NEED DETECTION ===

def needs_javascript(
    html,
    text,
    spa_markers=None,
    loading_indicators=None,
    noscript_indicators=None,
    min_text_length=None,
):
    """
    Approximate check for pages that only render in a browser:
    an SPA mount point, a tiny body that just says "loading", or a <noscript> nag.
    """
    spa_markers = JS_SPA_MARKERS if spa_markers is None else spa_markers
    loading_indicators = JS_LOADING_INDICATORS if loading_indicators is None else loading_indicators
    noscript_indicators = JS_NOSCRIPT_INDICATORS if noscript_indicators is None else noscript_indicators
    min_text_length = JS_MIN_TEXT_LENGTH if min_text_length is None else min_text_length

    h = (html or "").lower()

    for marker in spa_markers:
        if marker.lower() in h:
            return True

    stripped = (text or "").strip()
    if len(stripped) < min_text_length:
        t = stripped.lower()
        if any(indicator in t for indicator in loading_indicators):
            return True

    start = h.find("<noscript>")
    if start != -1:
        end = h.find("</noscript>", start)
        if end != -1:
            noscript = h[start + len("<noscript>"):end]
            if any(indicator in noscript for indicator in noscript_indicators):
                return True

    return False


# === AUTO FETCHER ===

class AutoFetcher(Fetcher):
    """
    FLOW: Static fetch -> On any static failure escalate to dynamic ->
    On success run needs_javascript() -> Escalate if the page looks script-rendered,
    else keep the static result.
    """
    fetcher_type = "auto"

    def __init__(
        self,
        static: Fetcher,
        dynamic: Fetcher,
        spa_markers: Optional[List[str]] = None,
        loading_indicators: Optional[List[str]] = None,
        noscript_indicators: Optional[List[str]] = None,
        min_text_length: Optional[int] = None,
    ):
        self.static = static
        self.dynamic = dynamic
        self.spa_markers = list(JS_SPA_MARKERS if spa_markers is None else spa_markers)
        self.loading_indicators = list(JS_LOADING_INDICATORS if loading_indicators is None else loading_indicators)
        self.noscript_indicators = list(JS_NOSCRIPT_INDICATORS if noscript_indicators is None else noscript_indicators)
        self.min_text_length = JS_MIN_TEXT_LENGTH if min_text_length is None else min_text_length

    def fetch(self, url, options=None):
        try:
            result = self.static.fetch(url, options)
        except FetchError as e:
            logger.info(f"[FETCH] static fetch failed for {url} ({e}); escalating to browser")
            return self.dynamic.fetch(url, options)

        if needs_javascript(
            result.html,
            result.text,
            spa_markers=self.spa_markers,
            loading_indicators=self.loading_indicators,
            noscript_indicators=self.noscript_indicators,
            min_text_length=self.min_text_length,
        ):
            logger.info(f"[FETCH] {url} looks script-rendered; escalating to browser")
            return self.dynamic.fetch(url, options)

        return result

    def close(self):
        try:
            self.static.close()
        finally:
            self.dynamic.close()


# === FACTORY ===

def new_fetcher(mode, config: Optional[FetcherConfig] = None) -> Fetcher:
    config = config or FetcherConfig()
    if not isinstance(mode, FetchMode):
        try:
            mode = FetchMode(str(mode).lower())
        except ValueError:
            raise ValueError(f"unknown fetch mode: {mode!r}") from None

    if mode is FetchMode.STATIC:
        return StaticFetcher(config)

    # Imported here: js_engine builds on this module
    from crawlsmith.js_engine import DynamicFetcher

    if mode is FetchMode.DYNAMIC:
        return DynamicFetcher(config)
    return AutoFetcher(StaticFetcher(config), DynamicFetcher(config))
