"""
Link and pagination selectors.
Pick the URLs to follow, and the "next page" URL, out of fetched HTML.
"""

import logging
import re
from urllib.parse import urljoin, urldefrag

from bs4 import BeautifulSoup

from crawlsmith.errors import LinkSelectorError

logger = logging.getLogger(__name__)

DEFAULT_LINK_SELECTOR = "a[href]"


def _is_followable(href):
    if not href:
        return False
    if href.startswith("#"):
        return False
    if href.lower().startswith("javascript:"):
        return False
    return True


def _check_css(selector):
    try:
        BeautifulSoup("", "html.parser").select(selector)
    except Exception as e:
        raise LinkSelectorError(f"invalid CSS selector {selector!r}: {e}") from e


class LinkSelector:
    """
    FLOW: Parses HTML -> Selects candidate anchors (CSS) -> Drops empty, fragment-only and
    javascript: hrefs -> Resolves against the page URL -> Strips fragments ->
    Applies the optional URL regex -> Deduplicates within the call, keeping document order.
    """

    def __init__(self, css_selector="", url_pattern=""):
        self.css_selector = css_selector or DEFAULT_LINK_SELECTOR
        self.url_pattern = None
        _check_css(self.css_selector)
        if url_pattern:
            try:
                self.url_pattern = re.compile(url_pattern)
            except re.error as e:
                raise LinkSelectorError(f"invalid URL pattern {url_pattern!r}: {e}") from e

    def extract_links(self, html, base_url):
        soup = BeautifulSoup(html or "", "html.parser")
        links = []
        seen = set()

        for element in soup.select(self.css_selector):
            href = (element.get("href") or "").strip()
            if not _is_followable(href):
                continue

            try:
                full_url, _ = urldefrag(urljoin(base_url, href))
            except ValueError:
                logger.debug(f"[LINKS] Skipping malformed href {href!r} on {base_url}")
                continue

            if self.url_pattern is not None and not self.url_pattern.search(full_url):
                continue
            if full_url in seen:
                continue
            seen.add(full_url)
            links.append(full_url)

        return links


class PaginationSelector:
    """Finds the first element matching the "next page" selector and resolves its href."""

    def __init__(self, next_selector):
        self.next_selector = next_selector
        if next_selector:
            _check_css(next_selector)

    def find_next_page(self, html, base_url):
        """Returns the absolute next-page URL, or None."""
        if not self.next_selector:
            return None

        soup = BeautifulSoup(html or "", "html.parser")
        element = soup.select_one(self.next_selector)
        if element is None:
            return None

        href = (element.get("href") or "").strip()
        if not _is_followable(href):
            return None

        try:
            return urljoin(base_url, href)
        except ValueError:
            logger.debug(f"[LINKS] Malformed next-page href {href!r} on {base_url}")
            return None
