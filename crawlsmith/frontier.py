"""
Thread-safe frontier for the crawler.
Holds the FIFO queue of (url, depth) entries and the visited set.
A URL is queued at most once for the lifetime of a crawl.
"""

import logging
from collections import deque
from threading import Lock
from urllib.parse import urlsplit, urlunsplit

from crawlsmith.models import FrontierEntry

logger = logging.getLogger(__name__)


def normalize_url(raw_url):
    """
    Canonical form used for deduplication:
    - fragment removed
    - a single trailing slash removed unless the path is exactly "/"
    Returns "" when the URL cannot be parsed or lacks a scheme or host.
    """
    if not raw_url:
        return ""
    try:
        parsed = urlsplit(raw_url.strip())
    except ValueError:
        return ""
    if not parsed.scheme or not parsed.netloc:
        return ""

    path = parsed.path
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    return urlunsplit((parsed.scheme, parsed.netloc, path, parsed.query, ""))


def _host(url):
    try:
        netloc = urlsplit(url).netloc
    except ValueError:
        return ""
    # Drop userinfo, keep host:port
    return netloc.rpartition("@")[2]


def is_same_domain(url1, url2):
    """
    True when both URLs share the exact host and port.
    Scheme is ignored; subdomains count as different domains.
    """
    host1 = _host(url1)
    host2 = _host(url2)
    if not host1 or not host2:
        return False
    return host1 == host2


class Frontier:
    """
    FLOW: Normalizes incoming URLs -> Rejects anything already visited ->
    Marks new URLs visited and appends them to the queue -> Hands entries out oldest first.
    All state is guarded by a single lock and never exposed directly.
    """

    def __init__(self):
        self._lock = Lock()
        self._queue = deque()
        self._visited = set()
        self._total_queued = 0

    def add(self, raw_url, depth):
        normalized = normalize_url(raw_url)
        if not normalized:
            logger.debug(f"[FRONTIER] rejected invalid url: {raw_url!r}")
            return False

        with self._lock:
            if normalized in self._visited:
                return False
            self._visited.add(normalized)
            self._queue.append(FrontierEntry(normalized, depth))
            self._total_queued += 1
            qsize = len(self._queue)

        logger.debug(f"[FRONTIER] queued {normalized} (depth={depth}) qsize={qsize}")
        return True

    def pop(self):
        """Returns (url, depth, ok). ok is False when the queue is empty."""
        with self._lock:
            if not self._queue:
                return "", 0, False
            entry = self._queue.popleft()
        return entry.url, entry.depth, True

    def len(self):
        with self._lock:
            return len(self._queue)

    def __len__(self):
        return self.len()

    def is_visited(self, raw_url):
        normalized = normalize_url(raw_url)
        with self._lock:
            return normalized in self._visited

    def mark_visited(self, raw_url):
        """Visit a URL without queuing it, e.g. to pre-seed exclusions."""
        normalized = normalize_url(raw_url)
        if not normalized:
            return
        with self._lock:
            self._visited.add(normalized)

    def total_queued(self):
        with self._lock:
            return self._total_queued

    def get_stats(self):
        with self._lock:
            return {
                "queued": len(self._queue),
                "visited_count": len(self._visited),
                "total_queued": self._total_queued,
            }
