"""
FILE DESCRIPTION: Crawl orchestration. Drives the frontier, dispatches URLs to a bounded worker pool,
and streams one CrawlResult per processed URL.
KEY FUNCTIONS/CLASSES: Crawler, CrawlConfig, CrawlStream
"""

import copy
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Optional

from crawlsmith.core import (
    CONCURRENCY,
    CRAWL_DELAY,
    MAX_DEPTH,
    MIN_CONTENT_SIZE,
    RESULT_BUFFER_SIZE,
)
from crawlsmith.errors import (
    CrawlsmithError,
    ExtractionError,
    InsufficientContentError,
    LinkSelectorError,
)
from crawlsmith.frontier import Frontier, is_same_domain
from crawlsmith.models import CrawlResult, FetchOptions, Usage
from crawlsmith.selectors import LinkSelector, PaginationSelector

logger = logging.getLogger(__name__)


@dataclass
class CrawlConfig:
    # Link following
    follow_selector: str = ""
    follow_pattern: str = ""
    same_domain_only: bool = True
    max_depth: int = MAX_DEPTH          # 0 = seeds only, 1 = seeds + direct links

    # Pagination
    next_selector: str = ""
    max_pages: int = 0                  # depth-0 pages, 0 = unlimited

    max_urls: int = 0                   # 0 = unlimited
    delay: float = CRAWL_DELAY          # seconds, slept by each worker before its fetch
    concurrency: int = CONCURRENCY
    extract_from_seeds: bool = False
    min_content_size: int = MIN_CONTENT_SIZE   # bytes of cleaned content, 0 disables the gate
    result_buffer_size: int = RESULT_BUFFER_SIZE
    fetch_options: FetchOptions = field(default_factory=FetchOptions)

    # Progress hook, receives the total number of URLs ever queued
    on_urls_queued: Optional[Callable[[int], None]] = None

    @property
    def follows_links(self):
        return bool(self.follow_selector or self.follow_pattern)


_DONE = object()


class CrawlStream:
    """
    Iterator over the CrawlResults of one crawl, fed by a background orchestrator thread through a
    bounded queue. Producers block while the buffer is full. close() cancels the crawl and releases
    any blocked producer; results produced after close() are dropped.
    """

    def __init__(self, cancel_event, buffer_size=RESULT_BUFFER_SIZE):
        self.cancel_event = cancel_event
        self._queue = queue.Queue(maxsize=max(1, buffer_size))
        self._closed = threading.Event()
        self._finished = False
        self._thread = None

    def _start(self, target, *args):
        self._thread = threading.Thread(target=target, args=args, daemon=True, name="CrawlOrchestrator")
        self._thread.start()

    def _emit(self, result):
        while not self._closed.is_set():
            try:
                self._queue.put(result, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _finish(self):
        self._emit(_DONE)

    def __iter__(self):
        return self

    def __next__(self):
        if self._finished:
            raise StopIteration
        item = self._queue.get()
        if item is _DONE:
            self._finished = True
            raise StopIteration
        return item

    def close(self, timeout=None):
        self.cancel_event.set()
        self._closed.set()
        # Unblock anything waiting on a full buffer
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._finished = True
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __del__(self):
        if not self._finished:
            self._closed.set()
            self.cancel_event.set()


class Crawler:
    """
    FLOW: Seeds the frontier -> Pops entries (max-URL and pagination caps) -> Acquires a concurrency slot ->
    Worker: delay -> fetch -> clean -> content-size gate -> extract -> emit ->
    follow links below max depth -> queue the next page from depth-0 URLs.
    Stops when the frontier stays empty after in-flight work drains, or when cancelled.
    """

    def __init__(self, fetcher, cleaner, extractor, config: Optional[CrawlConfig] = None):
        self.fetcher = fetcher
        self.cleaner = cleaner
        self.extractor = extractor
        self.config = copy.copy(config) if config is not None else CrawlConfig()
        if self.config.concurrency < 1:
            self.config.concurrency = 1

    def crawl(self, seeds, schema, cancel_event=None) -> CrawlStream:
        cancel_event = cancel_event or threading.Event()
        stream = CrawlStream(cancel_event, self.config.result_buffer_size)
        stream._start(self._run, list(seeds), schema, stream)
        return stream

    def crawl_all(self, seeds, schema, cancel_event=None):
        with self.crawl(seeds, schema, cancel_event) as stream:
            return list(stream)

    # -------------------------------
    # ORCHESTRATOR
    # -------------------------------
    def _run(self, seeds, schema, stream):
        try:
            self._orchestrate(seeds, schema, stream)
        except Exception as e:
            logger.exception(f"[CRAWL] orchestrator crashed: {e}")
            stream._emit(CrawlResult(url="", error=e))
        finally:
            stream._finish()

    def _notify_queued(self, frontier):
        if self.config.on_urls_queued is not None:
            self.config.on_urls_queued(frontier.total_queued())

    def _orchestrate(self, seeds, schema, stream):
        cfg = self.config
        cancel = stream.cancel_event
        logger.info(
            f"[CRAWL] starting: seeds={len(seeds)} max_depth={cfg.max_depth} max_urls={cfg.max_urls} "
            f"concurrency={cfg.concurrency} delay={cfg.delay}s"
        )

        frontier = Frontier()
        link_selector = None
        pagination = None
        try:
            if cfg.follows_links:
                link_selector = LinkSelector(cfg.follow_selector, cfg.follow_pattern)
            if cfg.next_selector:
                pagination = PaginationSelector(cfg.next_selector)
        except LinkSelectorError as e:
            logger.error(f"[CRAWL] invalid link selector: {e}")
            stream._emit(CrawlResult(url="", error=e))
            return

        for seed in seeds:
            frontier.add(seed, 0)
        self._notify_queued(frontier)

        processed = 0
        pagination_pages = 0
        slots = threading.BoundedSemaphore(cfg.concurrency)
        in_flight = set()

        with ThreadPoolExecutor(max_workers=cfg.concurrency, thread_name_prefix="CrawlWorker") as pool:
            while not cancel.is_set():
                in_flight = {f for f in in_flight if not f.done()}

                if cfg.max_urls > 0 and processed >= cfg.max_urls:
                    logger.info(f"[CRAWL] reached max URLs limit ({cfg.max_urls})")
                    break

                url, depth, ok = frontier.pop()
                if not ok:
                    # Workers may still add links
                    wait(in_flight)
                    in_flight.clear()
                    if len(frontier) == 0:
                        break
                    continue

                if depth == 0 and cfg.max_pages > 0 and pagination_pages >= cfg.max_pages:
                    logger.debug(f"[CRAWL] max pagination pages reached, skipping {url}")
                    continue

                slots.acquire()
                if cancel.is_set():
                    slots.release()
                    break
                future = pool.submit(
                    self._process_url_safe, url, depth, schema, frontier, link_selector, pagination, stream
                )
                future.add_done_callback(lambda _f: slots.release())
                in_flight.add(future)

                processed += 1
                if depth == 0:
                    pagination_pages += 1

            wait(in_flight)

        state = "cancelled" if cancel.is_set() else "done"
        logger.info(f"[CRAWL] {state}: processed={processed} queued_total={frontier.total_queued()}")

    # -------------------------------
    # PER-URL WORKER
    # -------------------------------
    def _process_url_safe(self, url, depth, schema, frontier, link_selector, pagination, stream):
        emitted = []

        def emit(result):
            emitted.append(result)
            stream._emit(result)

        try:
            self._process_url(url, depth, schema, frontier, link_selector, pagination, emit)
        except Exception as e:
            if emitted:
                # One result per URL; the failure happened while following its links
                logger.exception(f"[CRAWL] link handling failed for {url}: {e}")
                return
            logger.exception(f"[CRAWL] unexpected failure processing {url}: {e}")
            stream._emit(CrawlResult(url=url, depth=depth, error=e))

    def _should_extract(self, depth, link_selector):
        if depth == 0 and self.config.extract_from_seeds:
            return True
        if depth > 0:
            return True
        # Nothing is followed, so every fetched page is a leaf
        return link_selector is None

    def _process_url(self, url, depth, schema, frontier, link_selector, pagination, emit):
        cfg = self.config
        logger.debug(f"[CRAWL] processing {url} depth={depth}")

        if cfg.delay > 0:
            time.sleep(cfg.delay)

        fetch_start = time.monotonic()
        try:
            page = self.fetcher.fetch(url, copy.deepcopy(cfg.fetch_options))
        except CrawlsmithError as e:
            fetch_duration = time.monotonic() - fetch_start
            logger.info(f"[CRAWL] fetch failed for {url} after {fetch_duration:.2f}s: {e}")
            emit(CrawlResult(url=url, depth=depth, error=e, fetch_duration=fetch_duration))
            return
        fetch_duration = time.monotonic() - fetch_start
        logger.debug(f"[CRAWL] fetched {url} text_size={len(page.text)} links={len(page.links)}")

        if self._should_extract(depth, link_selector):
            result = self._extract(url, depth, page, schema, fetch_duration)
        else:
            logger.debug(f"[CRAWL] fetched (no extraction) {url}")
            result = CrawlResult(url=url, depth=depth, fetched_at=page.fetched_at, fetch_duration=fetch_duration)
        emit(result)

        if link_selector is not None and depth < cfg.max_depth:
            added = 0
            for link in link_selector.extract_links(page.html, url):
                if cfg.same_domain_only and not is_same_domain(url, link):
                    logger.debug(f"[CRAWL] skipping cross-domain link {link}")
                    continue
                if frontier.add(link, depth + 1):
                    added += 1
            if added:
                logger.info(f"[CRAWL] following {added} links from {url}")
                self._notify_queued(frontier)

        if pagination is not None and depth == 0:
            next_url = pagination.find_next_page(page.html, url)
            if next_url:
                logger.info(f"[CRAWL] pagination next: {next_url}")
                # Pagination stays at depth 0
                if frontier.add(next_url, 0):
                    self._notify_queued(frontier)

    def _extract(self, url, depth, page, schema, fetch_duration):
        cfg = self.config

        try:
            content = self.cleaner.clean(page.html)
        except Exception as e:
            logger.debug(f"[CRAWL] cleaner {self.cleaner.name} failed for {url}, using page text: {e}")
            content = page.text

        size = len(content.encode("utf-8"))
        if cfg.min_content_size > 0 and size < cfg.min_content_size:
            logger.info(
                f"[CRAWL] insufficient content for {url}: {size} < {cfg.min_content_size} bytes "
                f"(page may require dynamic fetch mode)"
            )
            return CrawlResult(
                url=url,
                depth=depth,
                error=InsufficientContentError(size, cfg.min_content_size),
                fetched_at=page.fetched_at,
                fetch_duration=fetch_duration,
            )

        extract_start = time.monotonic()
        try:
            extracted = self.extractor.extract(content, schema)
        except ExtractionError as e:
            extract_duration = time.monotonic() - extract_start
            logger.info(f"[CRAWL] extraction failed for {url}: {e}")
            partial = e.result
            return CrawlResult(
                url=url,
                depth=depth,
                raw_response=partial.raw_response if partial else "",
                validation_errors=list(partial.validation_errors) if partial else [],
                usage=partial.usage if partial else Usage(),
                error=e,
                fetched_at=page.fetched_at,
                fetch_duration=fetch_duration,
                extract_duration=extract_duration,
            )
        except CrawlsmithError as e:
            extract_duration = time.monotonic() - extract_start
            logger.error(f"[CRAWL] extraction aborted for {url}: {e}")
            return CrawlResult(
                url=url,
                depth=depth,
                error=e,
                fetched_at=page.fetched_at,
                fetch_duration=fetch_duration,
                extract_duration=extract_duration,
            )
        except Exception as e:
            extract_duration = time.monotonic() - extract_start
            logger.exception(f"[CRAWL] unexpected extractor failure for {url}: {e}")
            return CrawlResult(
                url=url,
                depth=depth,
                error=e,
                fetched_at=page.fetched_at,
                fetch_duration=fetch_duration,
                extract_duration=extract_duration,
            )
        extract_duration = time.monotonic() - extract_start

        logger.debug(
            f"[CRAWL] extracted {url} in={extracted.usage.input_tokens} out={extracted.usage.output_tokens} "
            f"llm={extracted.llm_duration:.2f}s retries={extracted.retry_count}"
        )
        return CrawlResult(
            url=url,
            depth=depth,
            data=extracted.data,
            raw_response=extracted.raw_response,
            validation_errors=list(extracted.validation_errors),
            usage=extracted.usage,
            fetched_at=page.fetched_at,
            fetch_duration=fetch_duration,
            extract_duration=extract_duration,
        )
