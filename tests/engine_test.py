"""
Crawl orchestration scenarios against an in-memory site.
Fetching and extraction are faked; frontier, selectors and the worker pool are real.
"""

import threading
import unittest
from unittest.mock import MagicMock, patch

from crawlsmith.cleaner import TextCleaner
from crawlsmith.engine import Crawler, CrawlConfig
from crawlsmith.errors import (
    ExtractionError,
    FetchError,
    InsufficientContentError,
    LinkSelectorError,
    ValidationFailedError,
)
from crawlsmith.fetcher import Fetcher, parse_page
from crawlsmith.models import ExtractionResult, FetchResult, Usage, ValidationError

SITE = {
    "https://example.com/list": """
        <html><body><h1>All products</h1>
          <a class="item" href="/p/1">Widget</a>
          <a class="item" href="/p/2">Gadget</a>
          <a class="item" href="/p/1#reviews">Widget reviews</a>
          <a class="item" href="https://other.com/p/3">Partner product</a>
          <a href="/about">About</a>
          <a class="next" href="/list?page=2">Next</a>
        </body></html>
    """,
    "https://example.com/list?page=2": """
        <html><body><h1>All products, page 2</h1>
          <a class="item" href="/p/4">Sprocket</a>
          <a class="next" href="/list?page=3">Next</a>
        </body></html>
    """,
    "https://example.com/list?page=3": "<html><body><h1>Page 3</h1></body></html>",
    "https://example.com/p/1": '<html><body><h1>Widget</h1><p>Price 9.50</p><a class="item" href="/p/9">Related</a></body></html>',
    "https://example.com/p/2": "<html><body><h1>Gadget</h1><p>Price 19.00</p></body></html>",
    "https://example.com/p/4": "<html><body><h1>Sprocket</h1><p>Price 2.25</p></body></html>",
    "https://example.com/p/9": "<html><body><h1>Related</h1></body></html>",
    "https://other.com/p/3": "<html><body><h1>Partner product</h1></body></html>",
}


class FakeFetcher(Fetcher):
    def __init__(self, site, failures=None, on_fetch=None):
        self.site = site
        self.failures = failures or {}
        self.on_fetch = on_fetch
        self.fetched = []
        self._lock = threading.Lock()

    def fetch(self, url, options=None):
        with self._lock:
            self.fetched.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)
        if url in self.failures:
            raise self.failures[url]
        if url not in self.site:
            raise FetchError("fetch error: HTTP 404", url=url, status_code=404)
        return parse_page(FetchResult(url=url, html=self.site[url], status_code=200))


def _fake_extractor():
    extractor = MagicMock()
    extractor.extract.side_effect = lambda content, schema: ExtractionResult(
        data={"chars": len(content)}, usage=Usage(10, 2)
    )
    return extractor


def _config(**overrides):
    values = {"delay": 0, "min_content_size": 0, "concurrency": 2}
    values.update(overrides)
    return CrawlConfig(**values)


class TestCrawler(unittest.TestCase):
    def setUp(self):
        self.fetcher = FakeFetcher(SITE)
        self.extractor = _fake_extractor()
        self.schema = MagicMock()

    def _crawl(self, seeds, config, cleaner=None):
        crawler = Crawler(self.fetcher, cleaner or TextCleaner(), self.extractor, config)
        results = crawler.crawl_all(seeds, self.schema)
        return {r.url: r for r in results}, results

    def test_follow_links_one_level(self):
        queued = []
        config = _config(follow_selector="a.item", max_depth=1, on_urls_queued=queued.append)

        by_url, results = self._crawl(["https://example.com/list"], config)

        self.assertEqual(len(results), 3)
        self.assertEqual(set(by_url), {
            "https://example.com/list",
            "https://example.com/p/1",
            "https://example.com/p/2",
        })

        seed = by_url["https://example.com/list"]
        self.assertIsNone(seed.error)
        self.assertIsNone(seed.data)
        self.assertEqual(seed.depth, 0)

        for url in ("https://example.com/p/1", "https://example.com/p/2"):
            self.assertIsNone(by_url[url].error)
            self.assertEqual(by_url[url].depth, 1)
            self.assertIsNotNone(by_url[url].data)

        self.assertEqual(self.extractor.extract.call_count, 2)
        # Depth-1 pages are at max depth, so /p/9 is never queued
        self.assertNotIn("https://example.com/p/9", self.fetcher.fetched)
        self.assertEqual(queued[-1], 3)

    def test_extract_from_seeds(self):
        config = _config(follow_selector="a.item", max_depth=1, extract_from_seeds=True)
        by_url, _ = self._crawl(["https://example.com/list"], config)
        self.assertIsNotNone(by_url["https://example.com/list"].data)
        self.assertEqual(self.extractor.extract.call_count, 3)

    def test_cross_domain_links(self):
        config = _config(follow_selector="a.item", max_depth=1, same_domain_only=False)
        by_url, _ = self._crawl(["https://example.com/list"], config)
        self.assertIn("https://other.com/p/3", by_url)

    def test_depth_two_follows_further(self):
        config = _config(follow_selector="a.item", max_depth=2)
        by_url, _ = self._crawl(["https://example.com/list"], config)
        self.assertEqual(by_url["https://example.com/p/9"].depth, 2)

    def test_no_follow_extracts_every_seed(self):
        seeds = ["https://example.com/p/1", "https://example.com/p/2", "https://example.com/p/2/"]
        by_url, results = self._crawl(seeds, _config())
        self.assertEqual(len(results), 2)
        self.assertTrue(all(r.data is not None for r in results))

    def test_content_floor(self):
        config = _config(min_content_size=1000)
        by_url, results = self._crawl(["https://example.com/p/2"], config)

        self.assertEqual(len(results), 1)
        self.assertIsInstance(results[0].error, InsufficientContentError)
        self.assertEqual(results[0].error.min_required, 1000)
        self.extractor.extract.assert_not_called()

    def test_pagination_cap(self):
        config = _config(next_selector="a.next", max_pages=2, concurrency=1)
        by_url, results = self._crawl(["https://example.com/list"], config)

        self.assertEqual(set(by_url), {"https://example.com/list", "https://example.com/list?page=2"})
        self.assertTrue(all(r.depth == 0 for r in results))
        self.assertNotIn("https://example.com/list?page=3", self.fetcher.fetched)

    def test_pagination_cap_ignores_followed_links(self):
        config = _config(follow_selector="a.item", next_selector="a.next", max_depth=1, max_pages=1, concurrency=1)
        by_url, _ = self._crawl(["https://example.com/list"], config)

        self.assertEqual(set(by_url), {
            "https://example.com/list",
            "https://example.com/p/1",
            "https://example.com/p/2",
        })

    def test_pagination_unlimited(self):
        config = _config(follow_selector="a.item", next_selector="a.next", max_depth=1)
        by_url, _ = self._crawl(["https://example.com/list"], config)

        self.assertIn("https://example.com/list?page=3", by_url)
        self.assertEqual(by_url["https://example.com/list?page=2"].depth, 0)
        self.assertEqual(by_url["https://example.com/p/4"].depth, 1)

    def test_max_urls(self):
        seeds = [f"https://example.com/p/{i}" for i in (1, 2, 4, 9)]
        _, results = self._crawl(seeds, _config(max_urls=2, concurrency=1))
        self.assertEqual(len(results), 2)
        self.assertEqual(len(self.fetcher.fetched), 2)

    def test_invalid_pattern_aborts_crawl(self):
        config = _config(follow_selector="a.item", follow_pattern="([")
        _, results = self._crawl(["https://example.com/list"], config)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].url, "")
        self.assertIsInstance(results[0].error, LinkSelectorError)
        self.assertEqual(self.fetcher.fetched, [])

    def test_fetch_failure_is_per_url(self):
        self.fetcher.failures["https://example.com/list"] = FetchError("fetch error: HTTP 503", status_code=503)
        config = _config(follow_selector="a.item", max_depth=1)

        by_url, results = self._crawl(["https://example.com/list", "https://example.com/p/2"], config)

        self.assertEqual(len(results), 2)
        self.assertIsInstance(by_url["https://example.com/list"].error, FetchError)
        self.assertNotIn("https://example.com/p/1", self.fetcher.fetched)
        self.assertIsNone(by_url["https://example.com/p/2"].error)

    def test_cleaner_failure_falls_back_to_page_text(self):
        cleaner = MagicMock()
        cleaner.name = "broken"
        cleaner.clean.side_effect = RuntimeError("parser exploded")

        _, results = self._crawl(["https://example.com/p/2"], _config(), cleaner=cleaner)

        self.assertIsNone(results[0].error)
        content = self.extractor.extract.call_args.args[0]
        self.assertIn("Gadget", content)
        self.assertIn("Price 19.00", content)

    def test_extraction_failure_keeps_usage(self):
        errors = [ValidationError("price", "Field required")]
        self.extractor.extract.side_effect = ExtractionError(
            "extraction failed after 3 attempts",
            attempts=3,
            cause=ValidationFailedError(errors),
            result=ExtractionResult(raw_response='{"title": "Gadget"}', validation_errors=errors, usage=Usage(90, 12)),
        )

        _, results = self._crawl(["https://example.com/p/2"], _config())

        result = results[0]
        self.assertIsInstance(result.error, ExtractionError)
        self.assertEqual(result.usage, Usage(90, 12))
        self.assertEqual(result.raw_response, '{"title": "Gadget"}')
        self.assertEqual(result.validation_errors, errors)

    def test_unexpected_worker_error_is_reported(self):
        self.extractor.extract.side_effect = KeyError("boom")
        _, results = self._crawl(["https://example.com/p/2"], _config())
        self.assertIsInstance(results[0].error, KeyError)

    def test_malformed_href_does_not_fail_page(self):
        site = dict(SITE)
        site["https://example.com/list"] = """
            <html><body>
              <a class="item" href="http://[broken/x">Broken</a>
              <a class="item" href="/p/1">Widget</a>
            </body></html>
        """
        self.fetcher = FakeFetcher(site)
        config = _config(follow_selector="a.item", max_depth=1)

        _, results = self._crawl(["https://example.com/list"], config)

        urls = sorted(r.url for r in results)
        self.assertEqual(urls, ["https://example.com/list", "https://example.com/p/1"])
        self.assertTrue(all(r.error is None for r in results))

    def test_link_handling_failure_keeps_one_result(self):
        config = _config(follow_selector="a.item", max_depth=1)
        with patch("crawlsmith.engine.is_same_domain", side_effect=RuntimeError("bad link")):
            _, results = self._crawl(["https://example.com/list"], config)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].url, "https://example.com/list")
        self.assertIsNone(results[0].error)

    def test_unexpected_extractor_error_still_follows_links(self):
        self.extractor.extract.side_effect = KeyError("boom")
        config = _config(follow_selector="a.item", max_depth=1, extract_from_seeds=True)

        by_url, results = self._crawl(["https://example.com/list"], config)

        self.assertEqual(len(results), 3)
        self.assertIsInstance(by_url["https://example.com/list"].error, KeyError)
        self.assertIn("https://example.com/p/1", by_url)
        self.assertIn("https://example.com/p/2", by_url)

    def test_concurrency_coerced(self):
        config = _config(concurrency=0)
        crawler = Crawler(self.fetcher, TextCleaner(), self.extractor, config)
        self.assertEqual(crawler.config.concurrency, 1)
        self.assertEqual(config.concurrency, 0)


class TestCancellation(unittest.TestCase):
    def setUp(self):
        self.extractor = _fake_extractor()
        self.seeds = [f"https://example.com/p/{i}" for i in (1, 2, 4, 9)]

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        fetcher = FakeFetcher(SITE)
        crawler = Crawler(fetcher, TextCleaner(), self.extractor, _config())

        results = crawler.crawl_all(self.seeds, MagicMock(), cancel)

        self.assertEqual(results, [])
        self.assertEqual(fetcher.fetched, [])

    def test_in_flight_work_finishes(self):
        cancel = threading.Event()
        fetcher = FakeFetcher(SITE, on_fetch=lambda url: cancel.set())
        crawler = Crawler(fetcher, TextCleaner(), self.extractor, _config(concurrency=1))

        results = crawler.crawl_all(self.seeds, MagicMock(), cancel)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].url, "https://example.com/p/1")
        self.assertIsNone(results[0].error)

    def test_close_stops_stream(self):
        site = {f"https://example.com/n/{i}": "<p>node</p>" for i in range(30)}
        crawler = Crawler(FakeFetcher(site), TextCleaner(), self.extractor,
                          _config(concurrency=1, result_buffer_size=1))
        stream = crawler.crawl(sorted(site), MagicMock())

        first = next(stream)
        stream.close(timeout=5)

        self.assertIn(first.url, site)
        self.assertFalse(stream._thread.is_alive())
        self.assertTrue(stream.cancel_event.is_set())
        self.assertEqual(list(stream), [])


if __name__ == "__main__":
    unittest.main()
