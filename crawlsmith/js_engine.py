"""
FILE DESCRIPTION: Headless browser fetching. Owns the Playwright render threads, the stealth setup
and the optional FlareSolverr session layer in front of the browser.
KEY FUNCTIONS/CLASSES: DynamicFetcher, RenderJob, RenderResult
"""

import logging
import os
import queue
import tempfile
import threading
import time
from typing import Optional
from urllib.parse import urlsplit

from playwright.sync_api import sync_playwright, TimeoutError as PlaywrightTimeoutError

from crawlsmith.core import (
    GOOGLEBOT_MOBILE_USER_AGENT,
    JS_SCREENSHOT_TIMEOUT,
)
from crawlsmith.errors import AntiBotError, ChallengeTimeoutError, FetchError
from crawlsmith.fetcher import Fetcher, FetcherConfig, parse_page
from crawlsmith.flaresolverr import FlareSolverr, session_id_for
from crawlsmith.models import FetchOptions, FetchResult
from crawlsmith.stealth import (
    STEALTH_SCRIPT,
    STEALTH_IGNORE_DEFAULT_ARGS,
    VIEWPORT,
    detect_challenge_page,
    launch_args,
    pick_user_agent,
)

logger = logging.getLogger(__name__)

# Extra seconds a caller waits for a render thread beyond the page timeout
_RESULT_GRACE = 15
# Seconds between closed checks while a job waits for a free render thread
_QUEUE_POLL = 1


class RenderJob:
    def __init__(self, url, options, timeout):
        self.url = url
        self.options = options
        self.timeout = timeout
        self.result_queue = queue.Queue(maxsize=1)
        # Set by the render thread when it picks the job up; the page timeout runs from here
        self.started = threading.Event()
        self.abandoned = threading.Event()

    def finish(self, rendered):
        self.started.set()
        self.result_queue.put(rendered)


class RenderResult:
    def __init__(self, html="", title="", status_code=200, error=None):
        self.html = html
        self.title = title
        self.status_code = status_code
        self.error = error


class DynamicFetcher(Fetcher):
    """
    FLOW: Optional FlareSolverr solve with a per-domain session -> Otherwise queue a RenderJob ->
    A render thread opens a fresh browser context (cookies, stealth script) -> Navigates and waits ->
    Returns HTML + title -> Challenge pages are rejected -> Title, text and links parsed.
    Each render thread owns its Playwright instance and browser; Playwright objects never cross threads.
    """
    fetcher_type = "dynamic"

    def __init__(self, config: Optional[FetcherConfig] = None, flaresolverr: Optional[FlareSolverr] = None):
        self.config = config or FetcherConfig()
        if flaresolverr is None and self.config.flaresolverr_url:
            flaresolverr = FlareSolverr(self.config.flaresolverr_url)
        self.flaresolverr = flaresolverr

        self._sessions = {}
        self._sessions_lock = threading.Lock()

        self._request_queue = queue.Queue()
        self._init_lock = threading.Lock()
        self._worker_threads = []
        self._closed = False

        logger.debug(
            f"[JS-ENGINE] dynamic fetcher configured stealth={self.config.stealth} "
            f"googlebot={self.config.googlebot} flaresolverr={self.flaresolverr is not None}"
        )

    # -------------------------------
    # FETCH ENTRY POINT
    # -------------------------------
    def fetch(self, url, options=None):
        options = options or FetchOptions()
        if self._closed:
            raise FetchError("fetcher is closed", url=url)

        if self.flaresolverr is not None:
            result = self._fetch_with_flaresolverr(url)
            if result is not None:
                return result
            logger.debug(f"[JS-ENGINE] FlareSolverr returned no content for {url}; using browser")

        return self._fetch_with_browser(url, options)

    # -------------------------------
    # FLARESOLVERR SESSIONS
    # -------------------------------
    def _get_or_create_session(self, host):
        with self._sessions_lock:
            session_id = self._sessions.get(host)
            if session_id:
                return session_id

            session_id = session_id_for(host)
            try:
                self.flaresolverr.create_session(session_id)
            except FetchError as e:
                # May already exist; the proxy decides whether the ID is usable
                logger.debug(f"[FLARESOLVERR] session create for {session_id} failed, using it anyway: {e}")
            self._sessions[host] = session_id
            return session_id

    def _fetch_with_flaresolverr(self, url):
        """Returns a FetchResult, or None when the proxy produced no page content."""
        host = urlsplit(url).netloc
        session_id = self._get_or_create_session(host)
        solution = self.flaresolverr.solve(url, session_id)

        if not solution.response:
            return None

        result = FetchResult(url=url, html=solution.response, status_code=solution.status)
        challenge = detect_challenge_page("", result.html)
        if challenge is not None:
            logger.warning(f"[JS-ENGINE] challenge page in FlareSolverr response for {url}: {challenge.value}")
            raise AntiBotError(f"blocked by anti-bot protection: {challenge.value}", url=url, challenge=challenge)

        parse_page(result)
        logger.debug(
            f"[JS-ENGINE] fetched via FlareSolverr {url} session={session_id} "
            f"text_size={len(result.text)} links={len(result.links)}"
        )
        return result

    # -------------------------------
    # BROWSER PATH
    # -------------------------------
    def _fetch_with_browser(self, url, options):
        timeout = options.timeout or self.config.timeout
        self._ensure_running()

        job = RenderJob(url, options, timeout)
        self._request_queue.put(job)

        while not job.started.wait(_QUEUE_POLL):
            if self._closed:
                job.abandoned.set()
                raise FetchError("fetcher is closed", url=url)

        try:
            rendered = job.result_queue.get(timeout=timeout + (options.wait_duration or 0) + _RESULT_GRACE)
        except queue.Empty:
            job.abandoned.set()
            raise ChallengeTimeoutError(
                f"challenge timeout: no render result after {timeout}s", url=url
            ) from None

        if rendered.error is not None:
            raise rendered.error

        result = FetchResult(url=url, html=rendered.html, title=rendered.title, status_code=rendered.status_code)

        challenge = detect_challenge_page(rendered.title, rendered.html)
        if challenge is not None:
            logger.warning(f"[JS-ENGINE] challenge page detected for {url}: {challenge.value}")
            raise AntiBotError(f"blocked by anti-bot protection: {challenge.value}", url=url, challenge=challenge)

        parse_page(result)
        # Keep the browser-reported title over the parsed one
        result.title = rendered.title or result.title
        logger.debug(f"[JS-ENGINE] fetched {url} title={result.title!r} text_size={len(result.text)}")
        return result

    def _user_agent(self, options):
        if self.config.googlebot:
            return GOOGLEBOT_MOBILE_USER_AGENT
        if options.user_agent:
            return options.user_agent
        if self.config.random_user_agent:
            return pick_user_agent(randomize=True)
        return self.config.user_agent

    def _render_page(self, browser, job):
        """Runs one job on a render thread. Always returns a RenderResult, never raises."""
        context = None
        page = None
        try:
            context = browser.new_context(
                user_agent=self._user_agent(job.options),
                viewport=VIEWPORT,
                extra_http_headers=job.options.headers or None,
            )
            if job.options.cookies:
                context.add_cookies([
                    {"name": c.name, "value": c.value, "domain": c.domain, "path": "/"}
                    if c.domain else {"name": c.name, "value": c.value, "url": job.url}
                    for c in job.options.cookies
                ])
            if self.config.stealth:
                context.add_init_script(STEALTH_SCRIPT)

            page = context.new_page()
            timeout_ms = job.timeout * 1000
            response = page.goto(job.url, wait_until="domcontentloaded", timeout=timeout_ms)
            page.wait_for_selector(job.options.wait_for_selector or "body", state="attached", timeout=timeout_ms)
            if job.options.wait_duration:
                page.wait_for_timeout(job.options.wait_duration * 1000)

            html = page.content()
            title = page.title()
            status_code = response.status if response is not None else 200
            return RenderResult(html=html, title=title, status_code=status_code)

        except PlaywrightTimeoutError as e:
            self._save_screenshot(page)
            logger.warning(f"[JS-ENGINE] browser timeout for {job.url}; possible anti-bot protection")
            return RenderResult(error=ChallengeTimeoutError(f"challenge timeout: {e}", url=job.url))
        except Exception as e:
            self._save_screenshot(page)
            return RenderResult(error=FetchError(f"browser automation failed: {e}", url=job.url))
        finally:
            if context is not None:
                try:
                    context.close()
                except Exception as e:
                    logger.debug(f"[JS-ENGINE] context close failed: {e}")

    def _save_screenshot(self, page):
        if page is None:
            return None
        directory = self.config.screenshot_dir or tempfile.gettempdir()
        path = os.path.join(directory, f"crawlsmith-debug-{time.time_ns()}.png")
        try:
            page.screenshot(path=path, timeout=JS_SCREENSHOT_TIMEOUT * 1000)
        except Exception as e:
            logger.debug(f"[JS-ENGINE] debug screenshot failed: {e}")
            return None
        logger.debug(f"[JS-ENGINE] debug screenshot saved: {path}")
        return path

    # -------------------------------
    # RENDER THREADS
    # -------------------------------
    def _render_loop(self, worker_id):
        try:
            with sync_playwright() as p:
                browser = p.chromium.launch(
                    headless=True,
                    args=launch_args(self.config.stealth),
                    ignore_default_args=STEALTH_IGNORE_DEFAULT_ARGS if self.config.stealth else None,
                )
                logger.info(f"[JS-ENGINE] Render Worker-{worker_id} ready.")
                try:
                    while True:
                        job = self._request_queue.get()
                        if job is None:
                            self._request_queue.put(None)  # Pass onto other workers
                            break
                        if job.abandoned.is_set():
                            logger.debug(f"[JS-ENGINE] skipping abandoned job {job.url}")
                            continue
                        job.started.set()
                        job.finish(self._render_page(browser, job))
                finally:
                    browser.close()
        except Exception as e:
            logger.critical(f"[JS-ENGINE] Worker-{worker_id} fatal error: {e}")
            self._drain_with_error(FetchError(f"browser automation failed: {e}"))

    def _drain_with_error(self, error):
        # Fail pending and future jobs so callers do not wait for a dead browser
        while True:
            job = self._request_queue.get()
            if job is None:
                self._request_queue.put(None)
                return
            job.finish(RenderResult(error=FetchError(str(error), url=job.url)))

    def _ensure_running(self):
        if self._worker_threads and all(t.is_alive() for t in self._worker_threads):
            return
        with self._init_lock:
            if self._worker_threads and all(t.is_alive() for t in self._worker_threads):
                return
            self._worker_threads = [t for t in self._worker_threads if t.is_alive()]
            for i in range(len(self._worker_threads), max(1, self.config.render_workers)):
                t = threading.Thread(target=self._render_loop, args=(i,), daemon=True, name=f"RenderWorker-{i}")
                t.start()
                self._worker_threads.append(t)

    # -------------------------------
    # SHUTDOWN
    # -------------------------------
    def close(self):
        if self._closed:
            return
        self._closed = True

        if self.flaresolverr is not None:
            with self._sessions_lock:
                session_ids = list(self._sessions.values())
                self._sessions.clear()
            for session_id in session_ids:
                self.flaresolverr.destroy_session(session_id)
            self.flaresolverr.close()

        if self._worker_threads:
            self._request_queue.put(None)
            for t in self._worker_threads:
                t.join(timeout=10)
        logger.debug("[JS-ENGINE] dynamic fetcher closed")
