import sys
import time
import signal
import logging
import argparse
import threading

from crawlsmith.core import (
    CONCURRENCY,
    CRAWL_DELAY,
    MAX_CONTENT_SIZE,
    MAX_DEPTH,
    MAX_RETRIES,
    MIN_CONTENT_SIZE,
    REQUEST_TIMEOUT,
    FLARESOLVERR_URL,
    setup_logger,
)
from crawlsmith.cleaner import new_cleaner
from crawlsmith.engine import Crawler, CrawlConfig
from crawlsmith.extractor import Extractor, ExtractorConfig, FallbackExtractor
from crawlsmith.fetcher import FetcherConfig, new_fetcher
from crawlsmith.llm import ProviderConfig, detect_provider, env_api_key, new_provider
from crawlsmith.models import FetchMode, FetchOptions, Usage
from crawlsmith.output import FORMATS, new_writer
from crawlsmith.schema import schema_from_file

logger = logging.getLogger("crawlsmith.cli")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="crawlsmith",
        description="Crawl websites and extract schema-validated records with a language model.",
    )
    parser.add_argument("seeds", nargs="+", help="Seed URLs (depth 0)")
    parser.add_argument("-s", "--schema", required=True, help="Schema definition file (.yaml, .yml or .json)")

    fetch = parser.add_argument_group("fetching")
    fetch.add_argument("--mode", choices=[m.value for m in FetchMode], default=FetchMode.AUTO.value,
                       help="Fetch strategy")
    fetch.add_argument("--stealth", action="store_true", help="Browser anti-detection evasions")
    fetch.add_argument("--googlebot", action="store_true", help="Present as Googlebot (browser fetches)")
    fetch.add_argument("--flaresolverr", default=FLARESOLVERR_URL, metavar="URL",
                       help="FlareSolverr endpoint for challenge solving")
    fetch.add_argument("--wait-selector", default="", help="CSS selector to wait for (browser fetches)")
    fetch.add_argument("--wait", type=float, default=0, metavar="SECONDS", help="Extra wait after page load")
    fetch.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT, metavar="SECONDS")

    crawl = parser.add_argument_group("crawling")
    crawl.add_argument("--follow", default="", metavar="CSS", help="CSS selector for links to follow")
    crawl.add_argument("--follow-pattern", default="", metavar="REGEX", help="Only follow URLs matching this regex")
    crawl.add_argument("--max-depth", type=int, default=MAX_DEPTH)
    crawl.add_argument("--next", default="", metavar="CSS", help="CSS selector for the next-page link")
    crawl.add_argument("--max-pages", type=int, default=0, help="Max depth-0 pages (0 = unlimited)")
    crawl.add_argument("--max-urls", type=int, default=0, help="Max URLs processed (0 = unlimited)")
    crawl.add_argument("--delay", type=float, default=CRAWL_DELAY, metavar="SECONDS")
    crawl.add_argument("--concurrency", type=int, default=CONCURRENCY)
    crawl.add_argument("--extract-seeds", action="store_true", help="Also extract from seed pages when following links")
    crawl.add_argument("--cross-domain", action="store_true", help="Follow links to other hosts")

    extract = parser.add_argument_group("extraction")
    extract.add_argument("--provider", default="",
                         help="anthropic, openai, openrouter or ollama; a comma-separated list fails over "
                              "in order (default: detect)")
    extract.add_argument("--model", default="")
    extract.add_argument("--api-key", default="")
    extract.add_argument("--base-url", default="")
    extract.add_argument("--cleaner", default="markdown", help="noop, text, markdown, or a chain like text,markdown")
    extract.add_argument("--min-content", type=int, default=MIN_CONTENT_SIZE, metavar="BYTES")
    extract.add_argument("--max-content", type=int, default=MAX_CONTENT_SIZE, metavar="CHARS")
    extract.add_argument("--max-retries", type=int, default=MAX_RETRIES)

    out = parser.add_argument_group("output")
    out.add_argument("-o", "--output", default="-", help="Output file ('-' = stdout)")
    out.add_argument("-f", "--format", choices=sorted(FORMATS), default="json")
    out.add_argument("--log-file", default=None)
    out.add_argument("-v", "--verbose", action="store_true")
    return parser


def _provider_names(args):
    names = []
    for name in args.provider.split(","):
        name = name.strip().lower()
        if name and name not in names:
            names.append(name)
    return names


def _resolve_providers(args):
    """
    FLOW: Explicit comma-separated --provider list (first is preferred) or the detected provider ->
    --api-key, --base-url and --model apply to the preferred provider only -> Others read their env key.
    """
    names = _provider_names(args)
    detected_key = ""
    if not names:
        detected_name, detected_key = detect_provider()
        names = [detected_name]

    providers = []
    for i, name in enumerate(names):
        preferred = i == 0
        api_key = (args.api_key if preferred else "") or detected_key or env_api_key(name)
        config = ProviderConfig(
            api_key=api_key,
            base_url=args.base_url if preferred else "",
            model=args.model if preferred else "",
        )
        providers.append(new_provider(name, config))
    return providers


def _build_extractor(providers, config):
    extractors = [Extractor(p, config) for p in providers]
    if len(extractors) == 1:
        return extractors[0]
    return FallbackExtractor(*extractors)


def _route_console_to_stderr():
    for handler in logging.getLogger("crawlsmith").handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setStream(sys.stderr)


def main(argv=None):
    args = build_parser().parse_args(argv)

    setup_logger(log_file=args.log_file, level=logging.DEBUG if args.verbose else logging.INFO)
    logging.getLogger("crawlsmith").setLevel(logging.DEBUG if args.verbose else logging.INFO)
    if args.output == "-":
        _route_console_to_stderr()

    try:
        schema = schema_from_file(args.schema)
        providers = _resolve_providers(args)
        cleaner = new_cleaner(args.cleaner)
    except (OSError, ValueError) as e:
        logger.error(f"[CLI] {e}")
        return 1

    extractor = _build_extractor(providers, ExtractorConfig(
        max_retries=args.max_retries,
        max_content_size=args.max_content,
    ))
    if not extractor.available():
        logger.error("[CLI] no extractors available - set an API key or run Ollama locally")
        for provider in providers:
            provider.close()
        return 1

    fetcher = new_fetcher(args.mode, FetcherConfig(
        timeout=args.timeout,
        stealth=args.stealth,
        googlebot=args.googlebot,
        flaresolverr_url=args.flaresolverr,
    ))
    crawler = Crawler(fetcher, cleaner, extractor, CrawlConfig(
        follow_selector=args.follow,
        follow_pattern=args.follow_pattern,
        same_domain_only=not args.cross_domain,
        max_depth=args.max_depth,
        next_selector=args.next,
        max_pages=args.max_pages,
        max_urls=args.max_urls,
        delay=args.delay,
        concurrency=args.concurrency,
        extract_from_seeds=args.extract_seeds,
        min_content_size=args.min_content,
        fetch_options=FetchOptions(
            timeout=args.timeout,
            wait_for_selector=args.wait_selector,
            wait_duration=args.wait,
        ),
        on_urls_queued=lambda total: logger.debug(f"[CLI] {total} URLs queued so far"),
    ))

    cancel = threading.Event()

    def _on_sigint(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("[CLI] interrupt received; finishing in-flight pages (Ctrl-C again to abort)")
        cancel.set()

    previous_handler = signal.signal(signal.SIGINT, _on_sigint)

    stream = open(args.output, "w", encoding="utf-8") if args.output != "-" else sys.stdout
    start_time = time.time()
    total = failed = 0
    usage = Usage()
    fatal = False
    logger.info(f"[CLI] extractor={extractor.name} mode={args.mode} cleaner={cleaner.name} seeds={len(args.seeds)}")

    try:
        writer = new_writer(args.format, stream)
        with crawler.crawl(args.seeds, schema, cancel) as results:
            for result in results:
                total += 1
                usage.add(result.usage)
                if result.error is not None:
                    failed += 1
                    if not result.url:
                        fatal = True
                    logger.warning(f"[CLI] {result.url or '(crawl)'}: {result.error}")
                writer.write(result)
        writer.close()
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        fetcher.close()
        for provider in providers:
            provider.close()
        if stream is not sys.stdout:
            stream.close()

    duration = time.time() - start_time
    print("\n==============================", file=sys.stderr)
    print("CRAWL SUMMARY", file=sys.stderr)
    print("==============================", file=sys.stderr)
    print(f"Results:        {total}", file=sys.stderr)
    print(f"Failed:         {failed}", file=sys.stderr)
    print(f"Input tokens:   {usage.input_tokens}", file=sys.stderr)
    print(f"Output tokens:  {usage.output_tokens}", file=sys.stderr)
    print(f"Duration:       {duration:.2f} seconds", file=sys.stderr)
    print("==============================\n", file=sys.stderr)

    if fatal or (total > 0 and failed == total):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
