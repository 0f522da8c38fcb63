"""
FILE DESCRIPTION: Foundational module for global configuration and logging.
KEY FUNCTIONS/CLASSES: setup_logger, CompanyFormatter, configuration constants
"""

import logging
import sys
import os
from datetime import datetime
from pathlib import Path
from dotenv import load_dotenv

# === CONFIGURATION SECTION ===

# Load .env from the working directory before any constant is evaluated
load_dotenv(Path.cwd() / '.env')


def _env_list(name, default):
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# Network timeout for HTTP requests (seconds)
REQUEST_TIMEOUT = float(os.getenv("CRAWLSMITH_REQUEST_TIMEOUT", 30))

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
GOOGLEBOT_MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 6.0.1; Nexus 5X Build/MMB29P) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36 "
    "(compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
)

# Crawl scheduling
CRAWL_DELAY = float(os.getenv("CRAWLSMITH_DELAY", 0.2))  # Seconds slept by each worker before its fetch
CONCURRENCY = int(os.getenv("CRAWLSMITH_CONCURRENCY", 3))
MAX_DEPTH = int(os.getenv("CRAWLSMITH_MAX_DEPTH", 1))
RESULT_BUFFER_SIZE = int(os.getenv("CRAWLSMITH_RESULT_BUFFER", 100))

# Content gates (bytes of cleaned text)
MIN_CONTENT_SIZE = int(os.getenv("CRAWLSMITH_MIN_CONTENT_SIZE", 200))
MAX_CONTENT_SIZE = int(os.getenv("CRAWLSMITH_MAX_CONTENT_SIZE", 0))  # 0 = unlimited

# Extraction
MAX_RETRIES = int(os.getenv("CRAWLSMITH_MAX_RETRIES", 3))
TEMPERATURE = float(os.getenv("CRAWLSMITH_TEMPERATURE", 0.1))
MAX_TOKENS = int(os.getenv("CRAWLSMITH_MAX_TOKENS", 8192))
LLM_TIMEOUT = float(os.getenv("CRAWLSMITH_LLM_TIMEOUT", 120))

# Challenge-solving proxy (FlareSolverr)
FLARESOLVERR_URL = os.getenv("FLARESOLVERR_URL", "")
FLARESOLVERR_MAX_TIMEOUT_MS = int(os.getenv("FLARESOLVERR_MAX_TIMEOUT_MS", 60000))
FLARESOLVERR_HTTP_TIMEOUT = float(os.getenv("FLARESOLVERR_HTTP_TIMEOUT", 120))
FLARESOLVERR_CLOSE_TIMEOUT = 10

# Playwright / JS Rendering (seconds)
JS_SCREENSHOT_TIMEOUT = 5
JS_RENDER_WORKERS = int(os.getenv("CRAWLSMITH_RENDER_WORKERS", 2))

# Auto mode JS-need heuristic. Approximate by nature; tune per site.
JS_MIN_TEXT_LENGTH = int(os.getenv("CRAWLSMITH_JS_MIN_TEXT", 100))
JS_SPA_MARKERS = _env_list("CRAWLSMITH_JS_SPA_MARKERS", [
    '<div id="root"></div>',     # React
    '<div id="app"></div>',      # Vue
    '<app-root></app-root>',     # Angular
    '<div id="__next"></div>',   # Next.js
    '<div id="__nuxt"></div>',   # Nuxt.js
    '<div data-reactroot',
    'ng-app',
    'v-cloak',
])
JS_LOADING_INDICATORS = _env_list("CRAWLSMITH_JS_LOADING_INDICATORS", [
    "loading",
    "please wait",
    "javascript required",
    "enable javascript",
])
JS_NOSCRIPT_INDICATORS = _env_list("CRAWLSMITH_JS_NOSCRIPT_INDICATORS", [
    "javascript",
    "enable",
    "required",
    "browser",
])


# === LOGGING SECTION ===

class CompanyFormatter(logging.Formatter):
    """
    FLOW: Receives a log record -> Extracts timestamp -> Formats according to the house standard
    (e.g., [ Tue Jan 06 05:32:41 AM UTC 2026 ]) -> Prepends level and context -> Returns final string.
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p UTC %Y")
        context = getattr(record, 'context', record.name)
        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logger(name="crawlsmith", log_file=None, level=logging.INFO):
    """
    FLOW: Initializes/Retrieves logger -> Checks for existing handlers to prevent duplicates ->
    Sets propagation for child loggers -> Attaches Console and optional File handlers with CompanyFormatter.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if name != "crawlsmith":
        logger.propagate = True
        setup_logger("crawlsmith", log_file=log_file, level=level)
        return logger

    if logger.handlers:
        # Already configured; honour a late log file request
        if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(CompanyFormatter())
            logger.addHandler(file_handler)
        return logger

    formatter = CompanyFormatter()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Global logger instance
logger = setup_logger()
