"""
FILE DESCRIPTION: Client for the FlareSolverr challenge-solving proxy.
KEY FUNCTIONS/CLASSES: FlareSolverr, FlareSolverrSolution, classify_message, session_id_for
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

import requests

from crawlsmith.core import (
    FLARESOLVERR_MAX_TIMEOUT_MS,
    FLARESOLVERR_HTTP_TIMEOUT,
    FLARESOLVERR_CLOSE_TIMEOUT,
)
from crawlsmith.errors import (
    AntiBotError,
    CaptchaChallengeError,
    ChallengeTimeoutError,
    FetchError,
    FlareSolverrUnavailableError,
)
from crawlsmith.models import ChallengeKind, Cookie

logger = logging.getLogger(__name__)


@dataclass
class FlareSolverrSolution:
    url: str = ""
    status: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    response: str = ""
    cookies: List[Dict[str, Any]] = field(default_factory=list)
    user_agent: str = ""

    @classmethod
    def from_dict(cls, data):
        return cls(
            url=data.get("url") or "",
            status=int(data.get("status") or 0),
            headers=data.get("headers") or {},
            response=data.get("response") or "",
            cookies=data.get("cookies") or [],
            user_agent=data.get("userAgent") or "",
        )

    def to_cookies(self):
        return [
            Cookie(name=c.get("name", ""), value=c.get("value", ""), domain=c.get("domain", ""))
            for c in self.cookies
        ]


def session_id_for(host):
    return host.replace(".", "-")


# Checked in order; first hit wins.
_MESSAGE_RULES = [
    (ChallengeKind.TIMEOUT, ("timeout", "timed out")),
    (ChallengeKind.UNSOLVABLE, ("could not be solved", "unable to solve", "failed to solve")),
    (ChallengeKind.CAPTCHA, ("captcha", "turnstile", "hcaptcha", "recaptcha")),
    (ChallengeKind.CLOUDFLARE, ("cloudflare", "cf-", "challenge")),
    (ChallengeKind.BLOCKED, ("blocked", "denied", "forbidden", "access", "403")),
    (ChallengeKind.INTERNAL, ("browser", "crashed", "unable to process")),
]


def classify_message(message):
    """Maps a FlareSolverr error message onto a ChallengeKind."""
    msg = (message or "").lower()
    for kind, needles in _MESSAGE_RULES:
        if any(n in msg for n in needles):
            return kind
    return ChallengeKind.UNKNOWN


def error_for(kind, url, message):
    if kind is ChallengeKind.TIMEOUT:
        return ChallengeTimeoutError(f"challenge timeout: {message}", url=url, challenge=kind)
    if kind in (ChallengeKind.UNSOLVABLE, ChallengeKind.CAPTCHA, ChallengeKind.CLOUDFLARE):
        return CaptchaChallengeError(f"captcha challenge: {message}", url=url, challenge=kind)
    if kind is ChallengeKind.INTERNAL:
        return FetchError(f"FlareSolverr internal error: {message}", url=url)
    return AntiBotError(f"blocked by anti-bot protection: {message}", url=url, challenge=kind)


class FlareSolverr:
    """
    FLOW: POSTs a command to the proxy -> Parses the JSON body even on HTTP errors ->
    Classifies non-"ok" messages into typed fetch errors -> Returns the solution.
    """

    def __init__(self, base_url, session=None, max_timeout_ms=FLARESOLVERR_MAX_TIMEOUT_MS,
                 http_timeout=FLARESOLVERR_HTTP_TIMEOUT):
        self.base_url = base_url
        self.session = session or requests.Session()
        self.max_timeout_ms = max_timeout_ms
        self.http_timeout = http_timeout

    def _post(self, payload, timeout):
        try:
            r = self.session.post(self.base_url, json=payload, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise FlareSolverrUnavailableError(f"FlareSolverr service unavailable: {e}") from e

        # Errors come back as HTTP 500 with a JSON body
        try:
            body = r.json()
        except ValueError as e:
            logger.warning(f"[FLARESOLVERR] invalid response (HTTP {r.status_code}): {r.text[:200]}")
            raise FlareSolverrUnavailableError(f"failed to parse FlareSolverr response: {e}") from e
        if not isinstance(body, dict):
            raise FlareSolverrUnavailableError("failed to parse FlareSolverr response: not an object")
        return body

    def solve(self, url, session_id=""):
        payload = {"cmd": "request.get", "url": url, "maxTimeout": self.max_timeout_ms}
        if session_id:
            payload["session"] = session_id

        body = self._post(payload, self.http_timeout)

        if body.get("status") != "ok":
            message = body.get("message", "")
            kind = classify_message(message)
            logger.warning(f"[FLARESOLVERR] {url} failed ({kind.value}): {message}")
            raise error_for(kind, url, message)

        raw_solution = body.get("solution")
        if not raw_solution:
            logger.warning(f"[FLARESOLVERR] no solution returned for {url}")
            raise AntiBotError("blocked by anti-bot protection: no solution returned", url=url,
                               challenge=ChallengeKind.UNKNOWN)

        solution = FlareSolverrSolution.from_dict(raw_solution)
        duration = (float(body.get("endTimestamp") or 0) - float(body.get("startTimestamp") or 0)) / 1000
        logger.debug(
            f"[FLARESOLVERR] solved {url} session={session_id} status={solution.status} "
            f"cookies={len(solution.cookies)} size={len(solution.response)} in {duration:.2f}s"
        )
        return solution

    def create_session(self, session_id):
        body = self._post({"cmd": "sessions.create", "session": session_id}, self.http_timeout)
        if body.get("status") != "ok":
            raise FetchError(f"session create failed: {body.get('message', '')}")
        logger.debug(f"[FLARESOLVERR] session created: {session_id}")

    def destroy_session(self, session_id, timeout=FLARESOLVERR_CLOSE_TIMEOUT):
        """Best effort; never raises."""
        try:
            body = self._post({"cmd": "sessions.destroy", "session": session_id}, timeout)
        except FetchError as e:
            logger.debug(f"[FLARESOLVERR] session destroy failed for {session_id}: {e}")
            return
        if body.get("status") == "ok":
            logger.debug(f"[FLARESOLVERR] session destroyed: {session_id}")
        else:
            logger.debug(f"[FLARESOLVERR] session destroy for {session_id} returned: {body.get('message', '')}")

    def close(self):
        self.session.close()
