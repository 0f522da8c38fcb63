"""
FlareSolverr client: message classification, solve responses and sessions
"""

import unittest
from unittest.mock import MagicMock

import requests

from crawlsmith.errors import (
    AntiBotError,
    CaptchaChallengeError,
    ChallengeTimeoutError,
    FetchError,
    FlareSolverrUnavailableError,
)
from crawlsmith.flaresolverr import FlareSolverr, classify_message, error_for, session_id_for
from crawlsmith.models import ChallengeKind


def _response(body, status=200):
    r = MagicMock()
    r.status_code = status
    r.json.return_value = body
    r.text = str(body)
    return r


class TestClassifyMessage(unittest.TestCase):
    def test_kinds(self):
        cases = {
            "Error: Maximum timeout reached. maxTimeout=60000 (ms)": ChallengeKind.TIMEOUT,
            "Challenge could not be solved": ChallengeKind.UNSOLVABLE,
            "Captcha detected but no automatic solver is configured.": ChallengeKind.CAPTCHA,
            "Cloudflare has blocked this request": ChallengeKind.CLOUDFLARE,
            "Access denied": ChallengeKind.BLOCKED,
            "Error: The browser crashed": ChallengeKind.INTERNAL,
            "something odd happened": ChallengeKind.UNKNOWN,
            "": ChallengeKind.UNKNOWN,
        }
        for message, kind in cases.items():
            with self.subTest(message=message):
                self.assertIs(classify_message(message), kind)

    def test_error_types(self):
        self.assertIsInstance(error_for(ChallengeKind.TIMEOUT, "u", "m"), ChallengeTimeoutError)
        self.assertIsInstance(error_for(ChallengeKind.CAPTCHA, "u", "m"), CaptchaChallengeError)
        self.assertIsInstance(error_for(ChallengeKind.UNSOLVABLE, "u", "m"), CaptchaChallengeError)

        internal = error_for(ChallengeKind.INTERNAL, "u", "m")
        self.assertIs(type(internal), FetchError)

        unknown = error_for(ChallengeKind.UNKNOWN, "u", "weird reply")
        self.assertIs(type(unknown), AntiBotError)
        self.assertIn("weird reply", str(unknown))
        self.assertIs(unknown.challenge, ChallengeKind.UNKNOWN)

    def test_session_id(self):
        self.assertEqual(session_id_for("www.example.com:8443"), "www-example-com:8443")


class TestFlareSolverr(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = FlareSolverr("http://solver:8191/v1", session=self.session, max_timeout_ms=30000)

    def test_solve_ok(self):
        self.session.post.return_value = _response({
            "status": "ok",
            "message": "Challenge solved!",
            "solution": {
                "url": "https://a.example/",
                "status": 200,
                "response": "<html><title>Shop</title></html>",
                "cookies": [{"name": "cf_clearance", "value": "tok", "domain": ".a.example"}],
                "userAgent": "UA",
            },
            "startTimestamp": 1000,
            "endTimestamp": 3500,
        })

        solution = self.client.solve("https://a.example/", "a-example")

        self.assertEqual(solution.status, 200)
        self.assertEqual(solution.user_agent, "UA")
        self.assertEqual(solution.to_cookies()[0].name, "cf_clearance")
        _, kwargs = self.session.post.call_args
        self.assertEqual(kwargs["json"], {
            "cmd": "request.get",
            "url": "https://a.example/",
            "maxTimeout": 30000,
            "session": "a-example",
        })

    def test_error_status_body_is_parsed(self):
        # HTTP 500 still carries the JSON error body
        self.session.post.return_value = _response(
            {"status": "error", "message": "Error solving the challenge. Timeout after 60.0 seconds."},
            status=500,
        )
        with self.assertRaises(ChallengeTimeoutError):
            self.client.solve("https://a.example/")

    def test_missing_solution(self):
        self.session.post.return_value = _response({"status": "ok", "message": ""})
        with self.assertRaises(AntiBotError) as cm:
            self.client.solve("https://a.example/")
        self.assertIs(cm.exception.challenge, ChallengeKind.UNKNOWN)

    def test_unreachable(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(FlareSolverrUnavailableError):
            self.client.solve("https://a.example/")

    def test_invalid_json(self):
        r = _response(None, status=502)
        r.json.side_effect = ValueError("no json")
        r.text = "<html>Bad Gateway</html>"
        self.session.post.return_value = r
        with self.assertRaises(FlareSolverrUnavailableError):
            self.client.solve("https://a.example/")

    def test_create_session_failure(self):
        self.session.post.return_value = _response({"status": "error", "message": "session already exists"})
        with self.assertRaises(FetchError):
            self.client.create_session("a-example")

    def test_destroy_session_never_raises(self):
        self.session.post.side_effect = requests.exceptions.Timeout("slow")
        self.client.destroy_session("a-example")

        self.session.post.side_effect = None
        self.session.post.return_value = _response({"status": "error", "message": "not found"})
        self.client.destroy_session("a-example")
        self.assertEqual(self.session.post.call_count, 2)


if __name__ == "__main__":
    unittest.main()
