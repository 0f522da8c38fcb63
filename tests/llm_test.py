"""
Completion backends against mocked HTTP sessions, plus provider construction
"""

import json
import os
import unittest
from unittest.mock import MagicMock, patch

import requests

from crawlsmith.errors import CompletionError
from crawlsmith.llm import (
    CompletionRequest,
    Message,
    ProviderConfig,
    Role,
    default_model,
    detect_provider,
    env_api_key,
    new_provider,
)
from crawlsmith.llm.anthropic import AnthropicService
from crawlsmith.llm.ollama import OllamaService
from crawlsmith.llm.openai import OPENROUTER_BASE_URL, OpenAIService, new_openrouter_service

SCHEMA = {
    "type": "object",
    "properties": {"title": {"type": "string"}},
    "required": ["title"],
}


def _request():
    return CompletionRequest(
        messages=[Message(Role.SYSTEM, "be precise"), Message(Role.USER, "extract this")],
        max_tokens=512,
        temperature=0.1,
        json_schema=SCHEMA,
    )


def _response(body, status=200):
    r = MagicMock()
    r.status_code = status
    r.json.return_value = body
    r.text = json.dumps(body)
    return r


class TestOpenAIService(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.service = OpenAIService(ProviderConfig(api_key="sk-test", model="gpt-4o-mini"), session=self.session)

    def test_complete(self):
        self.session.post.return_value = _response({
            "model": "gpt-4o-mini",
            "choices": [{"message": {"content": '{"title": "x"}'}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 30, "completion_tokens": 7},
        })

        response = self.service.complete(_request())

        self.assertEqual(response.content, '{"title": "x"}')
        self.assertEqual((response.usage.input_tokens, response.usage.output_tokens), (30, 7))
        self.assertEqual(response.finish_reason, "stop")

        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://api.openai.com/v1/chat/completions")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk-test")
        payload = kwargs["json"]
        self.assertEqual(payload["messages"][0], {"role": "system", "content": "be precise"})
        self.assertEqual(payload["response_format"]["json_schema"]["schema"], SCHEMA)
        self.assertEqual(payload["max_tokens"], 512)

    def test_rate_limited_status_is_retryable(self):
        self.session.post.return_value = _response({"error": {"message": "Rate limit reached"}}, status=429)
        with self.assertRaises(CompletionError) as cm:
            self.service.complete(_request())
        self.assertTrue(cm.exception.retryable)
        self.assertEqual(cm.exception.status_code, 429)

    def test_server_error_not_retryable(self):
        self.session.post.return_value = _response({"error": {"message": "internal"}}, status=500)
        with self.assertRaises(CompletionError) as cm:
            self.service.complete(_request())
        self.assertFalse(cm.exception.retryable)

    def test_error_body(self):
        self.session.post.return_value = _response({"error": {"message": "model overloaded", "code": 503}})
        with self.assertRaises(CompletionError) as cm:
            self.service.complete(_request())
        self.assertIn("model overloaded", str(cm.exception))

    def test_no_choices(self):
        self.session.post.return_value = _response({"choices": []})
        with self.assertRaises(CompletionError):
            self.service.complete(_request())

    def test_transport_error(self):
        self.session.post.side_effect = requests.exceptions.ConnectTimeout("timed out")
        with self.assertRaises(CompletionError):
            self.service.complete(_request())

    def test_openrouter(self):
        service = new_openrouter_service(ProviderConfig(api_key="or-key"), session=self.session)
        self.assertEqual(service.name, "openrouter")
        self.assertEqual(service.base_url, OPENROUTER_BASE_URL)


class TestAnthropicService(unittest.TestCase):
    def setUp(self):
        self.session = MagicMock()
        self.service = AnthropicService(ProviderConfig(api_key="ak-test"), session=self.session)

    def test_forced_tool_output(self):
        self.session.post.return_value = _response({
            "type": "message",
            "model": "claude-test",
            "content": [{"type": "tool_use", "name": "extract_data", "input": {"title": "x"}}],
            "stop_reason": "tool_use",
            "usage": {"input_tokens": 40, "output_tokens": 9},
        })

        response = self.service.complete(_request())

        self.assertEqual(json.loads(response.content), {"title": "x"})
        self.assertEqual((response.usage.input_tokens, response.usage.output_tokens), (40, 9))

        args, kwargs = self.session.post.call_args
        self.assertTrue(args[0].endswith("/v1/messages"))
        self.assertEqual(kwargs["headers"]["x-api-key"], "ak-test")
        payload = kwargs["json"]
        self.assertEqual(payload["system"], "be precise")
        self.assertEqual(payload["messages"], [{"role": "user", "content": "extract this"}])
        self.assertEqual(payload["tool_choice"], {"type": "tool", "name": "extract_data"})
        self.assertEqual(payload["tools"][0]["input_schema"]["required"], ["title"])

    def test_rate_limit_error_body(self):
        self.session.post.return_value = _response(
            {"type": "error", "error": {"type": "rate_limit_error", "message": "Too many requests"}}
        )
        with self.assertRaises(CompletionError) as cm:
            self.service.complete(_request())
        self.assertTrue(cm.exception.retryable)

    def test_invalid_request_error_body(self):
        self.session.post.return_value = _response(
            {"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}}
        )
        with self.assertRaises(CompletionError) as cm:
            self.service.complete(_request())
        self.assertFalse(cm.exception.retryable)


class TestOllamaService(unittest.TestCase):
    def test_complete(self):
        session = MagicMock()
        session.post.return_value = _response({
            "model": "llama3.2",
            "message": {"role": "assistant", "content": '{"title": "x"}'},
            "prompt_eval_count": 12,
            "eval_count": 4,
        })
        service = OllamaService(ProviderConfig(base_url="http://gpu-box:11434/"), session=session)

        response = service.complete(_request())

        self.assertEqual(response.content, '{"title": "x"}')
        self.assertEqual(response.usage.input_tokens, 12)
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "http://gpu-box:11434/api/chat")
        self.assertEqual(kwargs["json"]["format"], SCHEMA)
        self.assertFalse(kwargs["json"]["stream"])
        self.assertEqual(kwargs["json"]["options"], {"temperature": 0.1, "num_predict": 512})

    def test_available(self):
        session = MagicMock()
        session.get.return_value = _response({"models": []})
        service = OllamaService(ProviderConfig(base_url="http://gpu-box:11434"), session=session)

        self.assertTrue(service.available())
        self.assertEqual(session.get.call_args.args[0], "http://gpu-box:11434/api/tags")

        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        self.assertFalse(service.available())

    def test_host_from_environment(self):
        with patch.dict(os.environ, {"OLLAMA_HOST": "http://ollama.internal:11434"}):
            service = OllamaService(ProviderConfig())
        self.assertEqual(service.base_url, "http://ollama.internal:11434")


class TestRegistry(unittest.TestCase):
    def test_new_provider_fills_default_model(self):
        provider = new_provider("openai", ProviderConfig(api_key="k"))
        self.assertIsInstance(provider, OpenAIService)
        self.assertEqual(provider.model, default_model("openai"))

    def test_explicit_model_kept(self):
        provider = new_provider("anthropic", ProviderConfig(model="claude-custom"))
        self.assertEqual(provider.model, "claude-custom")

    def test_unknown_provider(self):
        with self.assertRaises(ValueError):
            new_provider("oracle")

    def test_injected_factories(self):
        fake = MagicMock()
        provider = new_provider("fake", ProviderConfig(model="m"), factories={"fake": lambda cfg: fake})
        self.assertIs(provider, fake)

    def test_key_required_for_hosted_providers(self):
        self.assertTrue(new_provider("anthropic", ProviderConfig(api_key="ak")).available())
        self.assertFalse(new_provider("openai", ProviderConfig()).available())

    def test_env_api_key(self):
        with patch.dict(os.environ, {"OPENROUTER_API_KEY": "or"}, clear=True):
            self.assertEqual(env_api_key("openrouter"), "or")
            self.assertEqual(env_api_key("anthropic"), "")
            self.assertEqual(env_api_key("ollama"), "")

    def test_detect_provider_order(self):
        env = {"OPENAI_API_KEY": "sk", "ANTHROPIC_API_KEY": "ak", "OPENROUTER_API_KEY": ""}
        with patch.dict(os.environ, env, clear=True):
            self.assertEqual(detect_provider(), ("anthropic", "ak"))
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(detect_provider(), ("ollama", ""))


if __name__ == "__main__":
    unittest.main()
