"""
Local Ollama server over /api/chat. The JSON schema goes in the "format" field.
"""

import os

import requests

from crawlsmith.llm.base import HTTPCompletionService, CompletionResponse
from crawlsmith.models import Usage

OLLAMA_BASE_URL = "http://localhost:11434"
OLLAMA_PROBE_TIMEOUT = 2


class OllamaService(HTTPCompletionService):
    requires_api_key = False

    def __init__(self, config, session=None):
        super().__init__(config, session=session)
        self.base_url = (config.base_url or os.getenv("OLLAMA_HOST") or OLLAMA_BASE_URL).rstrip("/")
        self.model = config.model or "llama3.2"

    @property
    def name(self):
        return "ollama"

    def available(self):
        """True when the local server answers its model listing."""
        try:
            r = self.session.get(f"{self.base_url}/api/tags", timeout=OLLAMA_PROBE_TIMEOUT)
        except requests.exceptions.RequestException:
            return False
        return r.status_code == 200

    def complete(self, request):
        options = {}
        if request.temperature:
            options["temperature"] = request.temperature
        if request.max_tokens:
            options["num_predict"] = request.max_tokens

        payload = {
            "model": self.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
            "stream": False,
            "options": options,
        }
        if request.json_schema is not None:
            payload["format"] = request.json_schema

        body = self._post_json(f"{self.base_url}/api/chat", payload, {"Content-Type": "application/json"})

        return CompletionResponse(
            content=(body.get("message") or {}).get("content") or "",
            usage=Usage(
                input_tokens=int(body.get("prompt_eval_count") or 0),
                output_tokens=int(body.get("eval_count") or 0),
            ),
            finish_reason="stop",
            model=body.get("model") or self.model,
        )
