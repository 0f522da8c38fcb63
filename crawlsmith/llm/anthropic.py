"""
Anthropic Messages API.
Structured output is requested through a single forced tool whose input schema is the target schema;
the tool input becomes the completion content.
"""

import json

from crawlsmith.errors import CompletionError
from crawlsmith.llm.base import HTTPCompletionService, CompletionResponse, Role
from crawlsmith.models import Usage

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
EXTRACT_TOOL = "extract_data"


class AnthropicService(HTTPCompletionService):

    def __init__(self, config, session=None):
        super().__init__(config, session=session)
        self.base_url = (config.base_url or ANTHROPIC_BASE_URL).rstrip("/")
        self.model = config.model or "claude-opus-4-5-20251101"

    @property
    def name(self):
        return "anthropic"

    def complete(self, request):
        system = ""
        messages = []
        for m in request.messages:
            if m.role is Role.SYSTEM:
                system = m.content
            else:
                messages.append({"role": m.role.value, "content": m.content})

        payload = {
            "model": self.model,
            "max_tokens": request.max_tokens or self.default_max_tokens,
            "temperature": request.temperature,
            "messages": messages,
        }
        if system:
            payload["system"] = system

        if request.json_schema is not None:
            payload["tools"] = [{
                "name": EXTRACT_TOOL,
                "description": "Extract structured data from the content",
                "input_schema": {
                    "type": "object",
                    "properties": request.json_schema.get("properties", {}),
                    "required": [r for r in request.json_schema.get("required", []) if isinstance(r, str)],
                    **({"$defs": request.json_schema["$defs"]} if "$defs" in request.json_schema else {}),
                },
            }]
            payload["tool_choice"] = {"type": "tool", "name": EXTRACT_TOOL}

        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

        body = self._post_json(f"{self.base_url}/v1/messages", payload, headers)

        if body.get("type") == "error":
            err = body.get("error") or {}
            message = err.get("message", "")
            raise CompletionError(
                f"anthropic API error: {err.get('type', 'error')}: {message}",
                retryable=err.get("type") == "rate_limit_error" or None,
            )

        content = ""
        for block in body.get("content") or []:
            if block.get("type") == "text":
                content = block.get("text", "")
            elif block.get("type") == "tool_use":
                content = json.dumps(block.get("input") or {})

        usage = body.get("usage") or {}
        return CompletionResponse(
            content=content,
            usage=Usage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            ),
            finish_reason=body.get("stop_reason") or "",
            model=body.get("model") or self.model,
        )
