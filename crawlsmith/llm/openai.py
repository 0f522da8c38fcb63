"""
OpenAI-compatible chat completions. Also serves OpenRouter, which speaks the same API.
"""

from crawlsmith.errors import CompletionError
from crawlsmith.llm.base import HTTPCompletionService, CompletionResponse
from crawlsmith.models import Usage

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenAIService(HTTPCompletionService):

    def __init__(self, config, session=None, provider_name="openai"):
        super().__init__(config, session=session)
        self.provider_name = provider_name
        self.base_url = (config.base_url or OPENAI_BASE_URL).rstrip("/")
        self.model = config.model or "gpt-4o"

    @property
    def name(self):
        return self.provider_name

    def complete(self, request):
        payload = {
            "model": self.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
            "max_tokens": request.max_tokens or self.default_max_tokens,
            "temperature": request.temperature,
        }
        if request.json_schema is not None:
            # strict mode breaks many non-OpenAI models behind OpenRouter
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "extraction_result",
                    "schema": request.json_schema,
                    "strict": False,
                },
            }

        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        body = self._post_json(f"{self.base_url}/chat/completions", payload, headers)

        if body.get("error"):
            err = body["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            code = err.get("code") if isinstance(err, dict) else None
            raise CompletionError(f"{self.name} API error: {message}",
                                  status_code=code if isinstance(code, int) else None)

        choices = body.get("choices") or []
        if not choices:
            raise CompletionError("no choices in response")

        choice = choices[0]
        usage = body.get("usage") or {}
        return CompletionResponse(
            content=(choice.get("message") or {}).get("content") or "",
            usage=Usage(
                input_tokens=int(usage.get("prompt_tokens") or 0),
                output_tokens=int(usage.get("completion_tokens") or 0),
            ),
            finish_reason=choice.get("finish_reason") or "",
            model=body.get("model") or self.model,
        )


def new_openrouter_service(config, session=None):
    if not config.base_url:
        config.base_url = OPENROUTER_BASE_URL
    return OpenAIService(config, session=session, provider_name="openrouter")
