from crawlsmith.llm.base import (
    CompletionService,
    HTTPCompletionService,
    CompletionRequest,
    CompletionResponse,
    Message,
    ProviderConfig,
    Role,
)
from crawlsmith.llm.registry import (
    DEFAULT_MODELS,
    default_factories,
    default_model,
    detect_provider,
    env_api_key,
    new_provider,
)
