"""
FILE DESCRIPTION: Provider-neutral completion types and the HTTP plumbing shared by every backend.
KEY FUNCTIONS/CLASSES: CompletionService, HTTPCompletionService, CompletionRequest, CompletionResponse, ProviderConfig
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

from crawlsmith.core import LLM_TIMEOUT
from crawlsmith.errors import CompletionError
from crawlsmith.models import Usage

logger = logging.getLogger(__name__)


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: Role
    content: str


@dataclass
class CompletionRequest:
    messages: List[Message]
    max_tokens: int = 0
    temperature: float = 0.0
    json_schema: Optional[Dict[str, Any]] = None


@dataclass
class CompletionResponse:
    content: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = ""
    model: str = ""


@dataclass
class ProviderConfig:
    api_key: str = ""
    base_url: str = ""
    model: str = ""
    timeout: float = LLM_TIMEOUT


class CompletionService(ABC):
    """Contract for language-model backends."""

    @abstractmethod
    def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Raises CompletionError on failure."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    def available(self) -> bool:
        return True

    def close(self):
        pass


class HTTPCompletionService(CompletionService):
    """
    FLOW: POSTs a JSON payload -> Maps transport failures, non-2xx statuses and bad JSON onto
    CompletionError -> Tags HTTP 429 and rate-limit messages as retryable.
    """
    default_max_tokens = 4096
    requires_api_key = True

    def __init__(self, config: ProviderConfig, session=None):
        self.config = config
        self.session = session or requests.Session()

    def _post_json(self, url, payload, headers=None):
        try:
            r = self.session.post(url, json=payload, headers=headers or {}, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise CompletionError(f"{self.name} request failed: {e}") from e

        if r.status_code == 429:
            logger.warning(f"[LLM] {self.name} rate limited (HTTP 429)")
        if not 200 <= r.status_code < 300:
            raise CompletionError(
                f"{self.name} API error: HTTP {r.status_code}: {r.text[:500]}",
                status_code=r.status_code,
            )

        try:
            return r.json()
        except ValueError as e:
            raise CompletionError(f"{self.name} returned invalid JSON: {e}", status_code=r.status_code) from e

    def available(self):
        return bool(self.config.api_key) or not self.requires_api_key

    def close(self):
        self.session.close()
