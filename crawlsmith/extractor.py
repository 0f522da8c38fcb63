"""
FILE DESCRIPTION: LLM extraction engine with validation-driven self-correction.
KEY FUNCTIONS/CLASSES: Extractor, FallbackExtractor, ExtractorConfig, strip_code_fences
"""

import logging
import re
import time
from dataclasses import dataclass

from crawlsmith.core import MAX_RETRIES, TEMPERATURE, MAX_TOKENS, MAX_CONTENT_SIZE
from crawlsmith.errors import (
    CompletionError,
    ExtractionError,
    ResponseParseError,
    ValidationFailedError,
)
from crawlsmith.llm.base import CompletionRequest, Message, Role
from crawlsmith.models import ExtractionAttempt, ExtractionResult, Usage
from crawlsmith.prompt import SYSTEM_PROMPT, build_extraction_prompt

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(raw):
    """Models often wrap JSON in ```json fences despite instructions."""
    if not raw:
        return raw
    match = _FENCE_RE.match(raw)
    if match:
        return match.group(1).strip()
    return raw.strip()


def _snippet(s, limit=200):
    if len(s) <= limit:
        return s
    return s[:limit] + "..."


@dataclass
class ExtractorConfig:
    max_retries: int = MAX_RETRIES
    temperature: float = TEMPERATURE
    max_tokens: int = MAX_TOKENS
    max_content_size: int = MAX_CONTENT_SIZE   # 0 = unlimited


class Extractor:
    """
    FLOW: Builds the prompt (plus the previous attempt's errors) -> Calls the completion service
    with the JSON schema constraint -> Parses -> Validates -> Success, or retry with the errors fed back.
    Validation errors, parse failures and rate limits are retried up to max_retries times;
    anything else stops the loop. Token usage is summed over every attempt.
    """

    def __init__(self, provider, config: ExtractorConfig = None):
        self.provider = provider
        self.config = config or ExtractorConfig()

    @property
    def name(self):
        return self.provider.name

    def available(self):
        return self.provider.available()

    def extract(self, content, schema) -> ExtractionResult:
        max_attempts = max(0, self.config.max_retries) + 1
        logger.debug(
            f"[EXTRACT] starting schema={schema.name} content_size={len(content)} max_attempts={max_attempts}"
        )

        # A broken schema is a programming error; never retried
        json_schema = schema.to_json_schema()

        total_usage = Usage()
        total_duration = 0.0
        attempts = []
        last_error = None
        last_raw = ""
        last_validation_errors = []

        for number in range(1, max_attempts + 1):
            attempt = ExtractionAttempt(number=number)
            attempts.append(attempt)
            retryable = True

            prompt = build_extraction_prompt(content, schema, last_error, self.config.max_content_size)
            request = CompletionRequest(
                messages=[
                    Message(Role.SYSTEM, SYSTEM_PROMPT),
                    Message(Role.USER, prompt),
                ],
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                json_schema=json_schema,
            )

            start = time.monotonic()
            try:
                response = self.provider.complete(request)
            except CompletionError as e:
                attempt.duration = time.monotonic() - start
                total_duration += attempt.duration
                attempt.error = e
                last_error = e
                retryable = e.retryable
                logger.warning(f"[EXTRACT] attempt {number}/{max_attempts} completion failed: {e}")
            else:
                attempt.duration = time.monotonic() - start
                total_duration += attempt.duration
                attempt.usage = response.usage
                total_usage.add(response.usage)

                raw = strip_code_fences(response.content)
                attempt.raw_response = raw
                last_raw = raw

                try:
                    data = schema.unmarshal(raw)
                except ResponseParseError as e:
                    last_error = ResponseParseError(f"{e} (response: {_snippet(raw)})", raw_response=raw)
                    attempt.error = last_error
                    logger.debug(f"[EXTRACT] attempt {number}/{max_attempts} unparseable response")
                else:
                    attempt.data = data
                    validation_errors = schema.validate(data)
                    if not validation_errors:
                        logger.debug(
                            f"[EXTRACT] success after {number} attempt(s) "
                            f"in={total_usage.input_tokens} out={total_usage.output_tokens} "
                            f"llm_time={total_duration:.2f}s"
                        )
                        return ExtractionResult(
                            data=data,
                            raw_response=raw,
                            usage=total_usage,
                            retry_count=number - 1,
                            llm_duration=total_duration,
                            attempts=attempts,
                        )
                    last_validation_errors = validation_errors
                    last_error = ValidationFailedError(validation_errors)
                    attempt.error = last_error
                    logger.debug(
                        f"[EXTRACT] attempt {number}/{max_attempts} failed validation "
                        f"({len(validation_errors)} field errors)"
                    )

            if not retryable:
                logger.debug(f"[EXTRACT] non-retryable error, giving up: {last_error}")
                break

        made = len(attempts)
        result = ExtractionResult(
            raw_response=last_raw,
            validation_errors=last_validation_errors,
            usage=total_usage,
            retry_count=made - 1,
            llm_duration=total_duration,
            attempts=attempts,
        )
        raise ExtractionError(
            f"extraction failed after {made} attempts: {last_error}",
            attempts=made,
            cause=last_error,
            result=result,
        )


# === PROVIDER FAILOVER ===

class FallbackExtractor:
    """
    FLOW: Tries each extractor in order -> Skips unavailable ones -> Returns the first success ->
    Otherwise raises ExtractionError naming every extractor tried.
    Only ExtractionError moves on to the next extractor; anything else propagates.
    Token usage of failed extractors is added to the final result.
    """

    def __init__(self, *extractors):
        self.extractors = list(extractors)

    @property
    def name(self):
        return "fallback(" + "->".join(e.name for e in self.extractors) + ")"

    def available(self):
        return any(e.available() for e in self.extractors)

    def extract(self, content, schema) -> ExtractionResult:
        tried = []
        total_usage = Usage()
        attempts = 0
        last_error = None

        for extractor in self.extractors:
            if not extractor.available():
                logger.debug(f"[EXTRACT] {extractor.name} unavailable, skipping")
                continue

            tried.append(extractor.name)
            try:
                result = extractor.extract(content, schema)
            except ExtractionError as e:
                last_error = e
                attempts += e.attempts
                if e.result is not None:
                    total_usage.add(e.result.usage)
                logger.warning(f"[EXTRACT] {extractor.name} failed, trying next extractor: {e}")
                continue

            result.usage = total_usage.add(result.usage)
            return result

        if not tried:
            raise ExtractionError("no extractor available", attempts=0)

        partial = last_error.result or ExtractionResult()
        raise ExtractionError(
            f"all extractors failed (tried: {', '.join(tried)}): {last_error}",
            attempts=attempts,
            cause=last_error,
            result=ExtractionResult(
                raw_response=partial.raw_response,
                validation_errors=partial.validation_errors,
                usage=total_usage,
                retry_count=partial.retry_count,
                llm_duration=partial.llm_duration,
                attempts=partial.attempts,
            ),
        )
