import logging

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a data extraction assistant. Your task is to extract structured data from webpage content.

Rules:
1. Extract only the data that matches the schema fields
2. Return valid JSON matching the exact schema structure
3. If a required field cannot be found, use null
4. If an optional field cannot be found, omit it
5. For URLs, use absolute URLs when possible
6. For prices/numbers, extract the numeric value only (no currency symbols)
7. Be precise and extract exactly what is requested"""

TRUNCATION_MARKER = "\n\n[Content truncated due to length...]"


def truncate_content(content, max_size):
    """max_size <= 0 means unlimited."""
    if max_size <= 0 or len(content) <= max_size:
        return content
    logger.warning(
        f"[EXTRACT] content truncated from {len(content)} to {max_size} chars "
        f"({len(content) - max_size} dropped)"
    )
    return content[:max_size] + TRUNCATION_MARKER


def build_extraction_prompt(content, schema, previous_error=None, max_content_size=0):
    parts = [
        "Extract structured data from the following webpage content.\n\n",
        schema.to_prompt_description(),
    ]

    if previous_error is not None:
        parts.append("\n## Previous Attempt Errors\n")
        parts.append("The previous extraction attempt had these errors that need to be fixed:\n")
        parts.append(str(previous_error))
        parts.append("\n\nPlease correct these errors in your response.\n")

    parts.append("\n## Webpage Content\n")
    parts.append("```\n")
    parts.append(truncate_content(content, max_content_size))
    parts.append("\n```\n")
    return "".join(parts)
