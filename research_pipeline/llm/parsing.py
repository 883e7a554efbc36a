"""Structured-data extraction from generative responses.

Models wrap JSON in code fences, prepend reasoning, or leave trailing commas.
``extract_json`` tries each of those shapes in turn; ``decode`` then validates
the result against a pydantic schema. Both raise MalformedResponse.
"""

import json
import re
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from research_pipeline.errors import MalformedResponse

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _extract_braced(text: str) -> str | None:
    """Return the first balanced ``{...}`` block, ignoring braces inside strings."""
    brace_count = 0
    start_idx = None
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char == "{":
            if brace_count == 0:
                start_idx = i
            brace_count += 1
        elif char == "}" and brace_count > 0:
            brace_count -= 1
            if brace_count == 0 and start_idx is not None:
                return text[start_idx:i + 1]

    return None


def _clean_json_string(text: str) -> str:
    text = text.strip("\ufeff\u200b\u200c\u200d")
    # Trailing commas before } or ] are a common model mistake
    return re.sub(r",(\s*[}\]])", r"\1", text)


def _try_load(text: str) -> Any:
    try:
        return json.loads(_clean_json_string(text))
    except json.JSONDecodeError:
        return None


def extract_json(response: str) -> dict[str, Any]:
    """Parse the JSON object embedded in a model response.

    Tries, in order: a fenced block, the whole body, the first balanced brace
    block.

    Raises:
        MalformedResponse: If no JSON object can be recovered.
    """
    if not response or not response.strip():
        raise MalformedResponse("Empty response from model", response)

    text = response.strip()
    candidates = [m.group(1) for m in _FENCE_PATTERN.finditer(text)]
    candidates.append(text)
    braced = _extract_braced(text)
    if braced:
        candidates.append(braced)

    for candidate in candidates:
        parsed = _try_load(candidate)
        if isinstance(parsed, dict):
            return parsed

    logger.warning("json_parse_error", response_preview=text[:300])
    raise MalformedResponse("Could not extract a JSON object from the response", response)


def decode(response: str, schema: type[ModelT]) -> ModelT:
    """Extract JSON from ``response`` and validate it as ``schema``.

    Raises:
        MalformedResponse: On extraction failure or schema mismatch.
    """
    data = extract_json(response)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "schema_validation_failed",
            schema=schema.__name__,
            errors=e.error_count(),
            response_preview=response[:300],
        )
        raise MalformedResponse(f"Response does not match {schema.__name__}: {e}", response) from e
