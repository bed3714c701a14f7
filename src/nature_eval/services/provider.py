"""Provider contract shared by all remote scoring backends."""

import json
import math
import re
from collections.abc import Mapping
from typing import Protocol

from pydantic import ValidationError

from nature_eval.domain.errors import ResponseParsingError
from nature_eval.domain.provider import (
    EncodedArtifact,
    EvaluationPayload,
    ProviderResponse,
    RateLimitInfo,
)

MAX_CONTENT_LENGTH = 100_000
RATE_LIMIT_WARNING_THRESHOLD = 10

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4-5-20251101": (5.0, 25.0),
    "claude-opus-4-1": (15.0, 75.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-haiku-4-5": (1.0, 5.0),
    "claude-haiku-3-5": (0.25, 1.25),
    "gpt-4o": (2.5, 10.0),
    "gpt-4.1": (2.0, 8.0),
}

_SECRET_PATTERNS = (
    (re.compile(r"sk-ant-[A-Za-z0-9_-]+"), "[REDACTED]"),
    (re.compile(r"sk-[A-Za-z0-9_-]{16,}"), "[REDACTED]"),
    (re.compile(r"x-api-key[\":\s]+[^\s\"]+", re.IGNORECASE), "x-api-key: [REDACTED]"),
)


class ProviderClient(Protocol):
    """Interface for a remote image scoring provider."""

    provider_id: str

    async def evaluate(
        self,
        artifact: EncodedArtifact,
        prompt: str,
        credential: str,
        model: str,
    ) -> ProviderResponse:
        """Score one image and return the parsed response."""

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Return the estimated USD cost of a call."""

    def extract_rate_limit_info(
        self, headers: Mapping[str, str]
    ) -> RateLimitInfo | None:
        """Read rate-limit telemetry from response headers."""


def cost_for_model(
    model: str,
    input_tokens: int,
    output_tokens: int,
    default: tuple[float, float] = (3.0, 15.0),
) -> float:
    """Compute call cost from the per-model price table."""
    input_price, output_price = MODEL_PRICING.get(model, default)
    return (input_tokens / 1_000_000) * input_price + (
        output_tokens / 1_000_000
    ) * output_price


def parse_evaluation_text(content: str) -> EvaluationPayload:
    """Extract and validate the rubric JSON embedded in model output."""
    if len(content) > MAX_CONTENT_LENGTH:
        raise ResponseParsingError("Response content exceeds maximum allowed length")
    start = content.find("{")
    if start == -1:
        raise ResponseParsingError("Could not extract JSON from response")
    try:
        data, _ = json.JSONDecoder().raw_decode(content[start:])
    except json.JSONDecodeError as exc:
        raise ResponseParsingError(f"JSON decoding failed: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ResponseParsingError("Response JSON is not an object")
    try:
        return EvaluationPayload.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ResponseParsingError(f"{location}: {first['msg']}") from exc


def redact_secrets(message: str) -> str:
    """Strip API keys from text that may be logged or stored."""
    for pattern, replacement in _SECRET_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``retry-after`` header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def parse_int_header(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
