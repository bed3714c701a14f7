"""OpenAI Responses API client for image evaluation."""

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import openai
from openai import AsyncOpenAI

from nature_eval.domain.errors import (
    AuthenticationError,
    InvalidRequestError,
    ProviderError,
    ProviderNetworkError,
    ProviderOverloadedError,
    RateLimitError,
    ResponseParsingError,
)
from nature_eval.domain.provider import EncodedArtifact, ProviderResponse, RateLimitInfo
from nature_eval.services.provider import (
    RATE_LIMIT_WARNING_THRESHOLD,
    ProviderClient,
    cost_for_model,
    parse_evaluation_text,
    parse_int_header,
    parse_retry_after,
    redact_secrets,
)

_logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}

_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_LIST = {"type": ["array", "null"], "items": {"type": "string"}}
_SCORE = {"type": "number"}

EVALUATION_SCHEMA: dict[str, object] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "composition_score": _SCORE,
        "quality_score": _SCORE,
        "sellability_score": _SCORE,
        "artistic_score": _SCORE,
        "overall_weighted_score": _SCORE,
        "primary_placement": {
            "type": "string",
            "enum": ["PORTFOLIO", "STORE", "BOTH", "ARCHIVE", "PRACTICE"],
        },
        "strengths": _STRING_LIST,
        "improvements": _STRING_LIST,
        "market_comparison": {"type": "string"},
        "technical_innovations": _NULLABLE_LIST,
        "print_size_recommendation": _NULLABLE_STRING,
        "price_tier_suggestion": _NULLABLE_STRING,
        "title": _NULLABLE_STRING,
        "description": _NULLABLE_STRING,
        "keywords": _NULLABLE_LIST,
        "alt_text": _NULLABLE_STRING,
        "suggested_categories": _NULLABLE_LIST,
        "best_use_cases": _NULLABLE_LIST,
        "suggested_price_tier": _NULLABLE_STRING,
    },
}
EVALUATION_SCHEMA["required"] = list(EVALUATION_SCHEMA["properties"])


def _default_client_factory(api_key: str, timeout: float) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, max_retries=0, timeout=timeout)


@dataclass
class OpenAIProviderClient(ProviderClient):
    """Provider client backed by the OpenAI Responses API."""

    model: str = "gpt-4o"
    timeout: float = 60.0
    client_factory: Callable[[str, float], AsyncOpenAI] = _default_client_factory
    provider_id: str = "openai"
    _clients: dict[str, AsyncOpenAI] = field(default_factory=dict, repr=False)

    @classmethod
    def create(cls, model: str, timeout: float = 60.0) -> "OpenAIProviderClient":
        """Create an OpenAI provider client."""
        return cls(model=model, timeout=timeout)

    def _client_for(self, credential: str) -> AsyncOpenAI:
        if credential not in self._clients:
            self._clients[credential] = self.client_factory(credential, self.timeout)
        return self._clients[credential]

    async def evaluate(
        self,
        artifact: EncodedArtifact,
        prompt: str,
        credential: str,
        model: str,
    ) -> ProviderResponse:
        """Call the Responses API with structured output."""
        request_payload: dict[str, object] = {
            "model": model,
            "input": [
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        {"type": "input_image", "image_url": artifact.data_url},
                    ],
                }
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "image_evaluation",
                    "strict": True,
                    "schema": EVALUATION_SCHEMA,
                }
            },
            "store": False,
        }
        client = self._client_for(credential)
        try:
            raw = await client.responses.with_raw_response.create(**request_payload)
        except openai.APIError as exc:
            raise _map_error(exc) from exc

        rate_limit = self.extract_rate_limit_info(raw.headers)
        response = raw.parse()
        output_text = response.output_text
        if not output_text:
            raise ResponseParsingError("OpenAI returned an empty response")
        evaluation = parse_evaluation_text(output_text)
        usage = response.usage
        return ProviderResponse(
            evaluation=evaluation,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
            raw_response=output_text,
            rate_limit=rate_limit,
        )

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return cost_for_model(self.model, input_tokens, output_tokens)

    def extract_rate_limit_info(
        self, headers: Mapping[str, str]
    ) -> RateLimitInfo | None:
        """Read ``x-ratelimit-*`` headers; resets are relative durations."""
        info = RateLimitInfo(
            requests_remaining=parse_int_header(
                headers.get("x-ratelimit-remaining-requests")
            ),
            input_tokens_remaining=parse_int_header(
                headers.get("x-ratelimit-remaining-tokens")
            ),
            requests_reset=_reset_instant(headers.get("x-ratelimit-reset-requests")),
            tokens_reset=_reset_instant(headers.get("x-ratelimit-reset-tokens")),
            retry_after=parse_retry_after(headers.get("retry-after")),
        )
        if info == RateLimitInfo():
            return None
        if (
            info.requests_remaining is not None
            and info.requests_remaining < RATE_LIMIT_WARNING_THRESHOLD
        ):
            _logger.warning(
                "OpenAI rate limit warning: only %s requests remaining",
                info.requests_remaining,
            )
        return info

    async def close(self) -> None:
        """Close every SDK client opened for a credential."""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


def _reset_instant(value: str | None) -> datetime | None:
    """Turn a duration such as ``6m0s`` or ``250ms`` into an absolute time."""
    if not value:
        return None
    parts = _DURATION_PART.findall(value)
    if not parts:
        return None
    seconds = sum(float(amount) * _DURATION_UNITS[unit] for amount, unit in parts)
    return datetime.now(tz=UTC) + timedelta(seconds=seconds)


def _map_error(exc: openai.APIError) -> ProviderError:
    """Map SDK exceptions onto the evaluation error taxonomy."""
    code = exc.code if isinstance(exc.code, str) else None
    message = redact_secrets(exc.message) if exc.message else None
    if isinstance(exc, openai.APITimeoutError):
        return ProviderNetworkError("Request timed out")
    if isinstance(exc, openai.APIConnectionError):
        return ProviderNetworkError(message)
    if isinstance(exc, openai.RateLimitError):
        retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
        return RateLimitError(retry_after=retry_after, provider_code=code)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthenticationError(provider_code=code)
    if isinstance(exc, openai.InternalServerError):
        return ProviderOverloadedError(message, provider_code=code)
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return InvalidRequestError(message, provider_code=code)
    return ProviderError(message, provider_code=code)
