"""Anthropic Messages API client."""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

import httpx

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

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
MAX_TOKENS = 4096
OVERLOADED_STATUS = 529


@dataclass
class AnthropicProviderClient(ProviderClient):
    """Provider client backed by the Anthropic Messages API.

    Makes exactly one HTTP call per ``evaluate``; retrying is left to the
    scheduler.
    """

    http_client: httpx.AsyncClient
    model: str = "claude-opus-4-5-20251101"
    base_url: str = ANTHROPIC_API_URL
    timeout: float = 60.0
    provider_id: str = "anthropic"

    @classmethod
    def create(
        cls, model: str, timeout: float = 60.0
    ) -> "AnthropicProviderClient":
        """Create a client with a managed httpx session."""
        return cls(http_client=httpx.AsyncClient(), model=model, timeout=timeout)

    async def evaluate(
        self,
        artifact: EncodedArtifact,
        prompt: str,
        credential: str,
        model: str,
    ) -> ProviderResponse:
        """Send one image and prompt, return the validated evaluation."""
        payload = {
            "model": model,
            "max_tokens": MAX_TOKENS,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": artifact.media_type,
                                "data": artifact.data,
                            },
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }
        headers = {
            "x-api-key": credential,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            response = await self.http_client.post(
                self.base_url, json=payload, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as exc:
            raise ProviderNetworkError("Request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderNetworkError(
                redact_secrets(f"Network error: {exc}")
            ) from exc

        rate_limit = self.extract_rate_limit_info(response.headers)
        if response.status_code != httpx.codes.OK:
            raise _map_error(response, rate_limit)

        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise ResponseParsingError("Invalid JSON response") from exc
        text = _first_text_block(body)
        evaluation = parse_evaluation_text(text)
        usage = body.get("usage") or {}
        return ProviderResponse(
            evaluation=evaluation,
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
            raw_response=text,
            rate_limit=rate_limit,
        )

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return cost_for_model(self.model, input_tokens, output_tokens)

    def extract_rate_limit_info(
        self, headers: Mapping[str, str]
    ) -> RateLimitInfo | None:
        """Read ``anthropic-ratelimit-*`` and ``retry-after`` headers."""
        info = RateLimitInfo(
            requests_remaining=parse_int_header(
                headers.get("anthropic-ratelimit-requests-remaining")
            ),
            input_tokens_remaining=parse_int_header(
                headers.get("anthropic-ratelimit-input-tokens-remaining")
            ),
            output_tokens_remaining=parse_int_header(
                headers.get("anthropic-ratelimit-output-tokens-remaining")
            ),
            requests_reset=_parse_instant(
                headers.get("anthropic-ratelimit-requests-reset")
            ),
            tokens_reset=_parse_instant(
                headers.get("anthropic-ratelimit-tokens-reset")
            ),
            retry_after=parse_retry_after(headers.get("retry-after")),
        )
        if info == RateLimitInfo():
            return None
        if (
            info.requests_remaining is not None
            and info.requests_remaining < RATE_LIMIT_WARNING_THRESHOLD
        ):
            _logger.warning(
                "Anthropic rate limit warning: only %s requests remaining",
                info.requests_remaining,
            )
        return info

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _first_text_block(body: dict[str, object]) -> str:
    content = body.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return str(block.get("text", ""))
    raise ResponseParsingError("No text content in response")


def _parse_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _map_error(
    response: httpx.Response, rate_limit: RateLimitInfo | None
) -> ProviderError:
    """Translate a non-200 response into the error taxonomy."""
    error_type: str | None = None
    message: str | None = None
    try:
        error = response.json().get("error") or {}
        error_type = error.get("type")
        message = error.get("message")
    except (json.JSONDecodeError, AttributeError):
        pass
    if message:
        message = redact_secrets(message)

    status = response.status_code
    if status == httpx.codes.TOO_MANY_REQUESTS or error_type == "rate_limit_error":
        retry_after = rate_limit.retry_after if rate_limit else None
        return RateLimitError(retry_after=retry_after, provider_code=error_type)
    if status == httpx.codes.UNAUTHORIZED or error_type == "authentication_error":
        return AuthenticationError(provider_code=error_type)
    if (
        status == OVERLOADED_STATUS
        or status >= httpx.codes.INTERNAL_SERVER_ERROR
        or error_type in {"overloaded_error", "api_error"}
    ):
        return ProviderOverloadedError(message, provider_code=error_type)
    if status == httpx.codes.BAD_REQUEST:
        return InvalidRequestError(message, provider_code=error_type)
    return ProviderError(
        message or f"Unexpected status code {status}", provider_code=error_type
    )
