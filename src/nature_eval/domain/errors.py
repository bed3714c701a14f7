"""Error taxonomy for evaluation runs."""


class EvaluationError(Exception):
    """Base class for errors that end up recorded on a failed result."""

    code: str = "evaluation_error"
    retryable: bool = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return "Evaluation failed"


class ConfigurationError(EvaluationError):
    """Run-level misconfiguration; aborts start() before any subject runs."""

    code = "configuration_error"


class MissingCredentialError(ConfigurationError):
    code = "missing_credential"

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(
            f"API key for {provider_id} not found. Add it to the environment."
        )


class UnsupportedProviderError(ConfigurationError):
    code = "unsupported_provider"

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider {provider_id!r} is not supported")


class PipelineError(EvaluationError):
    """Local failure preparing a subject for the provider."""

    code = "pipeline_error"


class ArtifactNotFoundError(PipelineError):
    code = "artifact_not_found"

    def default_message(self) -> str:
        return "Processed image not found"


class ArtifactEncodingError(PipelineError):
    code = "artifact_encoding_failed"

    def default_message(self) -> str:
        return "Failed to convert image for API"


class AnalysisError(PipelineError):
    code = "analysis_failed"

    def default_message(self) -> str:
        return "Local image analysis failed"


class ProviderError(EvaluationError):
    """Failure reported by (or while talking to) the remote provider."""

    code = "provider_error"

    def __init__(
        self, message: str | None = None, provider_code: str | None = None
    ) -> None:
        self.provider_code = provider_code
        super().__init__(message)


class RateLimitError(ProviderError):
    code = "rate_limit_exceeded"
    retryable = True

    def __init__(
        self, retry_after: float | None = None, provider_code: str | None = None
    ) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"Rate limit exceeded. Retry after {retry_after:.0f} seconds"
        else:
            message = "Rate limit exceeded. Please wait before retrying"
        super().__init__(message, provider_code=provider_code)


class ProviderOverloadedError(ProviderError):
    code = "provider_overloaded"
    retryable = True

    def default_message(self) -> str:
        return "Provider is overloaded"


class ProviderNetworkError(ProviderError):
    code = "network_error"
    retryable = True

    def default_message(self) -> str:
        return "Network error while contacting provider"


class AuthenticationError(ProviderError):
    code = "authentication_failed"

    def default_message(self) -> str:
        return "Authentication failed. Please check your API key"


class InvalidRequestError(ProviderError):
    code = "invalid_request"

    def default_message(self) -> str:
        return "Provider rejected the request"


class ResponseParsingError(ProviderError):
    code = "parsing_failed"

    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to parse response: {detail}")


class PersistenceError(Exception):
    """Store write failure; never recorded as an evaluation outcome."""


class OrchestrationStateError(Exception):
    """Operation not allowed in the orchestrator's current state."""
