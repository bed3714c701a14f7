"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from supabase import create_client

from nature_eval.adapters.anthropic_client import AnthropicProviderClient
from nature_eval.adapters.artifact_store import FileArtifactStore
from nature_eval.adapters.credential_store import SettingsCredentialStore
from nature_eval.adapters.memory_store import InMemoryEvaluationStore
from nature_eval.adapters.openai_client import OpenAIProviderClient
from nature_eval.adapters.supabase_evaluation_store import SupabaseEvaluationStore
from nature_eval.config import Settings
from nature_eval.domain.provider import ProviderInfo
from nature_eval.services.analysis import (
    GradientSaliencyAnalyzer,
    PillowTechnicalAnalyzer,
)
from nature_eval.services.failures import FailureClassifier
from nature_eval.services.orchestrator import EvaluationOrchestrator, RunSettings
from nature_eval.services.prompts import FilePromptSource
from nature_eval.services.provider import ProviderClient
from nature_eval.services.recorder import EvaluationStore, ResultRecorder
from nature_eval.services.usage import UsageService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    store: EvaluationStore
    recorder: ResultRecorder
    orchestrator: EvaluationOrchestrator
    usage_service: UsageService
    providers: Mapping[str, tuple[ProviderClient, ProviderInfo]]
    close_resources: Callable[[], Awaitable[None]]


def build_store(settings: Settings) -> EvaluationStore:
    """Use Supabase when configured, otherwise keep everything in memory."""
    if settings.uses_supabase:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return SupabaseEvaluationStore(client)
    return InMemoryEvaluationStore()


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    store = build_store(resolved_settings)
    recorder = ResultRecorder(store)

    anthropic_client = AnthropicProviderClient.create(
        model=resolved_settings.anthropic_model,
        timeout=resolved_settings.request_timeout_seconds,
    )
    openai_client = OpenAIProviderClient.create(
        model=resolved_settings.openai_model,
        timeout=resolved_settings.request_timeout_seconds,
    )
    providers = {
        "anthropic": (
            anthropic_client,
            ProviderInfo(
                identifier="anthropic",
                display_name="Anthropic Claude",
                model=resolved_settings.anthropic_model,
                api_version="2023-06-01",
            ),
        ),
        "openai": (
            openai_client,
            ProviderInfo(
                identifier="openai",
                display_name="OpenAI",
                model=resolved_settings.openai_model,
            ),
        ),
    }
    orchestrator = EvaluationOrchestrator(
        recorder=recorder,
        providers=providers,
        credential_store=SettingsCredentialStore(resolved_settings),
        prompt_source=FilePromptSource(resolved_settings.prompt_path),
        artifact_store=FileArtifactStore(resolved_settings.artifact_root),
        technical_analyzer=PillowTechnicalAnalyzer(),
        saliency_analyzer=GradientSaliencyAnalyzer(),
        run_settings=RunSettings(
            provider_id=resolved_settings.provider,
            batch_size=resolved_settings.batch_size,
            request_delay_seconds=resolved_settings.request_delay_seconds,
            image_resolution=resolved_settings.image_resolution,
        ),
        classifier=FailureClassifier(
            rate_limit_backoff_seconds=resolved_settings.rate_limit_backoff_seconds,
            overload_base_seconds=resolved_settings.overload_backoff_base_seconds,
            max_retries=resolved_settings.max_retries,
        ),
    )

    async def close_resources() -> None:
        await anthropic_client.close()
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        store=store,
        recorder=recorder,
        orchestrator=orchestrator,
        usage_service=UsageService(store),
        providers=providers,
        close_resources=close_resources,
    )
