"""Shared test fixtures."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import pytest

from nature_eval.adapters.memory_store import InMemoryEvaluationStore
from nature_eval.config import Settings
from nature_eval.containers import AppContainer
from nature_eval.domain.analysis import SaliencySummary, TechnicalMetrics
from nature_eval.domain.errors import (
    ArtifactNotFoundError,
    MissingCredentialError,
    PersistenceError,
)
from nature_eval.domain.evaluations import (
    EvaluationSession,
    ImageRecord,
    RecordChange,
)
from nature_eval.domain.provider import (
    EncodedArtifact,
    EvaluationPayload,
    ProviderInfo,
    ProviderResponse,
    RateLimitInfo,
)
from nature_eval.services.failures import FailureClassifier
from nature_eval.services.orchestrator import EvaluationOrchestrator, RunSettings
from nature_eval.services.pipeline import (
    ArtifactStore,
    CredentialStore,
    PromptSource,
    SaliencyAnalyzer,
    TechnicalAnalyzer,
)
from nature_eval.services.provider import ProviderClient, cost_for_model
from nature_eval.services.recorder import ResultRecorder
from nature_eval.services.usage import UsageService

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-body"

ANTHROPIC_INFO = ProviderInfo(
    identifier="anthropic",
    display_name="Anthropic Claude",
    model="claude-opus-4-5-20251101",
    api_version="2023-06-01",
)


def make_payload(score: float = 7.5, placement: str = "PORTFOLIO") -> EvaluationPayload:
    return EvaluationPayload(
        composition_score=score,
        quality_score=score,
        sellability_score=score,
        artistic_score=score,
        overall_weighted_score=score,
        primary_placement=placement,
        strengths=["Strong leading lines"],
        improvements=["Lift the shadows"],
        market_comparison="Comparable to mid-tier stock",
    )


def make_response(
    score: float = 7.5, input_tokens: int = 1000, output_tokens: int = 500
) -> ProviderResponse:
    return ProviderResponse(
        evaluation=make_payload(score),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        raw_response=f'{{"overall_weighted_score": {score}}}',
    )


def make_technical(**overrides: object) -> TechnicalMetrics:
    values: dict[str, object] = {
        "sharpness": 7.2,
        "blur_amount": 0.28,
        "blur_type": "none",
        "focus_distribution": "uniform",
        "sharp_fraction": 0.81,
        "exposure": "balanced",
        "highlights_clipped": 0.01,
        "shadows_clipped": 0.02,
        "dynamic_range": 6.5,
        "contrast": 2.4,
        "saturation": 4.1,
        "is_monochrome": False,
        "noise_level": 1.3,
    }
    values.update(overrides)
    return TechnicalMetrics(**values)


@dataclass
class FakeArtifactStore(ArtifactStore):
    """Serves the same bytes for every image unless told otherwise."""

    missing: set[str] = field(default_factory=set)
    loads: list[str] = field(default_factory=list)

    def load_processed_artifact(self, image: ImageRecord) -> bytes:
        path = image.processed_path or ""
        self.loads.append(path)
        if not path or path in self.missing:
            raise ArtifactNotFoundError()
        return JPEG_BYTES


@dataclass
class FakeTechnicalAnalyzer(TechnicalAnalyzer):
    metrics: TechnicalMetrics = field(default_factory=make_technical)

    def analyze(self, artifact: bytes) -> TechnicalMetrics:
        return self.metrics


@dataclass
class FakeSaliencyAnalyzer(SaliencyAnalyzer):
    summary: SaliencySummary | None = None

    def analyze(self, artifact: bytes) -> SaliencySummary | None:
        return self.summary


@dataclass
class FakeCredentialStore(CredentialStore):
    keys: dict[str, str] = field(
        default_factory=lambda: {"anthropic": "sk-ant-test-key"}
    )

    def get_credential(self, provider_id: str) -> str:
        if provider_id not in self.keys:
            raise MissingCredentialError(provider_id)
        return self.keys[provider_id]


@dataclass
class FakePromptSource(PromptSource):
    prompt: str = "Evaluate this nature photograph."

    def load_evaluation_prompt(self) -> str:
        return self.prompt


@dataclass
class ScriptedProvider(ProviderClient):
    """Returns scripted outcomes in order, then keeps succeeding."""

    script: list[ProviderResponse | Exception] = field(default_factory=list)
    calls: list[tuple[str, str, str]] = field(default_factory=list)
    provider_id: str = "anthropic"
    model: str = "claude-opus-4-5-20251101"

    async def evaluate(
        self,
        artifact: EncodedArtifact,
        prompt: str,
        credential: str,
        model: str,
    ) -> ProviderResponse:
        self.calls.append((prompt, credential, model))
        outcome = self.script.pop(0) if self.script else make_response()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return cost_for_model(self.model, input_tokens, output_tokens)

    def extract_rate_limit_info(
        self, headers: Mapping[str, str]
    ) -> RateLimitInfo | None:
        return None


@dataclass
class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    delays: list[float] = field(default_factory=list)
    on_sleep: object | None = None

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if callable(self.on_sleep):
            self.on_sleep()


@dataclass
class FlakyStore(InMemoryEvaluationStore):
    """Rejects ``commit_record`` once ``fail_after`` commits succeeded."""

    fail_after: int | None = None
    fail_sessions: bool = False
    commits: int = 0

    def create_session(self, session: EvaluationSession) -> EvaluationSession:
        if self.fail_sessions:
            raise PersistenceError("database unavailable")
        return super().create_session(session)

    def commit_record(self, change: RecordChange) -> None:
        if self.fail_after is not None and self.commits >= self.fail_after:
            raise PersistenceError("database unavailable")
        super().commit_record(change)
        self.commits += 1


def add_images(store: InMemoryEvaluationStore, count: int) -> list[ImageRecord]:
    return [
        store.create_image(f"processed/{index}.jpg", f"IMG_{index:04d}.jpg")
        for index in range(count)
    ]


def build_orchestrator(  # noqa: PLR0913
    store: InMemoryEvaluationStore,
    provider: ScriptedProvider | None = None,
    sleep: RecordingSleep | None = None,
    credentials: FakeCredentialStore | None = None,
    artifact_store: FakeArtifactStore | None = None,
    run_settings: RunSettings | None = None,
    extra_providers: Iterable[tuple[ProviderClient, ProviderInfo]] = (),
) -> EvaluationOrchestrator:
    providers = {"anthropic": (provider or ScriptedProvider(), ANTHROPIC_INFO)}
    for client, info in extra_providers:
        providers[info.identifier] = (client, info)
    return EvaluationOrchestrator(
        recorder=ResultRecorder(store),
        providers=providers,
        credential_store=credentials or FakeCredentialStore(),
        prompt_source=FakePromptSource(),
        artifact_store=artifact_store or FakeArtifactStore(),
        technical_analyzer=FakeTechnicalAnalyzer(),
        saliency_analyzer=FakeSaliencyAnalyzer(),
        run_settings=run_settings
        or RunSettings(batch_size=5, request_delay_seconds=2.0),
        classifier=FailureClassifier(),
        sleep=sleep or RecordingSleep(),
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_token="api-token",
        anthropic_api_key="sk-ant-test-key",
        openai_api_key="sk-openai-test-key",
        supabase_url=None,
        supabase_service_key=None,
    )


@pytest.fixture
def store() -> InMemoryEvaluationStore:
    return InMemoryEvaluationStore()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def container(
    settings: Settings,
    store: InMemoryEvaluationStore,
    provider: ScriptedProvider,
    sleep: RecordingSleep,
) -> AppContainer:
    orchestrator = build_orchestrator(store, provider=provider, sleep=sleep)

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        store=store,
        recorder=orchestrator.recorder,
        orchestrator=orchestrator,
        usage_service=UsageService(store),
        providers=orchestrator.providers,
        close_resources=close_resources,
    )
