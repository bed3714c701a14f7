"""Single-image evaluation pipeline."""

import base64
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from nature_eval.domain.analysis import SaliencySummary, TechnicalMetrics
from nature_eval.domain.errors import ArtifactEncodingError
from nature_eval.domain.evaluations import EvaluationResult, ImageRecord
from nature_eval.domain.provider import EncodedArtifact, ProviderInfo
from nature_eval.services.provider import ProviderClient
from nature_eval.services.recorder import (
    EvaluationFailure,
    EvaluationSuccess,
    ResultRecorder,
)

if TYPE_CHECKING:
    from nature_eval.services.sessions import SessionTracker

_logger = logging.getLogger(__name__)

PROMPT_VERSION = "v1.0"


class ArtifactStore(Protocol):
    """Loads the resized image produced at import time."""

    def load_processed_artifact(self, image: ImageRecord) -> bytes:
        """Return processed image bytes or raise ArtifactNotFoundError."""


class TechnicalAnalyzer(Protocol):
    def analyze(self, artifact: bytes) -> TechnicalMetrics:
        """Measure sharpness, exposure, noise and related metrics."""


class SaliencyAnalyzer(Protocol):
    def analyze(self, artifact: bytes) -> SaliencySummary | None:
        """Summarize where attention falls, if anything stands out."""


class CredentialStore(Protocol):
    def get_credential(self, provider_id: str) -> str:
        """Return the secret for a provider or raise MissingCredentialError."""


class PromptSource(Protocol):
    def load_evaluation_prompt(self) -> str:
        """Return the base evaluation prompt."""


@dataclass
class EvaluationPipeline:
    """Runs local analysis, calls the provider and records the success.

    Failures propagate untouched; retrying is the scheduler's job.
    """

    artifact_store: ArtifactStore
    technical_analyzer: TechnicalAnalyzer
    saliency_analyzer: SaliencyAnalyzer
    provider: ProviderClient
    provider_info: ProviderInfo
    recorder: ResultRecorder
    tracker: "SessionTracker | None" = None
    image_resolution: int | None = None
    prompt_version: str = PROMPT_VERSION

    async def evaluate(
        self, image: ImageRecord, prompt: str, credential: str
    ) -> EvaluationResult:
        """Evaluate one image and return its recorded result."""
        started = time.monotonic()
        artifact = self.artifact_store.load_processed_artifact(image)
        technical = self.technical_analyzer.analyze(artifact)
        saliency = self.saliency_analyzer.analyze(artifact)
        enhanced_prompt = build_enhanced_prompt(prompt, technical, saliency)
        encoded = encode_artifact(artifact)

        response = await self.provider.evaluate(
            encoded, enhanced_prompt, credential, self.provider_info.model
        )
        cost = self.provider.calculate_cost(
            response.input_tokens, response.output_tokens
        )
        _logger.info(
            "Image %s scored %.1f (%s), cost $%.4f",
            image.id,
            response.evaluation.overall_weighted_score,
            response.evaluation.primary_placement,
            cost,
        )
        outcome = EvaluationSuccess(
            response=response,
            provider=self.provider_info,
            cost=cost,
            processing_time_seconds=time.monotonic() - started,
            technical=technical,
            saliency=saliency,
            prompt_version=self.prompt_version,
            image_resolution=self.image_resolution,
        )
        return self.recorder.record(image.id, outcome, self.tracker)

    def record_failure(
        self, image: ImageRecord, error: BaseException, retry_count: int
    ) -> EvaluationResult:
        """Record a terminal failure for an image."""
        outcome = EvaluationFailure(
            error=error,
            provider=self.provider_info,
            retry_count=retry_count,
            prompt_version=self.prompt_version,
            image_resolution=self.image_resolution,
        )
        return self.recorder.record(image.id, outcome, self.tracker)


def encode_artifact(artifact: bytes) -> EncodedArtifact:
    """Base64-encode image bytes for transport."""
    if not artifact:
        raise ArtifactEncodingError()
    encoded = base64.b64encode(artifact).decode("utf-8")
    return EncodedArtifact(data=encoded, media_type=_detect_mime_type(artifact))


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def build_enhanced_prompt(
    base_prompt: str,
    technical: TechnicalMetrics,
    saliency: SaliencySummary | None = None,
) -> str:
    """Prefix the base prompt with the local analysis context."""
    lines = [
        "TECHNICAL ANALYSIS PROVIDED:",
        "",
        f"Sharpness: {technical.sharpness:.1f}/10",
        (
            f"Focus Distribution: {technical.focus_distribution} "
            f"({technical.sharp_fraction:.0%} sharp)"
        ),
        f"Blur Type: {technical.blur_type} (intensity: {technical.blur_amount:.1f})",
        "",
        f"Exposure: {technical.exposure}",
        f"- Highlights clipped: {technical.highlights_clipped:.1%}",
        f"- Shadows clipped: {technical.shadows_clipped:.1%}",
        f"- Dynamic range: {technical.dynamic_range:.1f}",
        "",
        f"Contrast: {technical.contrast:.1f}",
        f"Saturation: {technical.saturation:.1f}",
        f"Monochrome: {'Yes' if technical.is_monochrome else 'No'}",
        f"Noise Level: {technical.noise_level:.1f}",
    ]
    if saliency is not None:
        lines.append(f"Composition Pattern: {saliency.composition_pattern}")

    intent = technical.intent
    if intent.is_likely_intentional:
        lines += [
            "",
            "ARTISTIC INTENT DETECTED:",
            f"Probable Technique: {intent.technique.replace('_', ' ')}",
            f"Confidence: {intent.confidence:.0%}",
            "Evidence:",
            *(f"- {item}" for item in intent.evidence),
            "",
            (
                "Note: The technical characteristics above appear to be "
                "intentional artistic choices. Please evaluate them as creative "
                "techniques rather than technical flaws."
            ),
        ]
    elif technical.blur_amount > 0.5:  # noqa: PLR2004
        lines += [
            "",
            (
                "Note: Significant blur detected. Please assess whether this "
                "appears to be an intentional artistic choice (motion blur, ICM, "
                "soft focus) or an unintended technical issue."
            ),
        ]

    lines += ["", "---", "", base_prompt]
    return "\n".join(lines)
