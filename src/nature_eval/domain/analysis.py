"""Local analysis outputs attached to evaluation results."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ArtisticIntent:
    """Guess at whether technical "flaws" are deliberate."""

    technique: str = "none"
    confidence: float = 0.0
    evidence: tuple[str, ...] = ()

    @property
    def is_likely_intentional(self) -> bool:
        return self.technique != "none" and self.confidence >= 0.5


@dataclass(frozen=True)
class TechnicalMetrics:
    """Technical measurements computed on the processed image."""

    sharpness: float
    blur_amount: float
    blur_type: str
    focus_distribution: str
    sharp_fraction: float
    exposure: str
    highlights_clipped: float
    shadows_clipped: float
    dynamic_range: float
    contrast: float
    saturation: float
    is_monochrome: bool
    noise_level: float
    intent: ArtisticIntent = field(default_factory=ArtisticIntent)
    analysis_seconds: float = 0.0


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Region:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class SaliencySummary:
    """Attention summary in normalized (0-1) image coordinates."""

    hotspots: tuple[Region, ...]
    composition_pattern: str
    highest_point: Point | None = None
    center_of_mass: Point | None = None
