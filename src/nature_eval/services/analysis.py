"""Local technical and saliency analysis with Pillow and numpy."""

import io
import math
import time
from dataclasses import dataclass

import numpy as np
from PIL import Image, UnidentifiedImageError

from nature_eval.domain.analysis import (
    ArtisticIntent,
    Point,
    Region,
    SaliencySummary,
    TechnicalMetrics,
)
from nature_eval.domain.errors import AnalysisError

GRID = 4
CLIP_HIGH = 250
CLIP_LOW = 5
CLIP_WARNING = 0.05
SHARP_TILE_VARIANCE = 100.0
MOTION_RATIO = 2.0
SATURATION_MONO = 0.5
THIRDS_TOLERANCE = 0.08


def _open_image(artifact: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(artifact))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise AnalysisError(f"Cannot decode image: {exc}") from exc
    return image.convert("RGB")


def _laplacian(gray: np.ndarray) -> np.ndarray:
    return (
        gray[:-2, 1:-1]
        + gray[2:, 1:-1]
        + gray[1:-1, :-2]
        + gray[1:-1, 2:]
        - 4 * gray[1:-1, 1:-1]
    )


def _tiles(array: np.ndarray, grid: int = GRID) -> list[tuple[int, int, np.ndarray]]:
    height, width = array.shape[:2]
    tiles = []
    for row in range(grid):
        for col in range(grid):
            top, bottom = row * height // grid, (row + 1) * height // grid
            left, right = col * width // grid, (col + 1) * width // grid
            tiles.append((row, col, array[top:bottom, left:right]))
    return tiles


@dataclass
class PillowTechnicalAnalyzer:
    """Sharpness, exposure, noise and intent heuristics."""

    max_dimension: int = 1024

    def analyze(self, artifact: bytes) -> TechnicalMetrics:
        started = time.monotonic()
        image = _open_image(artifact)
        image.thumbnail((self.max_dimension, self.max_dimension))
        gray = np.asarray(image.convert("L"), dtype=np.float64)
        if min(gray.shape) < 3:  # noqa: PLR2004
            raise AnalysisError("Image too small to analyze")

        laplacian = _laplacian(gray)
        sharpness = min(10.0, float(laplacian.var()) / 100)
        blur_amount = max(0.0, 1 - sharpness / 10)

        tile_sharp = {
            (row, col): float(tile.var()) > SHARP_TILE_VARIANCE
            for row, col, tile in _tiles(laplacian)
            if tile.size
        }
        sharp_fraction = sum(tile_sharp.values()) / max(len(tile_sharp), 1)
        focus_distribution = _focus_distribution(tile_sharp, sharp_fraction)

        grad_x = np.abs(np.diff(gray, axis=1)).mean()
        grad_y = np.abs(np.diff(gray, axis=0)).mean()
        blur_type = _blur_type(sharpness, float(grad_x), float(grad_y))

        pixels = gray.size
        highlights = float((gray >= CLIP_HIGH).sum()) / pixels
        shadows = float((gray <= CLIP_LOW).sum()) / pixels
        low, high = np.percentile(gray, [1, 99])
        dynamic_range = math.log2((float(high) + 1) / (float(low) + 1))
        mean = float(gray.mean())

        hsv = np.asarray(image.convert("HSV"), dtype=np.float64)
        saturation = float(hsv[..., 1].mean()) / 25.5
        residual = laplacian / 4
        noise_level = min(10.0, float(np.median(np.abs(residual))) / 2)

        intent = _guess_intent(
            blur_type, blur_amount, sharp_fraction, focus_distribution
        )
        return TechnicalMetrics(
            sharpness=sharpness,
            blur_amount=blur_amount,
            blur_type=blur_type,
            focus_distribution=focus_distribution,
            sharp_fraction=sharp_fraction,
            exposure=_exposure(mean, highlights, shadows),
            highlights_clipped=highlights,
            shadows_clipped=shadows,
            dynamic_range=dynamic_range,
            contrast=float(gray.std()) / 25.5,
            saturation=saturation,
            is_monochrome=saturation < SATURATION_MONO,
            noise_level=noise_level,
            intent=intent,
            analysis_seconds=time.monotonic() - started,
        )


def _focus_distribution(
    tile_sharp: dict[tuple[int, int], bool], fraction: float
) -> str:
    if fraction >= 0.75:  # noqa: PLR2004
        return "uniform"
    if fraction == 0:
        return "none"
    center = [tile_sharp.get(key, False) for key in ((1, 1), (1, 2), (2, 1), (2, 2))]
    if any(center) and fraction <= 0.5:  # noqa: PLR2004
        return "center"
    return "partial"


def _blur_type(sharpness: float, grad_x: float, grad_y: float) -> str:
    if sharpness >= 6:  # noqa: PLR2004
        return "none"
    ratio = max(grad_x, grad_y) / max(min(grad_x, grad_y), 1e-6)
    if ratio >= MOTION_RATIO:
        return "motion"
    return "gaussian"


def _exposure(mean: float, highlights: float, shadows: float) -> str:
    if mean > 190 or highlights > CLIP_WARNING:  # noqa: PLR2004
        return "overexposed"
    if mean < 60 or shadows > CLIP_WARNING:  # noqa: PLR2004
        return "underexposed"
    return "balanced"


def _guess_intent(
    blur_type: str, blur_amount: float, sharp_fraction: float, focus: str
) -> ArtisticIntent:
    if blur_type == "motion" and sharp_fraction > 0.1:  # noqa: PLR2004
        return ArtisticIntent(
            technique="panning",
            confidence=0.6,
            evidence=(
                "Directional blur across the frame",
                f"{sharp_fraction:.0%} of the frame remains sharp",
            ),
        )
    if focus == "center" and blur_amount > 0.3:  # noqa: PLR2004
        return ArtisticIntent(
            technique="shallow_depth_of_field",
            confidence=0.7,
            evidence=(
                "Sharp central subject",
                "Soft surrounding areas",
            ),
        )
    if blur_type == "motion":
        return ArtisticIntent(
            technique="intentional_camera_movement",
            confidence=0.4,
            evidence=("Directional blur with no sharp region",),
        )
    return ArtisticIntent()


@dataclass
class GradientSaliencyAnalyzer:
    """Approximates visual attention from local gradient energy."""

    max_dimension: int = 512
    min_energy: float = 0.1

    def analyze(self, artifact: bytes) -> SaliencySummary | None:
        image = _open_image(artifact)
        image.thumbnail((self.max_dimension, self.max_dimension))
        gray = np.asarray(image.convert("L"), dtype=np.float64)
        if min(gray.shape) < 2:  # noqa: PLR2004
            return None
        energy = np.hypot(np.diff(gray, axis=1)[:-1, :], np.diff(gray, axis=0)[:, :-1])
        total = float(energy.sum())
        if total / energy.size < self.min_energy:
            return None

        height, width = energy.shape
        rows, cols = np.indices(energy.shape)
        center = Point(
            x=float((cols * energy).sum() / total / width),
            y=float((rows * energy).sum() / total / height),
        )
        peak_row, peak_col = np.unravel_index(int(energy.argmax()), energy.shape)
        highest = Point(x=peak_col / width, y=peak_row / height)

        ranked = sorted(
            _tiles(energy), key=lambda item: float(item[2].sum()), reverse=True
        )
        hotspots = tuple(
            Region(x=col / GRID, y=row / GRID, width=1 / GRID, height=1 / GRID)
            for row, col, _tile in ranked[:3]
        )
        return SaliencySummary(
            hotspots=hotspots,
            composition_pattern=_composition_pattern(center),
            highest_point=highest,
            center_of_mass=center,
        )


def _composition_pattern(center: Point) -> str:
    def near_third(value: float) -> bool:
        return min(abs(value - 1 / 3), abs(value - 2 / 3)) < THIRDS_TOLERANCE

    if max(abs(center.x - 0.5), abs(center.y - 0.5)) < THIRDS_TOLERANCE:
        return "centered"
    if near_third(center.x) or near_third(center.y):
        return "rule_of_thirds"
    if min(center.x, 1 - center.x, center.y, 1 - center.y) < 0.2:  # noqa: PLR2004
        return "edge_weighted"
    return "balanced"
