"""Filesystem storage for processed images."""

from dataclasses import dataclass
from pathlib import Path

from nature_eval.domain.errors import ArtifactNotFoundError
from nature_eval.domain.evaluations import ImageRecord
from nature_eval.services.pipeline import ArtifactStore


@dataclass
class FileArtifactStore(ArtifactStore):
    """Reads processed images from disk, relative to ``root`` when not absolute."""

    root: Path | None = None

    def load_processed_artifact(self, image: ImageRecord) -> bytes:
        """Return the processed image bytes for an image."""
        if not image.processed_path:
            raise ArtifactNotFoundError()
        path = Path(image.processed_path)
        if not path.is_absolute() and self.root is not None:
            path = self.root / path
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError() from exc
        except OSError as exc:
            raise ArtifactNotFoundError(f"Processed image unreadable: {exc}") from exc
