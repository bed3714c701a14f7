"""Evaluation prompt loading."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

_logger = logging.getLogger(__name__)

DEFAULT_EVALUATION_PROMPT = """\
You are an experienced nature photography curator and stock photo reviewer.
Evaluate the attached photograph and respond with a single JSON object with
these keys:

- composition_score, quality_score, sellability_score, artistic_score:
  numbers from 0 to 10
- overall_weighted_score: composition 30%, quality 25%, sellability 25%,
  artistic merit 20%
- primary_placement: one of PORTFOLIO, STORE, BOTH, ARCHIVE, PRACTICE
- strengths, improvements: non-empty lists of short sentences
- market_comparison: one paragraph
- technical_innovations (list), print_size_recommendation,
  price_tier_suggestion: optional

When primary_placement is STORE or BOTH also include title, description,
keywords (list), alt_text, suggested_categories (list), best_use_cases (list)
and suggested_price_tier.
"""


@dataclass
class FilePromptSource:
    """Reads the evaluation prompt from a file, falling back to the default."""

    path: Path | None = None
    _cached: str | None = field(default=None, init=False, repr=False)

    def load_evaluation_prompt(self) -> str:
        if self._cached is not None:
            return self._cached
        prompt = DEFAULT_EVALUATION_PROMPT
        if self.path is not None:
            try:
                prompt = self.path.read_text(encoding="utf-8")
            except OSError:
                _logger.warning(
                    "Could not read prompt file %s, using default prompt", self.path
                )
        self._cached = prompt
        return prompt
