"""Matching engine configuration."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class MatchingConfig(BaseModel):
    """Thresholds and windows for the attribution tiers."""

    exact_lookback_days: int = 90
    fuzzy_lookback_days: int = 30
    statistical_lookback_days: int = 90

    fuzzy_min_score: int = 40
    fuzzy_confidence_cap: int = 80
    statistical_confidence_cap: int = 30
    default_conversion_rate: float = 0.02
    lead_form_confidence: int = 90

    # Bulk summaries count results below this as "no attribution"
    low_confidence_threshold: int = 20

    # Concurrent purchases per batch (1 = sequential)
    max_workers: int = Field(default=1, ge=1)

    @classmethod
    def from_env(cls) -> MatchingConfig:
        """Load configuration from CLICKMATCH_* environment variables."""
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(f"CLICKMATCH_{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)
