from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "EVALTRACE_"

DEFAULT_EVALUATABLE_STATUSES = ("under_evaluation", "short_list", "selected")
CONSENSUS_POLICIES = ("first", "mean", "min", "max")


def _default_database_path() -> Path:
    return Path(__file__).parent / "data" / "evaltrace.db"


class Settings(BaseModel):
    database_path: Path = Field(default_factory=_default_database_path)

    # RAG classification
    rag_green_threshold: float = 4.0
    rag_amber_threshold: float = 3.0

    # Data loading
    evaluatable_statuses: tuple[str, ...] = DEFAULT_EVALUATABLE_STATUSES
    submitted_scores_only: bool = False

    # Cell resolution when several linked criteria carry a consensus score
    consensus_policy: str = "first"

    # Insight rules
    progress_medium_below_percent: float = 50.0
    coverage_gap_medium_percent: float = 20.0
    coverage_gap_high_percent: float = 50.0
    category_leader_min_average: float = 4.0
    consensus_stdev_threshold: float = 1.0
    risk_min_vendors: int = 2
    risk_all_below: float = 3.0
    risk_average_below: float = 2.5

    # Display / validation
    gap_display_limit: int = 5
    gap_list_limit: int = 50
    category_weight_total: float = 100.0

    @field_validator("consensus_policy")
    @classmethod
    def policy_must_be_known(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in CONSENSUS_POLICIES:
            raise ValueError(f"consensus_policy must be one of {', '.join(CONSENSUS_POLICIES)}")
        return v

    @field_validator("evaluatable_statuses", mode="before")
    @classmethod
    def split_statuses(cls, v: Any) -> Any:
        if isinstance(v, str):
            return tuple(s.strip() for s in v.split(",") if s.strip())
        return v


def _env_overrides() -> dict[str, str]:
    """Collect ``EVALTRACE_*`` variables whose suffix names a Settings field."""
    out: dict[str, str] = {}
    for name in Settings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}", "").strip()
        if raw:
            out[name] = raw
    return out


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(**_env_overrides())
