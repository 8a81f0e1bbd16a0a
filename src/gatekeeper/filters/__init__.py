"""Admission filtering: decides Skip or Process for a normalized event.

Rules run in a fixed precedence and short-circuit on the first Skip.
Invalid patterns degrade to literal matching instead of raising.
"""

from src.gatekeeper.filters.engine import RULES, AdmissionFilterEngine, evaluate
from src.gatekeeper.filters.models import (
    DEFAULT_FILTERS,
    FilterConfig,
    FilterDecision,
    FilterInfo,
    NormalizedEvent,
    Process,
    Skip,
    create_filter_info,
)
from src.gatekeeper.filters.patterns import glob_to_regex, matches_glob, matches_pattern

__all__ = [
    # Models
    "DEFAULT_FILTERS",
    "FilterConfig",
    "FilterDecision",
    "FilterInfo",
    "NormalizedEvent",
    "Process",
    "Skip",
    "create_filter_info",
    # Engine
    "AdmissionFilterEngine",
    "RULES",
    "evaluate",
    # Patterns
    "glob_to_regex",
    "matches_glob",
    "matches_pattern",
]
