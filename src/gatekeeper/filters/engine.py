"""Admission filter engine.

Decides whether a normalized pull request event should be processed. Rules
run in a fixed order and the first one that fires determines the Skip:

    1. draft           draft events, when skip_draft_prs is set
    2. target_branch   target branch matches a skip regex
    3. source_branch   source branch matches a skip regex
    4. skip_labels     event carries a skip label (case-insensitive)
    5. require_labels  event carries none of the required labels
    6. file_count      more files changed than max_files_threshold
    7. skip_paths      every changed path matches a skip glob
    8. require_paths   no changed path matches a required glob

Evaluation is pure and performs no I/O, so it is safe on the request path.
Bad patterns never raise; see patterns.py.
"""

from typing import Any, Callable, Optional, Sequence, Tuple

import structlog

from src.gatekeeper.filters.models import (
    FilterConfig,
    FilterDecision,
    NormalizedEvent,
    Process,
    Skip,
)
from src.gatekeeper.filters.patterns import matches_glob, matches_pattern


logger = structlog.get_logger(__name__)

Rule = Callable[[NormalizedEvent, FilterConfig], Optional[Skip]]


def check_draft(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    if config.skip_draft_prs and event.is_draft:
        return Skip(reason="PR is a draft", rule="draft")
    return None


def _check_branch(
    branch: str,
    patterns: Sequence[str],
    kind: str,
    rule: str,
) -> Optional[Skip]:
    for pattern in patterns:
        if matches_pattern(branch, pattern):
            return Skip(
                reason=f"{kind} branch '{branch}' matches skip pattern '{pattern}'",
                rule=rule,
            )
    return None


def check_target_branch(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    return _check_branch(
        event.target_branch, config.skip_target_branches, "Target", "target_branch"
    )


def check_source_branch(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    return _check_branch(
        event.source_branch, config.skip_source_branches, "Source", "source_branch"
    )


def check_skip_labels(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    event_labels = {label.lower() for label in event.labels}
    for skip_label in config.skip_labels:
        if skip_label.lower() in event_labels:
            return Skip(reason=f"PR has skip label '{skip_label}'", rule="skip_labels")
    return None


def check_require_labels(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    if not config.require_labels:
        return None
    event_labels = {label.lower() for label in event.labels}
    if any(required.lower() in event_labels for required in config.require_labels):
        return None
    return Skip(
        reason=f"PR missing required labels: {', '.join(config.require_labels)}",
        rule="require_labels",
    )


def check_file_count(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    if event.changed_file_count > config.max_files_threshold:
        return Skip(
            reason=(
                f"PR has {event.changed_file_count} files "
                f"(threshold: {config.max_files_threshold})"
            ),
            rule="file_count",
        )
    return None


def check_skip_paths(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    if not event.changed_paths or not config.skip_paths:
        return None
    all_skippable = all(
        any(matches_glob(path, glob) for glob in config.skip_paths)
        for path in event.changed_paths
    )
    if all_skippable:
        return Skip(reason="All changed files match skip patterns", rule="skip_paths")
    return None


def check_require_paths(event: NormalizedEvent, config: FilterConfig) -> Optional[Skip]:
    if not config.require_paths:
        return None
    has_required = any(
        matches_glob(path, glob)
        for path in event.changed_paths
        for glob in config.require_paths
    )
    if not has_required:
        return Skip(
            reason=f"No files match required patterns: {', '.join(config.require_paths)}",
            rule="require_paths",
        )
    return None


# Evaluation order; the first rule returning a Skip wins
RULES: Tuple[Rule, ...] = (
    check_draft,
    check_target_branch,
    check_source_branch,
    check_skip_labels,
    check_require_labels,
    check_file_count,
    check_skip_paths,
    check_require_paths,
)


def evaluate(event: NormalizedEvent, config: FilterConfig) -> FilterDecision:
    """Run every rule in order against event.

    Args:
        event: The normalized event.
        config: The rule parameters.

    Returns:
        The Skip from the first rule that fires, otherwise Process().
    """
    for rule in RULES:
        decision = rule(event, config)
        if decision is not None:
            return decision
    return Process()


class AdmissionFilterEngine:
    """Holds the current FilterConfig and evaluates events against it.

    Configuration is swapped by replacement; a reader always sees either
    the old or the new config, never a mix. Concurrent updates are
    last-writer-wins.

    Example:
        >>> engine = AdmissionFilterEngine(FilterConfig(skip_labels=["wip"]))
        >>> engine.evaluate(NormalizedEvent(labels={"WIP"}))
        Skip(reason="PR has skip label 'wip'", rule='skip_labels')
    """

    def __init__(self, config: Optional[FilterConfig] = None) -> None:
        self._config = config if config is not None else FilterConfig()

    def evaluate(self, event: NormalizedEvent) -> FilterDecision:
        decision = evaluate(event, self._config)
        if isinstance(decision, Skip):
            logger.debug(
                "Event skipped by admission filter",
                rule=decision.rule,
                reason=decision.reason,
                repository=event.repository,
                number=event.number,
            )
        return decision

    def get_config(self) -> FilterConfig:
        """Return the current configuration."""
        return self._config

    def update_config(self, **changes: Any) -> FilterConfig:
        """Replace the configuration with a copy carrying changes.

        Raises:
            pydantic.ValidationError: If a change is not a valid field value.
        """
        merged = {**self._config.model_dump(), **changes}
        self._config = FilterConfig.model_validate(merged)
        return self._config

    def replace_config(self, config: FilterConfig) -> None:
        """Swap in a whole new configuration."""
        self._config = config
