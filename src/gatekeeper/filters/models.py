"""Admission filter models.

FilterConfig is immutable: hot-swapping configuration replaces the whole
object. NormalizedEvent is the provider-neutral view of a pull/merge request
the rules read. A FilterDecision is either Skip (with the reason and the rule
that fired) or Process.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class FilterConfig(BaseModel):
    """Named admission rule parameters.

    Attributes:
        skip_draft_prs: Skip draft pull requests.
        skip_target_branches: Regexes; skip when the target branch matches.
        skip_source_branches: Regexes; skip when the source branch matches.
        skip_labels: Skip when the event carries any of these labels.
        require_labels: When non-empty, skip unless the event carries one.
        skip_paths: Globs; skip when every changed path matches one.
        require_paths: Globs; skip when no changed path matches one.
        max_files_threshold: Skip when more files than this changed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    skip_draft_prs: bool = True
    skip_target_branches: List[str] = Field(default_factory=list)
    skip_source_branches: List[str] = Field(default_factory=list)
    skip_labels: List[str] = Field(default_factory=list)
    require_labels: List[str] = Field(default_factory=list)
    skip_paths: List[str] = Field(default_factory=list)
    require_paths: List[str] = Field(default_factory=list)
    max_files_threshold: int = Field(default=500, ge=0)

    @property
    def has_path_rules(self) -> bool:
        return bool(self.skip_paths or self.require_paths)


class NormalizedEvent(BaseModel):
    """Provider-neutral pull request event.

    Attributes:
        is_draft: Whether the change is still a draft.
        source_branch: Branch the change comes from.
        target_branch: Branch the change merges into.
        labels: Label names on the change.
        changed_file_count: Number of files changed.
        changed_paths: Changed file paths, empty when not yet known.
        scope_id: Credential scope for provider calls (installation id).
        repository: "{owner}/{repo}" of the change.
        number: Pull request number.
        action: Provider action that produced the event.
    """

    model_config = ConfigDict(frozen=True)

    is_draft: bool = False
    source_branch: str = ""
    target_branch: str = ""
    labels: FrozenSet[str] = Field(default_factory=frozenset)
    changed_file_count: int = Field(default=0, ge=0)
    changed_paths: List[str] = Field(default_factory=list)

    scope_id: Optional[str] = None
    repository: Optional[str] = None
    number: Optional[int] = None
    action: Optional[str] = None


@dataclass(frozen=True)
class Skip:
    """The event should not be processed.

    Attributes:
        reason: Human-readable explanation.
        rule: Name of the rule that fired.
    """

    reason: str
    rule: str

    @property
    def skipped(self) -> bool:
        return True


@dataclass(frozen=True)
class Process:
    """The event passed every rule."""

    @property
    def skipped(self) -> bool:
        return False


FilterDecision = Union[Skip, Process]


class FilterInfo(BaseModel):
    """Structured description of a filter decision for response bodies."""

    skipped: bool
    filter_name: str
    reason: str


def create_filter_info(decision: FilterDecision) -> FilterInfo:
    """Render a decision as the body of a "skipped" webhook response."""
    if isinstance(decision, Skip):
        return FilterInfo(skipped=True, filter_name=decision.rule, reason=decision.reason)
    return FilterInfo(skipped=False, filter_name="none", reason="Processed")


# Presets for common setups
DEFAULT_FILTERS: Dict[str, FilterConfig] = {
    # Code review: skip drafts and docs-only changes
    "code_review": FilterConfig(
        skip_draft_prs=True,
        skip_paths=["*.md", "docs/**", ".github/**", "LICENSE", "CHANGELOG*"],
        max_files_threshold=500,
    ),
    # Only review changes explicitly labelled for it
    "label_required": FilterConfig(
        skip_draft_prs=True,
        require_labels=["ready-for-review", "needs-review"],
        max_files_threshold=300,
    ),
    "minimal": FilterConfig(
        skip_draft_prs=False,
        max_files_threshold=1000,
    ),
}
