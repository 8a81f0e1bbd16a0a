"""Unit tests for the admission filter engine and pattern matching."""

import pytest
from pydantic import ValidationError

from src.gatekeeper.filters import (
    DEFAULT_FILTERS,
    AdmissionFilterEngine,
    FilterConfig,
    NormalizedEvent,
    Process,
    Skip,
    create_filter_info,
    evaluate,
    glob_to_regex,
    matches_glob,
    matches_pattern,
)


def _event(**overrides):
    fields = {
        "is_draft": False,
        "source_branch": "feature/login",
        "target_branch": "main",
        "labels": frozenset(),
        "changed_file_count": 3,
        "changed_paths": [],
    }
    fields.update(overrides)
    return NormalizedEvent(**fields)


class TestGlobMatching:
    @pytest.mark.parametrize(
        "path,glob,expected",
        [
            ("docs/x.md", "docs/**", True),
            ("src/docs/x.md", "docs/**", False),
            ("readme.md.bak", "*.md", False),
            ("docs/guide/x.md", "docs/**", True),
            ("src/a.ts", "docs/**", False),
            ("README.md", "*.md", True),
            ("docs/README.md", "*.md", False),
            ("docs/README.md", "**/*.md", True),
            ("README.md", "**/*.md", True),
            ("a/b/c/d.py", "a/**/d.py", True),
            ("a/d.py", "a/**/d.py", True),
            ("LICENSE", "LICENSE", True),
            ("CHANGELOG.md", "CHANGELOG*", True),
            ("src/file.md", "src/*.md", True),
            ("src/sub/file.md", "src/*.md", False),
            ("filexmd", "file.md", False),
        ],
    )
    def test_matches_glob(self, path, glob, expected):
        assert matches_glob(path, glob) is expected

    def test_glob_to_regex(self):
        assert glob_to_regex("docs/**") == "docs/.*"
        assert glob_to_regex("*.md") == r"[^/]*\.md"
        assert glob_to_regex("**/x") == "(?:.*/)?x"


class TestBranchPatterns:
    def test_regex_searches_anywhere(self):
        assert matches_pattern("release/1.0", "^release/")
        assert matches_pattern("my-wip-branch", "wip")
        assert not matches_pattern("main", "^release/")

    def test_invalid_regex_degrades_to_exact_match(self):
        assert matches_pattern("feat[", "feat[")
        assert not matches_pattern("feature", "feat[")


class TestEvaluate:
    def test_default_config_processes(self):
        assert evaluate(_event(), FilterConfig()) == Process()

    def test_draft_skipped_by_default(self):
        decision = evaluate(_event(is_draft=True), FilterConfig())
        assert decision == Skip(reason="PR is a draft", rule="draft")
        assert decision.skipped

    def test_draft_allowed_when_disabled(self):
        decision = evaluate(_event(is_draft=True), FilterConfig(skip_draft_prs=False))
        assert isinstance(decision, Process)

    def test_draft_takes_precedence_over_labels(self):
        config = FilterConfig(require_labels=["needs-review"])
        decision = evaluate(_event(is_draft=True, labels=frozenset()), config)
        assert decision.rule == "draft"

    def test_target_branch_pattern(self):
        config = FilterConfig(skip_target_branches=["^release/"])
        decision = evaluate(_event(target_branch="release/2.0"), config)
        assert decision.rule == "target_branch"
        assert "release/2.0" in decision.reason

    def test_source_branch_pattern(self):
        config = FilterConfig(skip_source_branches=["^dependabot/"])
        decision = evaluate(_event(source_branch="dependabot/npm/lodash"), config)
        assert decision.rule == "source_branch"

    def test_skip_label_case_insensitive(self):
        config = FilterConfig(skip_labels=["wip"])
        decision = evaluate(_event(labels=frozenset({"WIP"})), config)
        assert decision.rule == "skip_labels"

    def test_require_labels_missing(self):
        config = FilterConfig(require_labels=["ready-for-review", "needs-review"])
        decision = evaluate(_event(labels=frozenset({"bug"})), config)
        assert decision.rule == "require_labels"

    def test_require_labels_any_one_suffices(self):
        config = FilterConfig(require_labels=["ready-for-review", "needs-review"])
        decision = evaluate(_event(labels=frozenset({"Needs-Review"})), config)
        assert isinstance(decision, Process)

    def test_skip_label_checked_before_require_label(self):
        config = FilterConfig(skip_labels=["wip"], require_labels=["needs-review"])
        decision = evaluate(_event(labels=frozenset({"wip", "needs-review"})), config)
        assert decision.rule == "skip_labels"

    @pytest.mark.parametrize("count,skipped", [(500, False), (501, True)])
    def test_file_count_threshold(self, count, skipped):
        decision = evaluate(_event(changed_file_count=count), FilterConfig())
        assert decision.skipped is skipped
        if skipped:
            assert decision.rule == "file_count"

    def test_docs_only_change_skipped(self):
        config = DEFAULT_FILTERS["code_review"]
        event = _event(changed_paths=["README.md", "docs/guide.md"])
        decision = evaluate(event, config)
        assert decision.rule == "skip_paths"

    def test_mixed_change_processed(self):
        config = DEFAULT_FILTERS["code_review"]
        event = _event(changed_paths=["README.md", "src/app.py"])
        assert isinstance(evaluate(event, config), Process)

    def test_skip_paths_ignored_without_paths(self):
        config = FilterConfig(skip_paths=["*.md"])
        assert isinstance(evaluate(_event(changed_paths=[]), config), Process)

    def test_require_paths_none_match(self):
        config = FilterConfig(require_paths=["src/**"])
        decision = evaluate(_event(changed_paths=["docs/a.md"]), config)
        assert decision.rule == "require_paths"

    def test_require_paths_one_match(self):
        config = FilterConfig(require_paths=["src/**"])
        event = _event(changed_paths=["docs/a.md", "src/main.py"])
        assert isinstance(evaluate(event, config), Process)

    def test_require_paths_with_no_known_paths_skips(self):
        config = FilterConfig(require_paths=["src/**"])
        decision = evaluate(_event(changed_paths=[]), config)
        assert decision.rule == "require_paths"

    def test_regex_metacharacters_in_globs_are_literal(self):
        config = FilterConfig(skip_paths=["[unclosed", "a+b.txt"])
        decision = evaluate(_event(changed_paths=["[unclosed", "a+b.txt"]), config)
        assert decision.rule == "skip_paths"
        assert isinstance(
            evaluate(_event(changed_paths=["aab.txt"]), config), Process
        )


class TestDefaultFilters:
    def test_presets(self):
        assert set(DEFAULT_FILTERS) == {"code_review", "label_required", "minimal"}
        assert DEFAULT_FILTERS["minimal"].skip_draft_prs is False
        assert DEFAULT_FILTERS["minimal"].max_files_threshold == 1000
        assert DEFAULT_FILTERS["label_required"].max_files_threshold == 300


class TestAdmissionFilterEngine:
    def test_uses_default_config(self):
        engine = AdmissionFilterEngine()
        assert engine.get_config() == FilterConfig()

    def test_update_config_replaces(self):
        engine = AdmissionFilterEngine()
        before = engine.get_config()

        after = engine.update_config(skip_labels=["wip"])

        assert after.skip_labels == ["wip"]
        assert before.skip_labels == []
        assert engine.get_config() is after
        assert engine.evaluate(_event(labels=frozenset({"wip"}))).rule == "skip_labels"

    def test_update_config_keeps_other_fields(self):
        engine = AdmissionFilterEngine(FilterConfig(max_files_threshold=10))
        engine.update_config(skip_draft_prs=False)
        assert engine.get_config().max_files_threshold == 10

    def test_update_config_rejects_unknown_field(self):
        engine = AdmissionFilterEngine()
        with pytest.raises(ValidationError):
            engine.update_config(not_a_rule=True)

    def test_replace_config(self):
        engine = AdmissionFilterEngine()
        engine.replace_config(DEFAULT_FILTERS["minimal"])
        assert isinstance(engine.evaluate(_event(is_draft=True)), Process)

    def test_config_is_immutable(self):
        config = FilterConfig()
        with pytest.raises(ValidationError):
            config.skip_draft_prs = False


class TestFilterInfo:
    def test_skip_info(self):
        info = create_filter_info(Skip(reason="PR is a draft", rule="draft"))
        assert info.skipped
        assert info.filter_name == "draft"
        assert info.reason == "PR is a draft"

    def test_process_info(self):
        info = create_filter_info(Process())
        assert not info.skipped
