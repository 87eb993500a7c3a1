"""Tests for domain models."""
from datetime import datetime, timezone

import pytest

from repo_timeline.domain.exceptions import InvalidOptionsError
from repo_timeline.domain.models import (
    AnalyzeOptions,
    ChangeType,
    CommitRecord,
    CommitStats,
    ContentRequest,
    FileChange,
    PageResult,
    Repository,
    RepositoryStatus,
    parse_timestamp,
)


def test_repository_creation():
    """Test creating an immutable Repository entity."""
    repo = Repository(
        url="https://github.com/facebook/react.git",
        name="react",
        local_path="/tmp/repos/abc",
    )

    assert repo.name == "react"
    assert repo.status == RepositoryStatus.PENDING
    assert repo.analyze_progress == 0
    assert repo.can_load_more is False
    assert repo.repo_id is None


def test_repository_with_id():
    """Test adding ID to repository."""
    repo = Repository(url="https://github.com/facebook/react", name="react", local_path="/tmp/r")

    repo_with_id = repo.with_id(42)

    assert repo_with_id.repo_id == 42
    assert repo_with_id.url == repo.url
    assert repo.repo_id is None  # Original unchanged (immutability)


@pytest.mark.parametrize("url, expected", [
    ("https://github.com/facebook/react.git", "react"),
    ("https://github.com/facebook/react/", "react"),
    ("git@github.com:facebook/react.git", "react"),
    ("file:///srv/git/project", "project"),
])
def test_repository_name_from_url(url, expected):
    assert Repository.name_from_url(url) == expected


def test_repository_echoes_options():
    options = AnalyzeOptions(depth=100, since="2024-01-01T00:00:00Z", path_filters=("src/",))
    repo = Repository(url="u", name="n", local_path="p").with_options(options)

    assert repo.analyze_depth == 100
    assert repo.analyze_since == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert repo.analyze_path_filters == ("src/",)
    assert repo.analyze_options().depth == 100


def test_commit_record_short_hash_and_stats():
    commit = CommitRecord(
        commit_hash="a" * 40,
        author_name="Alice",
        author_email="alice@example.com",
        message="initial",
        commit_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        commit_order=1,
    )

    assert commit.short_hash == "aaaaaaa"
    assert not commit.has_stats

    with_stats = commit.with_stats(CommitStats.of(10, 2, 3))
    assert with_stats.has_stats
    assert (with_stats.additions, with_stats.deletions, with_stats.files_changed) == (10, 2, 3)
    assert commit.additions is None


def test_file_change_name_and_extension():
    change = FileChange(file_path="src/pkg/module.py", change_type=ChangeType.MODIFY)
    assert change.file_name == "module.py"
    assert change.file_extension == "py"

    assert FileChange(file_path="Makefile", change_type=ChangeType.ADD).file_extension is None
    long_ext = FileChange(file_path="a.averyveryverylongext", change_type=ChangeType.ADD)
    assert long_ext.file_extension == "averyveryv"


def test_commit_stats_unavailable():
    stats = CommitStats.unavailable()
    assert stats.calculated is False
    assert (stats.additions, stats.deletions, stats.files_changed) == (0, 0, 0)


def test_content_request_key():
    assert ContentRequest("abc", "src/a.py").key == "abc:src/a.py"


def test_page_result_pages():
    assert PageResult(items=[], total=41, page=1, page_size=20).pages == 3
    assert PageResult(items=[], total=0, page=1, page_size=20).pages == 0


class TestAnalyzeOptions:
    def test_defaults_match_recommended_preset(self):
        assert AnalyzeOptions() == AnalyzeOptions.recommended()
        assert AnalyzeOptions().depth == 500

    def test_presets(self):
        assert AnalyzeOptions.fast().depth == 100
        assert AnalyzeOptions.deep().depth == 2000
        full = AnalyzeOptions.full()
        assert full.depth == -1
        assert full.shallow is False

    def test_effective_clone_depth(self):
        assert AnalyzeOptions(depth=100).effective_clone_depth == 100
        assert AnalyzeOptions(depth=-1, shallow=True).effective_clone_depth == 10000
        assert AnalyzeOptions(depth=-1, shallow=False).effective_clone_depth == 0

    def test_effective_analyze_depth(self):
        assert AnalyzeOptions(depth=100).effective_analyze_depth == 100
        assert AnalyzeOptions.full().effective_analyze_depth is None

    @pytest.mark.parametrize("depth", [0, -2])
    def test_invalid_depth(self, depth):
        with pytest.raises(InvalidOptionsError):
            AnalyzeOptions(depth=depth)

    def test_since_after_until_rejected(self):
        with pytest.raises(InvalidOptionsError):
            AnalyzeOptions(since="2024-02-01T00:00:00Z", until="2024-01-01T00:00:00Z")

    def test_blank_filters_dropped(self):
        assert AnalyzeOptions(path_filters=(" src/ ", "", "  ")).path_filters == ("src/",)

    def test_from_dict_camel_case(self):
        options = AnalyzeOptions.from_dict({
            "depth": "200",
            "since": "2024-01-01T00:00:00Z",
            "until": "2024-06-30T12:00:00+02:00",
            "pathFilters": ["src/", "*.md"],
            "shallow": "false",
            "singleBranch": True,
        })

        assert options.depth == 200
        assert options.since == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert options.until == datetime(2024, 6, 30, 10, 0, tzinfo=timezone.utc)
        assert options.path_filters == ("src/", "*.md")
        assert options.shallow is False
        assert options.single_branch is True

    def test_from_dict_empty_gives_defaults(self):
        assert AnalyzeOptions.from_dict(None) == AnalyzeOptions()
        assert AnalyzeOptions.from_dict({}) == AnalyzeOptions()

    def test_from_dict_rejects_bad_values(self):
        with pytest.raises(InvalidOptionsError):
            AnalyzeOptions.from_dict({"depth": "many"})
        with pytest.raises(InvalidOptionsError):
            AnalyzeOptions.from_dict({"shallow": "sometimes"})
        with pytest.raises(InvalidOptionsError):
            AnalyzeOptions.from_dict({"since": "yesterday"})

    def test_to_dict_uses_wire_names(self):
        data = AnalyzeOptions(depth=50, path_filters=("src/",)).to_dict()
        assert data == {
            "depth": 50,
            "since": None,
            "until": None,
            "pathFilters": ["src/"],
            "shallow": True,
            "singleBranch": True,
        }


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2024-03-01T08:30:00") == datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert parse_timestamp(None) is None
