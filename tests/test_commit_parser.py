"""Tests for commit history parsing against real repositories."""
from datetime import datetime, timezone

import pytest

from repo_timeline.domain.exceptions import ParseError
from repo_timeline.domain.models import AnalyzeOptions
from repo_timeline.infrastructure.commit_parser import CommitHistoryParser
from tests.conftest import BASE_TIME, LINEAR_HISTORY_SIZE, git, requires_git


pytestmark = requires_git


@pytest.fixture
def parser():
    return CommitHistoryParser(progress_interval=50)


def test_orders_commits_oldest_first(parser, sample_repo):
    commits = parser.parse_commits_with_options(str(sample_repo.path), AnalyzeOptions(depth=-1))

    assert [c.message for c in commits] == [
        "initial layout",
        "update app",
        "rename guide",
        "feature work",
        "drop readme",
        "merge feature",
    ]
    assert [c.commit_order for c in commits] == [1, 2, 3, 4, 5, 6]
    times = [c.commit_time for c in commits]
    assert times == sorted(times)


def test_reads_commit_fields(parser, sample_repo):
    commits = parser.parse_commits_with_options(str(sample_repo.path), AnalyzeOptions(depth=-1))
    first, second = commits[0], commits[1]

    assert first.parent_hash is None
    assert first.author_name == "Alice"
    assert first.author_email == "alice@example.com"
    assert first.commit_time == datetime.fromtimestamp(BASE_TIME + 3600, tz=timezone.utc)
    assert len(first.commit_hash) == 40
    assert second.parent_hash == first.commit_hash
    assert second.author_name == "Bob"
    assert first.additions is None


def test_merge_keeps_first_parent(parser, sample_repo):
    commits = parser.parse_commits_with_options(str(sample_repo.path), AnalyzeOptions(depth=-1))
    merge = commits[-1]
    drop_readme = commits[-2]

    assert merge.is_merge
    assert merge.parent_hash == drop_readme.commit_hash
    assert not any(c.is_merge for c in commits[:-1])


def test_depth_keeps_most_recent(parser, sample_repo):
    commits = parser.parse_commits_with_options(str(sample_repo.path), AnalyzeOptions(depth=2))

    assert [c.message for c in commits] == ["drop readme", "merge feature"]
    assert [c.commit_order for c in commits] == [1, 2]


def test_time_window_is_inclusive(parser, sample_repo):
    since = datetime.fromtimestamp(sample_repo.timestamp(2), tz=timezone.utc)
    until = datetime.fromtimestamp(sample_repo.timestamp(4), tz=timezone.utc)

    commits = parser.parse_commits_with_options(
        str(sample_repo.path), AnalyzeOptions(depth=-1, since=since, until=until)
    )

    assert [c.message for c in commits] == ["update app", "rename guide", "feature work"]
    assert [c.commit_order for c in commits] == [1, 2, 3]


def test_path_filters_exclude_unrelated_commits(parser, sample_repo):
    commits = parser.parse_commits_with_options(
        str(sample_repo.path), AnalyzeOptions(depth=-1, path_filters=("docs/",))
    )

    assert [c.message for c in commits] == ["initial layout", "rename guide"]


def test_path_filters_see_merge_changes_against_first_parent(parser, sample_repo):
    commits = parser.parse_commits_with_options(
        str(sample_repo.path), AnalyzeOptions(depth=-1, path_filters=("src/feature.py",))
    )

    assert [c.message for c in commits] == ["feature work", "merge feature"]


def test_filters_apply_before_depth(parser, linear_history):
    commits = parser.parse_commits_with_options(
        str(linear_history), AnalyzeOptions(depth=10, path_filters=("src/",))
    )

    assert len(commits) == 10
    # Even commits touch src/; the newest ten of them
    assert [c.message for c in commits] == [f"commit {i}" for i in range(LINEAR_HISTORY_SIZE - 18, LINEAR_HISTORY_SIZE + 1, 2)]
    assert [c.commit_order for c in commits] == list(range(1, 11))


def test_progress_reported_in_steps(parser, linear_history):
    reported = []
    commits = parser.parse_commits_with_options(str(linear_history), AnalyzeOptions(depth=-1), reported.append)

    assert len(commits) == LINEAR_HISTORY_SIZE
    assert reported[-1] == 100
    assert len(reported) == LINEAR_HISTORY_SIZE // 50
    assert reported == sorted(reported)


def test_empty_repository_has_no_commits(parser, tmp_path):
    git(tmp_path, "init", "-q")
    assert parser.parse_commits_with_options(str(tmp_path), AnalyzeOptions()) == []


def test_missing_directory_raises_parse_error(parser, tmp_path):
    with pytest.raises(ParseError):
        parser.parse_commits_with_options(str(tmp_path / "missing"), AnalyzeOptions())


def test_repository_info(parser, sample_repo):
    info = parser.parse_repository_info(str(sample_repo.path))

    assert info.default_branch == "main"
    assert info.total_commits == 6
    # README.md deleted, guide renamed, feature merged
    assert info.total_files == 3
    assert info.repo_size > 0
    assert info.is_shallow is False
