"""Tests for commit stats strategies and the fallback chain."""
import git

from repo_timeline.domain.exceptions import StatsUnavailableError
from repo_timeline.domain.models import AnalyzeOptions, CommitStats
from repo_timeline.infrastructure.commit_parser import CommitHistoryParser
from repo_timeline.infrastructure.stats_calculator import (
    GitPythonStatsStrategy,
    NumstatStatsStrategy,
    StatsCalculator,
    StatsStrategy,
    parse_numstat,
)
from tests.conftest import git as conftest_git, requires_git


class FailingStrategy(StatsStrategy):
    name = "failing"

    def __init__(self):
        self.calls = 0

    def try_compute(self, local_path, commit_hash):
        self.calls += 1
        raise StatsUnavailableError("objects missing")


class DecliningStrategy(StatsStrategy):
    name = "declining"

    def try_compute(self, local_path, commit_hash):
        return None


class FixedStrategy(StatsStrategy):
    name = "fixed"

    def try_compute(self, local_path, commit_hash):
        return CommitStats.of(3, 1, 2)


def _hashes(repo):
    commits = CommitHistoryParser().parse_commits_with_options(str(repo.path), AnalyzeOptions(depth=-1))
    return {c.message: c.commit_hash for c in commits}


def test_parse_numstat_sums_lines():
    output = "3\t1\tsrc/a.py\n-\t-\timage.png\n10\t0\tdocs/b.md\n\n"
    assert parse_numstat(output) == CommitStats.of(13, 1, 3)


def test_parse_numstat_empty_output():
    assert parse_numstat("") == CommitStats.of(0, 0, 0)


def test_falls_back_to_next_strategy():
    failing = FailingStrategy()
    calculator = StatsCalculator([failing, DecliningStrategy(), FixedStrategy()])

    assert calculator.calculate_commit_stats("/nowhere", "abc") == CommitStats.of(3, 1, 2)
    assert failing.calls == 1


def test_all_strategies_failing_gives_unavailable():
    calculator = StatsCalculator([FailingStrategy(), DecliningStrategy()])

    stats = calculator.calculate_commit_stats("/nowhere", "abc")

    assert stats == CommitStats.unavailable()
    assert stats.calculated is False


def test_default_chain_never_raises_on_missing_repository(tmp_path):
    stats = StatsCalculator().calculate_commit_stats(str(tmp_path / "missing"), "0" * 40)
    assert stats.calculated is False
    assert (stats.additions, stats.deletions, stats.files_changed) == (0, 0, 0)


@requires_git
def test_gitpython_strategy_counts_lines(sample_repo):
    hashes = _hashes(sample_repo)
    strategy = GitPythonStatsStrategy()

    assert strategy.try_compute(str(sample_repo.path), hashes["update app"]) == CommitStats.of(1, 0, 1)
    # Root commit diffs against the empty tree
    assert strategy.try_compute(str(sample_repo.path), hashes["initial layout"]) == CommitStats.of(3, 0, 3)


@requires_git
def test_numstat_strategy_matches_gitpython(sample_repo):
    hashes = _hashes(sample_repo)
    gitpython = GitPythonStatsStrategy()
    numstat = NumstatStatsStrategy()

    for commit_hash in hashes.values():
        assert numstat.try_compute(str(sample_repo.path), commit_hash) == gitpython.try_compute(
            str(sample_repo.path), commit_hash
        )


@requires_git
def test_merge_stats_use_first_parent(sample_repo):
    hashes = _hashes(sample_repo)

    stats = StatsCalculator().calculate_commit_stats(str(sample_repo.path), hashes["merge feature"])

    assert stats == CommitStats.of(1, 0, 1)


@requires_git
def test_unknown_commit_is_unavailable(sample_repo):
    stats = StatsCalculator().calculate_commit_stats(str(sample_repo.path), "f" * 40)
    assert stats == CommitStats.unavailable()


@requires_git
def test_calculate_many(sample_repo):
    hashes = _hashes(sample_repo)

    result = StatsCalculator(max_workers=2).calculate_many(str(sample_repo.path), list(hashes.values()))

    assert set(result) == set(hashes.values())
    assert all(s.calculated and s.additions >= 0 and s.deletions >= 0 for s in result.values())
    assert result[hashes["drop readme"]] == CommitStats.of(0, 1, 1)


@requires_git
def test_gitpython_strategy_runs_in_process(sample_repo, monkeypatch):
    hashes = _hashes(sample_repo)

    def no_git_process(*args, **kwargs):
        raise AssertionError(f"git process started: {args}")

    monkeypatch.setattr(git.cmd.Git, "execute", no_git_process)
    strategy = GitPythonStatsStrategy()

    assert strategy.try_compute(str(sample_repo.path), hashes["update app"]) == CommitStats.of(1, 0, 1)
    assert strategy.try_compute(str(sample_repo.path), hashes["rename guide"]) == CommitStats.of(1, 1, 2)


@requires_git
def test_gitpython_strategy_declines_without_local_blobs(sample_repo, tmp_path):
    hashes = _hashes(sample_repo)
    conftest_git(sample_repo.path, "config", "uploadpack.allowFilter", "true")
    partial = tmp_path / "partial"
    conftest_git(tmp_path, "clone", "-q", "--filter=blob:none", "--no-checkout", sample_repo.url, str(partial))

    assert GitPythonStatsStrategy().try_compute(str(partial), hashes["update app"]) is None
