"""Tests for cloning, deepening and removing local copies."""
import pytest

from repo_timeline.domain.exceptions import GitTimeoutError
from repo_timeline.domain.models import AnalyzeOptions
from repo_timeline.infrastructure.clone_manager import CloneManager, is_valid_repository_url
from tests.conftest import git, requires_git


@pytest.mark.parametrize("url, expected", [
    ("https://github.com/owner/repo.git", True),
    ("http://example.com/repo", True),
    ("git://example.com/repo.git", True),
    ("ssh://git@example.com/repo.git", True),
    ("file:///srv/git/repo", True),
    ("git@github.com:owner/repo.git", True),
    ("", False),
    (None, False),
    ("--upload-pack=touch /tmp/x", False),
    ("-oProxyCommand=evil", False),
    ("not a url", False),
    ("ftp://example.com/repo", False),
])
def test_url_validation(url, expected):
    assert is_valid_repository_url(url) is expected


def test_invalid_url_fails_without_running_git(tmp_path):
    result = CloneManager().clone("--upload-pack=evil", str(tmp_path / "r"), AnalyzeOptions())

    assert not result
    assert "Invalid repository URL" in result.error
    assert not (tmp_path / "r").exists()


class TimingOutRunner:
    def __init__(self):
        self.calls = 0

    def run(self, args, cwd=None, timeout=None, input=None, long_paths=False):
        self.calls += 1
        raise GitTimeoutError("git clone", timeout)


def test_clone_timeouts_are_retried_then_reported(tmp_path, monkeypatch):
    runner = TimingOutRunner()
    manager = CloneManager(runner, clone_timeout=1)
    # No backoff sleeps in tests
    monkeypatch.setattr(CloneManager._run_clone.retry, "sleep", lambda seconds: None)

    result = manager.clone("https://example.com/repo.git", str(tmp_path / "r"), AnalyzeOptions())

    assert not result
    assert "timed out" in result.error
    assert runner.calls == 3
    assert not (tmp_path / "r").exists()


class RecordingRunner:
    def __init__(self):
        self.calls = []

    def run(self, args, cwd=None, timeout=None, input=None, long_paths=False):
        self.calls.append(list(args))
        return ""


@pytest.mark.parametrize("options, present, absent", [
    (AnalyzeOptions(depth=50), ["--depth=50", "--single-branch"], ["--no-single-branch"]),
    (AnalyzeOptions(depth=50, single_branch=False), ["--depth=50", "--no-single-branch"], ["--single-branch"]),
    (AnalyzeOptions(depth=-1, shallow=False, single_branch=False), [], ["--single-branch", "--no-single-branch"]),
])
def test_clone_branch_flags(tmp_path, options, present, absent):
    runner = RecordingRunner()

    assert CloneManager(runner).clone("https://example.com/repo.git", str(tmp_path / "r"), options)

    args = runner.calls[0]
    assert all(flag in args for flag in present)
    assert not any(flag in args for flag in absent)


@requires_git
class TestCloneAgainstLocalRemote:
    def test_shallow_clone_honours_depth(self, linear_history, tmp_path):
        manager = CloneManager()
        target = tmp_path / "clone"

        result = manager.clone(linear_history.as_uri(), str(target), AnalyzeOptions(depth=100))

        assert result
        assert result.error is None
        assert git(target, "rev-list", "--count", "HEAD").strip() == "100"
        assert manager.is_shallow(str(target))

    def test_full_clone(self, sample_repo, tmp_path):
        manager = CloneManager()
        target = tmp_path / "clone"

        assert manager.clone(sample_repo.url, str(target), AnalyzeOptions.full())
        assert not manager.is_shallow(str(target))
        assert git(target, "rev-list", "--count", "HEAD").strip() == "6"

    def test_existing_copy_is_reused(self, sample_repo, tmp_path):
        manager = CloneManager()
        target = tmp_path / "clone"
        assert manager.clone(sample_repo.url, str(target), AnalyzeOptions.full())
        marker = target / "marker.txt"
        marker.write_text("kept")

        assert manager.clone(sample_repo.url, str(target), AnalyzeOptions.full())
        assert marker.exists()

    def test_missing_remote_fails_and_cleans_up(self, tmp_path):
        target = tmp_path / "clone"

        result = CloneManager().clone((tmp_path / "nope").as_uri(), str(target), AnalyzeOptions())

        assert not result
        assert result.error
        assert not target.exists()

    def test_fetch_more_history_deepens(self, linear_history, tmp_path):
        manager = CloneManager()
        target = tmp_path / "clone"
        assert manager.clone(linear_history.as_uri(), str(target), AnalyzeOptions(depth=100))

        assert manager.fetch_more_history(str(target), 150)

        assert git(target, "rev-list", "--count", "HEAD").strip() == "250"
        assert manager.is_shallow(str(target))

    def test_fetch_more_history_is_noop_for_complete_copy(self, sample_repo, tmp_path):
        manager = CloneManager()
        target = tmp_path / "clone"
        assert manager.clone(sample_repo.url, str(target), AnalyzeOptions.full())

        assert manager.fetch_more_history(str(target), 10)

    def test_fetch_more_history_rejects_non_positive(self, sample_repo, tmp_path):
        assert not CloneManager().fetch_more_history(str(sample_repo.path), 0)

    def test_delete_local_repository(self, sample_repo, tmp_path):
        manager = CloneManager()
        target = tmp_path / "clone"
        assert manager.clone(sample_repo.url, str(target), AnalyzeOptions.full())

        manager.delete_local_repository(str(target))

        assert not target.exists()
        # Deleting again is fine
        manager.delete_local_repository(str(target))
