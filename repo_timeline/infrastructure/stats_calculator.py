"""Commit line statistics with an ordered list of fallback strategies.

Shallow and partial clones may lack the objects a diff needs, so each
strategy may fail; the calculator then reports the stats as not calculated
instead of raising.
"""
import difflib
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import git

from repo_timeline.domain.exceptions import StatsUnavailableError
from repo_timeline.domain.models import CommitStats
from repo_timeline.infrastructure.git_command import GitRunner


logger = logging.getLogger(__name__)

# git looks this far into a blob for NUL bytes when deciding it is binary
_BINARY_PROBE_SIZE = 8000


def parse_numstat(output: str) -> CommitStats:
    """Sum `--numstat` lines; binary files count as changed with 0/0 lines."""
    additions = deletions = files = 0
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        added, deleted, _ = parts
        if not (added == "-" or added.isdigit()) or not (deleted == "-" or deleted.isdigit()):
            continue
        files += 1
        additions += int(added) if added != "-" else 0
        deletions += int(deleted) if deleted != "-" else 0
    return CommitStats.of(additions, deletions, files)


class StatsStrategy(ABC):
    """One way of computing commit stats."""

    name = "strategy"

    @abstractmethod
    def try_compute(self, local_path: str, commit_hash: str) -> Optional[CommitStats]:
        """Return stats, or None when this strategy cannot produce them."""
        pass


class GitPythonStatsStrategy(StatsStrategy):
    """Diff against the first parent in process, through GitPython objects.

    Objects are read by the pure-Python object database, so no git
    process is started and a blob absent from a partial clone is never
    fetched; the strategy declines instead.
    """

    name = "gitpython"

    def try_compute(self, local_path: str, commit_hash: str) -> Optional[CommitStats]:
        with git.Repo(local_path, odbt=git.GitDB) as repo:
            try:
                commit = repo.commit(commit_hash)
            except (ValueError, git.BadName, git.BadObject) as e:
                raise StatsUnavailableError(f"Commit {commit_hash[:7]} not present locally") from e

            try:
                # Root commit: everything is an addition
                before = _blobs(commit.parents[0].tree) if commit.parents else {}
                after = _blobs(commit.tree)
                additions = deletions = files = 0
                for path in before.keys() | after.keys():
                    old, new = before.get(path), after.get(path)
                    if old is not None and new is not None and (old.binsha, old.mode) == (new.binsha, new.mode):
                        continue
                    files += 1
                    added, deleted = _count_lines(_read(old), _read(new))
                    additions += added
                    deletions += deleted
            except git.BadObject as e:
                logger.debug(f"Objects for {commit_hash[:7]} missing locally: {e}")
                return None
        return CommitStats.of(additions, deletions, files)


def _blobs(tree) -> Dict[str, git.Blob]:
    return {item.path: item for item in tree.traverse() if item.type == "blob"}


def _read(blob: Optional[git.Blob]) -> bytes:
    return blob.data_stream.read() if blob is not None else b""


def _split_lines(data: bytes) -> List[bytes]:
    # Only "\n" ends a line; a missing final newline keeps the last line distinct
    lines = [line + b"\n" for line in data.split(b"\n")]
    lines[-1] = lines[-1][:-1]
    if not lines[-1]:
        lines.pop()
    return lines


def _count_lines(old: bytes, new: bytes) -> Tuple[int, int]:
    """Added and deleted lines between two blobs; binary content counts as 0/0."""
    if b"\0" in old[:_BINARY_PROBE_SIZE] or b"\0" in new[:_BINARY_PROBE_SIZE]:
        return 0, 0
    added = deleted = 0
    matcher = difflib.SequenceMatcher(None, _split_lines(old), _split_lines(new), autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag != "equal":
            deleted += i2 - i1
            added += j2 - j1
    return added, deleted


class NumstatStatsStrategy(StatsStrategy):
    """Parse `git show --numstat` directly."""

    name = "numstat"

    def __init__(self, runner: Optional[GitRunner] = None, timeout: float = 30.0):
        self._runner = runner or GitRunner()
        self._timeout = timeout

    def try_compute(self, local_path: str, commit_hash: str) -> Optional[CommitStats]:
        output = self._runner.run(
            ["show", "--numstat", "--format=", "--diff-merges=first-parent", "--no-renames", commit_hash],
            cwd=local_path,
            timeout=self._timeout,
        )
        return parse_numstat(output)


class StatsCalculator:
    """Tries each strategy in order; never raises."""

    def __init__(self, strategies: Optional[List[StatsStrategy]] = None, max_workers: int = 4, timeout: float = 30.0):
        self.strategies = strategies if strategies is not None else [
            GitPythonStatsStrategy(),
            NumstatStatsStrategy(timeout=timeout),
        ]
        self._max_workers = max(1, max_workers)

    def calculate_commit_stats(self, local_path: str, commit_hash: str) -> CommitStats:
        """Stats of one commit, or CommitStats.unavailable() when every strategy fails."""
        for strategy in self.strategies:
            try:
                stats = strategy.try_compute(local_path, commit_hash)
            except Exception as e:
                logger.warning(f"Stats strategy {strategy.name} failed for {commit_hash[:7]}: {e}")
                continue
            if stats is not None:
                return stats
        logger.warning(f"Stats unavailable for {commit_hash[:7]} in {local_path}")
        return CommitStats.unavailable()

    def calculate_many(self, local_path: str, commit_hashes: Sequence[str]) -> Dict[str, CommitStats]:
        hashes = list(dict.fromkeys(commit_hashes))
        if len(hashes) <= 1:
            return {h: self.calculate_commit_stats(local_path, h) for h in hashes}
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(hashes))) as executor:
            results = executor.map(lambda h: self.calculate_commit_stats(local_path, h), hashes)
            return dict(zip(hashes, results))
