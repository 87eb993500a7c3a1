"""Reads commit history and repository facts from a local working copy."""
import logging
import os
from datetime import datetime, timezone
from typing import Callable, List, Optional

from repo_timeline.domain.exceptions import (
    GitCommandError,
    GitNotFoundError,
    ParseError,
)
from repo_timeline.domain.models import AnalyzeOptions, CommitRecord, RepositoryInfo
from repo_timeline.domain.path_filters import any_path_matches
from repo_timeline.infrastructure.git_command import GitRunner


logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\x1e"
FIELD_SEPARATOR = "\x1f"
# hash, parents, author name, author email, commit time, subject; names follow the last separator
LOG_FORMAT = "%x1e%H%x1f%P%x1f%an%x1f%ae%x1f%ct%x1f%s%x1f"

ProgressCallback = Callable[[int], None]


class CommitHistoryParser:
    """Walks the history of a local copy in a single git log call."""

    def __init__(self, runner: Optional[GitRunner] = None, timeout: float = 120.0, progress_interval: int = 50):
        self._runner = runner or GitRunner()
        self._timeout = timeout
        self._progress_interval = max(1, progress_interval)

    def parse_commits_with_options(
        self,
        local_path: str,
        options: AnalyzeOptions,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[CommitRecord]:
        """Return the commits selected by options, oldest first.

        The time window is inclusive on both ends. Path filters drop commits
        that touch no matching path. The depth cap applies after filtering and
        keeps the most recent commits. commit_order runs 1..N oldest to newest.

        Args:
            local_path: Working copy to read
            options: Depth, time window and path filters
            progress_callback: Receives a percentage every few commits and 100 at the end

        Returns:
            List of CommitRecord ordered by commit_order

        Raises:
            ParseError: History cannot be read
            GitTimeoutError: git log exceeded its time limit
        """
        filtering = bool(options.path_filters)
        args = ["log", f"--format={LOG_FORMAT}"]
        if filtering:
            args.extend(["--name-only", "--diff-merges=first-parent"])
        limit = options.effective_analyze_depth
        if limit is not None and not filtering and not options.has_time_window:
            args.append(f"-n{limit}")
        args.append("HEAD")

        output = self._run_log(local_path, args)
        if output is None:
            if progress_callback:
                progress_callback(100)
            return []

        chunks = [c for c in output.split(RECORD_SEPARATOR) if c.strip()]
        total = len(chunks)
        selected = []
        for index, chunk in enumerate(chunks, start=1):
            parsed = self._parse_record(chunk)
            if parsed is not None and self._accepts(parsed, options):
                selected.append(parsed)
            if progress_callback and index % self._progress_interval == 0 and index < total:
                progress_callback(int(index * 100 / total))
            if limit is not None and len(selected) >= limit:
                break

        selected.reverse()
        commits = [
            CommitRecord(
                commit_hash=p["hash"],
                author_name=p["author_name"],
                author_email=p["author_email"],
                message=p["message"],
                commit_time=p["commit_time"],
                commit_order=order,
                parent_hash=p["parents"][0] if p["parents"] else None,
                is_merge=len(p["parents"]) > 1,
            )
            for order, p in enumerate(selected, start=1)
        ]
        if progress_callback:
            progress_callback(100)
        logger.info(f"Parsed {len(commits)} commits from {local_path} ({total} walked)")
        return commits

    def _run_log(self, local_path: str, args: List[str]) -> Optional[str]:
        try:
            return self._runner.run(args, cwd=local_path, timeout=self._timeout)
        except GitCommandError as e:
            if "does not have any commits" in e.stderr or "unknown revision" in e.stderr:
                logger.info(f"{local_path} has no commits")
                return None
            raise ParseError(f"Cannot read history of {local_path}: {e}") from e
        except GitNotFoundError as e:
            raise ParseError(str(e)) from e

    def _parse_record(self, chunk: str) -> Optional[dict]:
        fields = chunk.split(FIELD_SEPARATOR, 6)
        if len(fields) < 7:
            logger.warning(f"Skipping malformed log record: {chunk[:80]!r}")
            return None
        commit_hash, parents, author_name, author_email, timestamp, subject, names = fields
        try:
            commit_time = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
        except ValueError as e:
            raise ParseError(f"Invalid commit time {timestamp!r} for {commit_hash}") from e
        return {
            "hash": commit_hash.strip(),
            "parents": parents.split(),
            "author_name": author_name,
            "author_email": author_email,
            "commit_time": commit_time,
            "message": subject,
            "paths": [line for line in names.splitlines() if line.strip()],
        }

    def _accepts(self, parsed: dict, options: AnalyzeOptions) -> bool:
        commit_time = parsed["commit_time"]
        if options.since and commit_time < options.since:
            return False
        if options.until and commit_time > options.until:
            return False
        if options.path_filters:
            return any_path_matches(parsed["paths"], options.path_filters)
        return True

    def parse_repository_info(self, local_path: str) -> RepositoryInfo:
        """Read default branch, commit and file counts, disk size and shallow flag."""
        try:
            try:
                branch = self._runner.run(
                    ["symbolic-ref", "--short", "HEAD"], cwd=local_path, timeout=self._timeout
                ).strip() or None
            except GitCommandError:
                # Detached HEAD
                branch = None

            try:
                total_commits = int(self._runner.run(
                    ["rev-list", "--count", "HEAD"], cwd=local_path, timeout=self._timeout
                ).strip() or 0)
                files = self._runner.run(
                    ["ls-tree", "-r", "--name-only", "HEAD"], cwd=local_path, timeout=self._timeout
                )
                total_files = len([line for line in files.splitlines() if line])
            except GitCommandError:
                total_commits, total_files = 0, 0

            shallow = self._runner.run(
                ["rev-parse", "--is-shallow-repository"], cwd=local_path, timeout=self._timeout
            ).strip() == "true"
        except (GitCommandError, GitNotFoundError) as e:
            raise ParseError(f"Cannot read repository info of {local_path}: {e}") from e

        return RepositoryInfo(
            default_branch=branch,
            total_commits=total_commits,
            total_files=total_files,
            repo_size=_directory_size(local_path),
            is_shallow=shallow,
        )


def _directory_size(path: str) -> int:
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                # Removed while walking
                continue
    return total
