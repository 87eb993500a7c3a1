"""Error taxonomy for repository ingestion.

Terminal errors (clone, parse, filesystem) fail the analysis job. Timeouts are
transient and may be retried. Stats gaps never leave the stats calculator.
"""
from typing import Optional


class RepoTimelineError(Exception):
    """Base class for all repo-timeline errors."""
    pass


class CloneError(RepoTimelineError):
    """Raised when a repository cannot be cloned or its history fetched."""
    pass


class ParseError(RepoTimelineError):
    """Raised when the history of a local copy cannot be read."""
    pass


class StatsUnavailableError(RepoTimelineError):
    """Raised by a stats strategy when required objects are missing locally."""
    pass


class FilesystemError(RepoTimelineError):
    """Raised on disk or permission problems in the working directory."""
    pass


class GitNotFoundError(RepoTimelineError):
    """Raised when the git executable cannot be started."""
    pass


class GitTimeoutError(RepoTimelineError):
    """Raised when a git process exceeded its time limit and was killed."""

    def __init__(self, command: str, timeout: float):
        super().__init__(f"git command timed out after {timeout:g}s: {command}")
        self.command = command
        self.timeout = timeout


class GitCommandError(RepoTimelineError):
    """Raised when a git process exits with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        message = f"git command failed (exit {returncode}): {command}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class InvalidOptionsError(RepoTimelineError):
    """Raised when analyze options or settings are invalid."""
    pass


class RepositoryNotFoundError(RepoTimelineError):
    """Raised when a repository id is unknown to storage."""

    def __init__(self, repo_id: Optional[int]):
        super().__init__(f"Repository not found: {repo_id}")
        self.repo_id = repo_id


class RepositoryBusyError(RepoTimelineError):
    """Raised when a job is already running for the repository."""

    def __init__(self, repo_id: int):
        super().__init__(f"Repository {repo_id} already has a running job")
        self.repo_id = repo_id


class InvalidStateError(RepoTimelineError):
    """Raised when an operation is not allowed in the repository's status."""
    pass


class AnalysisCancelledError(RepoTimelineError):
    """Raised at a stage boundary after cancellation was requested."""

    def __init__(self):
        super().__init__("cancelled")
