"""Obtains and extends local working copies of remote repositories."""
import logging
import re
import shutil
from pathlib import Path
from typing import Optional

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)
from repo_timeline.domain.exceptions import (
    FilesystemError,
    GitCommandError,
    GitNotFoundError,
    GitTimeoutError,
)
from repo_timeline.domain.models import AnalyzeOptions, CloneResult
from repo_timeline.infrastructure.git_command import GitRunner


logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^(https?|git|ssh|file)://[^\s]+$")
_SCP_RE = re.compile(r"^[\w.\-]+@[\w.\-]+:[^\s]+$")


def is_valid_repository_url(url: Optional[str]) -> bool:
    """Accept scheme URLs (http(s), git, ssh, file) and scp-like user@host:path."""
    if not url or url.startswith("-"):
        return False
    return bool(_URL_RE.match(url) or _SCP_RE.match(url))


class CloneManager:
    """Clones repositories, deepens shallow copies and removes local copies.

    Clone and fetch report failure through their return value instead of
    raising, so the caller decides how to mark the repository.
    """

    def __init__(
        self,
        runner: Optional[GitRunner] = None,
        clone_timeout: float = 600.0,
        fetch_timeout: float = 300.0,
        git_timeout: float = 60.0,
    ):
        self._runner = runner or GitRunner()
        self._clone_timeout = clone_timeout
        self._fetch_timeout = fetch_timeout
        self._git_timeout = git_timeout

    def clone(self, url: str, local_path: str, options: AnalyzeOptions) -> CloneResult:
        """Clone url into local_path according to options.

        Args:
            url: Remote repository URL
            local_path: Target directory
            options: Depth, shallow and single-branch settings

        Returns:
            CloneResult with the captured cause on failure
        """
        if not is_valid_repository_url(url):
            logger.warning(f"Rejected invalid repository URL: {url!r}")
            return CloneResult(False, f"Invalid repository URL: {url}")

        target = Path(local_path)
        if (target / ".git").exists():
            logger.info(f"Local copy already present at {local_path}, skipping clone")
            return CloneResult(True)

        depth = options.effective_clone_depth
        logger.info(
            f"Cloning {url} -> {local_path} "
            f"(depth: {depth if options.shallow and depth > 0 else 'full'}, "
            f"single branch: {options.single_branch})"
        )

        args = ["clone"]
        if options.shallow and depth > 0:
            args.append(f"--depth={depth}")
            # Only commits and trees are downloaded; blobs are fetched on demand
            args.append("--filter=blob:none")
        if options.single_branch:
            args.append("--single-branch")
        elif options.shallow and depth > 0:
            # --depth implies --single-branch
            args.append("--no-single-branch")
        args.extend([url, str(target)])

        try:
            self._run_clone(args, target)
        except GitTimeoutError as e:
            self._remove_quietly(target)
            return CloneResult(False, f"Clone timed out: {e}")
        except GitCommandError as e:
            self._remove_quietly(target)
            logger.warning(f"Clone failed for {url}: {e.stderr.strip() or e}")
            return CloneResult(False, e.stderr.strip() or str(e))
        except (GitNotFoundError, FilesystemError) as e:
            self._remove_quietly(target)
            return CloneResult(False, str(e))

        logger.info(f"Cloned {url}")
        return CloneResult(True)

    @retry(
        retry=retry_if_exception_type(GitTimeoutError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True
    )
    def _run_clone(self, args, target: Path) -> None:
        # Each attempt starts from an empty target; a killed clone leaves debris
        self._remove_quietly(target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create {target.parent}: {e}") from e
        self._runner.run(args, timeout=self._clone_timeout, long_paths=True)

    def fetch_more_history(self, local_path: str, additional_depth: int) -> bool:
        """Deepen a shallow clone by additional_depth commits.

        Returns True without fetching when history is already complete.
        """
        if additional_depth <= 0:
            logger.warning(f"Ignoring non-positive deepen request: {additional_depth}")
            return False
        try:
            if not self.is_shallow(local_path):
                logger.info(f"{local_path} already has complete history")
                return True
            logger.info(f"Fetching {additional_depth} more commits into {local_path}")
            self._run_fetch(local_path, additional_depth)
            return True
        except (GitTimeoutError, GitCommandError, GitNotFoundError) as e:
            logger.error(f"Failed to fetch more history for {local_path}: {e}")
            return False

    @retry(
        retry=retry_if_exception_type(GitTimeoutError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True
    )
    def _run_fetch(self, local_path: str, additional_depth: int) -> None:
        self._runner.run(
            ["fetch", f"--deepen={additional_depth}"],
            cwd=local_path,
            timeout=self._fetch_timeout,
            long_paths=True,
        )

    def is_shallow(self, local_path: str) -> bool:
        output = self._runner.run(
            ["rev-parse", "--is-shallow-repository"],
            cwd=local_path,
            timeout=self._git_timeout,
        )
        return output.strip() == "true"

    def delete_local_repository(self, local_path: Optional[str]) -> None:
        """Recursively remove a local copy; a missing directory is fine."""
        if not local_path:
            return
        target = Path(local_path)
        if not target.exists():
            return
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise FilesystemError(f"Cannot delete {local_path}: {e}") from e
        logger.info(f"Deleted local repository: {local_path}")

    def _remove_quietly(self, target: Path) -> None:
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
