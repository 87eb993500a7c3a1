"""Platform-aware git command construction and bounded execution.

The command variant is chosen once per process. Every invocation runs with a
timeout; on expiry the child process is killed and GitTimeoutError raised.
"""
import logging
import os
import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence, Union

from repo_timeline.domain.exceptions import GitCommandError, GitNotFoundError, GitTimeoutError


logger = logging.getLogger(__name__)


class Platform(str, Enum):
    POSIX = "posix"
    WINDOWS = "windows"


class GitCommand(ABC):
    """Builds argv lists for the git executable."""

    platform: Platform

    def __init__(self, executable: str = "git"):
        self.executable = executable

    def build(self, args: Sequence[str], long_paths: bool = False) -> List[str]:
        """Return the full argv for a git subcommand."""
        cmd = [self.executable, "-c", "core.quotepath=off"]
        cmd.extend(self._platform_options(long_paths))
        cmd.extend(args)
        return cmd

    @abstractmethod
    def _platform_options(self, long_paths: bool) -> List[str]:
        pass


class PosixGitCommand(GitCommand):
    platform = Platform.POSIX

    def _platform_options(self, long_paths: bool) -> List[str]:
        return []


class WindowsGitCommand(GitCommand):
    """Windows variant; long-path commands lift the 260 character limit."""

    platform = Platform.WINDOWS

    def _platform_options(self, long_paths: bool) -> List[str]:
        if long_paths:
            return ["-c", "core.longpaths=true"]
        return []


def git_command_for_platform(executable: str = "git") -> GitCommand:
    """Select the command variant for the running platform."""
    if sys.platform.startswith("win"):
        return WindowsGitCommand(executable)
    return PosixGitCommand(executable)


class GitRunner:
    """Runs git commands with a timeout and translates failures to exceptions."""

    def __init__(self, command: Optional[GitCommand] = None, default_timeout: float = 120.0):
        self.command = command or git_command_for_platform()
        self.default_timeout = default_timeout
        self._env = dict(os.environ)
        self._env["GIT_TERMINAL_PROMPT"] = "0"
        self._env.setdefault("LC_ALL", "C")

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        input: Optional[Union[str, bytes]] = None,
        long_paths: bool = False,
    ) -> str:
        """Run git and return stdout decoded as UTF-8."""
        output = self.run_bytes(args, cwd=cwd, timeout=timeout, input=input, long_paths=long_paths)
        return output.decode("utf-8", errors="replace")

    def run_bytes(
        self,
        args: Sequence[str],
        cwd: Optional[str] = None,
        timeout: Optional[float] = None,
        input: Optional[Union[str, bytes]] = None,
        long_paths: bool = False,
    ) -> bytes:
        """Run git and return raw stdout.

        Raises:
            GitTimeoutError: The process exceeded the timeout and was killed
            GitCommandError: The process exited with a non-zero status
            GitNotFoundError: The executable or working directory is missing
        """
        cmd = self.command.build(args, long_paths=long_paths)
        limit = timeout if timeout is not None else self.default_timeout
        if isinstance(input, str):
            input = input.encode("utf-8")
        printable = " ".join(cmd)
        logger.debug(f"Running: {printable} (cwd={cwd}, timeout={limit}s)")

        try:
            # subprocess.run kills the child before raising TimeoutExpired
            result = subprocess.run(
                cmd,
                cwd=cwd,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=limit,
                env=self._env,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"git command timed out after {limit}s: {printable}")
            raise GitTimeoutError(printable, limit) from e
        except (FileNotFoundError, NotADirectoryError) as e:
            raise GitNotFoundError(f"Cannot run {cmd[0]} in {cwd}: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise GitCommandError(printable, result.returncode, stderr)
        return result.stdout
