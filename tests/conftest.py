"""Shared fixtures: throwaway git repositories built with the git CLI."""
import os

# GitPython refuses to import without a git executable unless told otherwise
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")

import shutil
import subprocess
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pytest


GIT_AVAILABLE = shutil.which("git") is not None
requires_git = pytest.mark.skipif(not GIT_AVAILABLE, reason="git not found")

BASE_TIME = 1_700_000_000
LINEAR_HISTORY_SIZE = 500


def git(cwd, *args, input: Optional[bytes] = None, env: Optional[Dict[str, str]] = None) -> str:
    """Run git in cwd with an isolated configuration and return stdout."""
    full_env = dict(os.environ)
    full_env.update({
        "GIT_CONFIG_NOSYSTEM": "1",
        "GIT_CONFIG_GLOBAL": os.devnull,
        "GIT_TERMINAL_PROMPT": "0",
    })
    if env:
        full_env.update(env)
    result = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=str(cwd),
        input=input,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=full_env,
        check=True,
    )
    return result.stdout.decode("utf-8")


class RepoBuilder:
    """Creates commits with deterministic, strictly increasing timestamps."""

    def __init__(self, path: Path):
        self.path = path
        self.path.mkdir(parents=True, exist_ok=True)
        git(self.path, "init", "-q", "-b", "main")
        self._tick = 0

    @property
    def url(self) -> str:
        return self.path.resolve().as_uri()

    def commit(
        self,
        message: str,
        files: Optional[Dict[str, str]] = None,
        delete: Iterable[str] = (),
        author: Tuple[str, str] = ("Alice", "alice@example.com"),
    ) -> str:
        for name, content in (files or {}).items():
            target = self.path / name
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        for name in delete:
            (self.path / name).unlink()
        git(self.path, "add", "-A")
        return self._commit(message, author, "--allow-empty")

    def rename(self, old: str, new: str, message: str) -> str:
        (self.path / new).parent.mkdir(parents=True, exist_ok=True)
        git(self.path, "mv", old, new)
        return self._commit(message, ("Alice", "alice@example.com"))

    def branch(self, name: str) -> None:
        git(self.path, "checkout", "-q", "-b", name)

    def checkout(self, name: str) -> None:
        git(self.path, "checkout", "-q", name)

    def merge(self, name: str, message: str) -> str:
        self._tick += 1
        git(self.path, "merge", "-q", "--no-ff", "-m", message, name, env=self._dates("Alice", "alice@example.com"))
        return self.head()

    def head(self) -> str:
        return git(self.path, "rev-parse", "HEAD").strip()

    def timestamp(self, tick: int) -> int:
        return BASE_TIME + tick * 3600

    def _dates(self, name: str, email: str) -> Dict[str, str]:
        stamp = f"@{self.timestamp(self._tick)} +0000"
        return {
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
            "GIT_AUTHOR_DATE": stamp,
            "GIT_COMMITTER_DATE": stamp,
        }

    def _commit(self, message: str, author: Tuple[str, str], *extra: str) -> str:
        self._tick += 1
        git(self.path, "commit", "-q", *extra, "-m", message, env=self._dates(*author))
        return self.head()


def build_linear_history(path: Path, count: int) -> Path:
    """Create a single-branch repository of count commits through git fast-import.

    Even commits touch src/, odd commits touch docs/.
    """
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q", "-b", "main")
    stream = []
    for i in range(1, count + 1):
        stamp = BASE_TIME + i * 60
        message = f"commit {i}\n".encode()
        if i % 2 == 0:
            name = f"src/module{i % 5}.py"
            content = f"VALUE = {i}\n".encode()
        else:
            name = f"docs/page{i % 3}.md"
            content = f"# Page revision {i}\n".encode()
        stream.append(b"commit refs/heads/main\n")
        stream.append(f"mark :{i}\n".encode())
        stream.append(f"author Dev{i % 3} <dev{i % 3}@example.com> {stamp} +0000\n".encode())
        stream.append(f"committer Dev{i % 3} <dev{i % 3}@example.com> {stamp} +0000\n".encode())
        stream.append(f"data {len(message)}\n".encode() + message)
        if i > 1:
            stream.append(f"from :{i - 1}\n".encode())
        stream.append(f"M 100644 inline {name}\n".encode())
        stream.append(f"data {len(content)}\n".encode() + content + b"\n")
    git(path, "fast-import", "--quiet", input=b"".join(stream))
    git(path, "symbolic-ref", "HEAD", "refs/heads/main")
    return path


@pytest.fixture
def repo_builder(tmp_path):
    return RepoBuilder(tmp_path / "origin")


@pytest.fixture(scope="session")
def linear_history(tmp_path_factory):
    if not GIT_AVAILABLE:
        pytest.skip("git not found")
    return build_linear_history(tmp_path_factory.mktemp("linear") / "origin", LINEAR_HISTORY_SIZE)


@pytest.fixture
def sample_repo(repo_builder):
    """Small history with an add, a modify, a rename, a delete and a merge."""
    builder = repo_builder
    builder.commit("initial layout", {
        "README.md": "hello\n",
        "src/app.py": "print('v1')\n",
        "docs/guide.md": "guide\n",
    })
    builder.commit("update app", {"src/app.py": "print('v1')\nprint('v2')\n"}, author=("Bob", "bob@example.com"))
    builder.rename("docs/guide.md", "docs/manual.md", "rename guide")
    builder.branch("feature")
    builder.commit("feature work", {"src/feature.py": "FEATURE = True\n"}, author=("Bob", "bob@example.com"))
    builder.checkout("main")
    builder.commit("drop readme", delete=["README.md"])
    builder.merge("feature", "merge feature")
    return builder
