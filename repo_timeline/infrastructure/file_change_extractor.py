"""Per-commit file changes and blob contents, read in batches.

Changes for many commits come from one ``git diff-tree --stdin`` process per
chunk; contents for many (commit, path) pairs come from one
``git cat-file --batch`` process.
"""
import codecs
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from repo_timeline.domain.exceptions import GitCommandError, GitNotFoundError, ParseError
from repo_timeline.domain.models import ChangeType, ContentRequest, FileChange
from repo_timeline.infrastructure.git_command import GitRunner


logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r"^([0-9a-f]{40,64})(?: \(from [0-9a-f]{40,64}\))?$")
# :<old mode> <new mode> <old sha> <new sha> <status><score>\t<path>[\t<path>]
_RAW_RE = re.compile(r"^:\d{6} \d{6} [0-9a-f]+(?:\.\.\.)? [0-9a-f]+(?:\.\.\.)? ([A-Z])(\d*)\t(.*)$")
_NUMSTAT_RE = re.compile(r"^(\d+|-)\t(\d+|-)\t(.*)$")
_BRACED_RENAME_RE = re.compile(r"^(.*)\{(.*) => (.*)\}(.*)$")

_STATUS_TYPES = {
    "A": ChangeType.ADD,
    "D": ChangeType.DELETE,
    "M": ChangeType.MODIFY,
    "T": ChangeType.MODIFY,
    "R": ChangeType.RENAME,
    "C": ChangeType.COPY,
}


def unquote_path(path: str) -> str:
    """Undo git's C-style quoting of unusual path names."""
    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        raw = codecs.escape_decode(path[1:-1].encode("utf-8"))[0]
        return raw.decode("utf-8", errors="replace")
    return path


def numstat_new_path(path: str) -> str:
    """Destination path of a --numstat entry.

    Renames are printed as "old => new" or, sharing a prefix or suffix,
    as "src/{old => new}/file.py".
    """
    path = unquote_path(path)
    braced = _BRACED_RENAME_RE.match(path)
    if braced:
        prefix, _, new, suffix = braced.groups()
        return (prefix + new + suffix).replace("//", "/")
    if " => " in path:
        return path.split(" => ", 1)[1]
    return path


class FileChangeExtractor:
    """Extracts file-level changes and file contents from a local copy."""

    def __init__(
        self,
        runner: Optional[GitRunner] = None,
        timeout: float = 120.0,
        batch_size: int = 200,
        max_workers: int = 4,
        rename_threshold: int = 50,
        include_line_counts: bool = False,
    ):
        self._runner = runner or GitRunner()
        self._timeout = timeout
        self._batch_size = max(1, batch_size)
        self._max_workers = max(1, max_workers)
        self._rename_threshold = rename_threshold
        self._include_line_counts = include_line_counts

    def parse_file_changes(self, local_path: str, commit_hash: str) -> List[FileChange]:
        """File changes of a single commit."""
        return self.parse_file_changes_batch(local_path, [commit_hash])[commit_hash]

    def parse_file_changes_batch(self, local_path: str, commit_hashes: Sequence[str]) -> Dict[str, List[FileChange]]:
        """File changes of many commits.

        Every requested hash is present in the result; merge commits and
        commits without changes map to an empty list.

        Args:
            local_path: Working copy to read
            commit_hashes: Commits to inspect

        Returns:
            Mapping of commit hash to its changes
        """
        hashes = list(dict.fromkeys(h for h in commit_hashes if h))
        result: Dict[str, List[FileChange]] = {h: [] for h in hashes}
        if not hashes:
            return result

        chunks = [hashes[i:i + self._batch_size] for i in range(0, len(hashes), self._batch_size)]
        if len(chunks) == 1:
            partials = [self._extract_chunk(local_path, chunks[0])]
        else:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(chunks))) as executor:
                partials = list(executor.map(lambda chunk: self._extract_chunk(local_path, chunk), chunks))

        for partial in partials:
            for commit_hash, changes in partial.items():
                if commit_hash in result:
                    result[commit_hash] = changes
        logger.debug(f"Extracted changes for {len(hashes)} commits in {len(chunks)} chunk(s)")
        return result

    def _diff_tree_args(self) -> List[str]:
        # --name-status would suppress --numstat; --raw does not
        args = ["diff-tree", "--stdin", "-r", "--root", "--raw"]
        if self._rename_threshold > 0:
            args.extend([f"-M{self._rename_threshold}%", f"-C{self._rename_threshold}%"])
        else:
            args.append("--no-renames")
        if self._include_line_counts:
            args.append("--numstat")
        return args

    def _extract_chunk(self, local_path: str, hashes: List[str]) -> Dict[str, List[FileChange]]:
        stdin = "".join(f"{h}\n" for h in hashes)
        try:
            output = self._runner.run(self._diff_tree_args(), cwd=local_path, timeout=self._timeout, input=stdin)
        except (GitCommandError, GitNotFoundError) as e:
            raise ParseError(f"Cannot extract file changes from {local_path}: {e}") from e
        return self._parse_diff_tree(output)

    def _parse_diff_tree(self, output: str) -> Dict[str, List[FileChange]]:
        parsed: Dict[str, Tuple[List[FileChange], List[Tuple[int, int, str]]]] = {}
        current = None
        for line in output.splitlines():
            if not line:
                continue
            header = _HEADER_RE.match(line)
            if header:
                current = header.group(1)
                parsed.setdefault(current, ([], []))
                continue
            if current is None:
                continue
            changes, counts = parsed[current]
            numstat = _NUMSTAT_RE.match(line)
            if numstat:
                added, deleted, path = numstat.groups()
                counts.append((
                    int(added) if added != "-" else 0,
                    int(deleted) if deleted != "-" else 0,
                    path,
                ))
                continue
            if line.startswith(":"):
                change = self._parse_raw(line)
                if change is not None:
                    changes.append(change)

        return {h: self._apply_counts(changes, counts) for h, (changes, counts) in parsed.items()}

    def _parse_raw(self, line: str) -> Optional[FileChange]:
        raw = _RAW_RE.match(line)
        if raw is None:
            logger.warning(f"Malformed raw diff line: {line!r}")
            return None
        status, paths = raw.group(1), raw.group(3).split("\t")
        change_type = _STATUS_TYPES.get(status, ChangeType.MODIFY)
        if change_type in (ChangeType.RENAME, ChangeType.COPY):
            if len(paths) < 2:
                logger.warning(f"Malformed rename line: {line!r}")
                return None
            return FileChange(
                file_path=unquote_path(paths[1]),
                change_type=change_type,
                old_path=unquote_path(paths[0]),
            )
        return FileChange(file_path=unquote_path(paths[0]), change_type=change_type)

    def _apply_counts(self, changes: List[FileChange], counts: List[Tuple[int, int, str]]) -> List[FileChange]:
        if not counts:
            return changes
        by_path = {numstat_new_path(path): (added, deleted) for added, deleted, path in counts}
        # Both listings come from the same diff queue, so equal lengths pair by position
        by_index = len(counts) == len(changes)
        result = []
        for index, change in enumerate(changes):
            if change.file_path in by_path:
                change = _with_counts(change, *by_path[change.file_path])
            elif by_index:
                change = _with_counts(change, counts[index][0], counts[index][1])
            result.append(change)
        return result

    def prefetch_file_contents(self, local_path: str, requests: Iterable[ContentRequest]) -> Dict[str, str]:
        """Read many blobs through one cat-file process.

        Returns:
            Mapping of "<hash>:<path>" to decoded content; missing paths are absent
        """
        wanted = [r for r in dict.fromkeys(requests) if "\n" not in r.file_path]
        if not wanted:
            return {}
        stdin = "".join(f"{r.key}\n" for r in wanted).encode("utf-8")
        try:
            output = self._runner.run_bytes(["cat-file", "--batch"], cwd=local_path, timeout=self._timeout, input=stdin)
        except (GitCommandError, GitNotFoundError) as e:
            raise ParseError(f"Cannot read file contents from {local_path}: {e}") from e

        contents: Dict[str, str] = {}
        position = 0
        for request in wanted:
            end = output.find(b"\n", position)
            if end < 0:
                logger.warning(f"cat-file output ended early at {request.key}")
                break
            header = output[position:end].decode("utf-8", errors="replace")
            position = end + 1
            if header.endswith(" missing") or header.endswith(" ambiguous"):
                continue
            fields = header.rsplit(" ", 2)
            if len(fields) != 3 or not fields[2].isdigit():
                raise ParseError(f"Unexpected cat-file header: {header!r}")
            size = int(fields[2])
            body = output[position:position + size]
            # Content is followed by a newline
            position += size + 1
            if fields[1] == "blob":
                contents[request.key] = body.decode("utf-8", errors="replace")
        return contents

    def read_file_content(self, local_path: str, commit_hash: str, file_path: str) -> Optional[str]:
        """Content of file_path at commit_hash, None when the path does not exist there."""
        try:
            listing = self._runner.run(
                ["ls-tree", commit_hash, "--", file_path], cwd=local_path, timeout=self._timeout
            )
            if not listing.strip():
                return None
            return self._runner.run(["show", f"{commit_hash}:{file_path}"], cwd=local_path, timeout=self._timeout)
        except GitCommandError as e:
            logger.warning(f"Cannot read {file_path} at {commit_hash[:7]}: {e}")
            return None

    def read_diff(
        self,
        local_path: str,
        commit_hash: str,
        file_path: str,
        base_commit: Optional[str] = None,
    ) -> Optional[str]:
        """Unified diff of one file, for a commit or between base_commit and commit_hash."""
        if base_commit:
            args = ["diff", f"-M{self._rename_threshold or 50}%", base_commit, commit_hash, "--", file_path]
        else:
            args = ["show", "--format=", "--patch", "--diff-merges=first-parent", commit_hash, "--", file_path]
        try:
            output = self._runner.run(args, cwd=local_path, timeout=self._timeout)
        except GitCommandError as e:
            logger.warning(f"Cannot diff {file_path} at {commit_hash[:7]}: {e}")
            return None
        return output or None


def _with_counts(change: FileChange, added: int, deleted: int) -> FileChange:
    return replace(change, additions=added, deletions=deleted)
