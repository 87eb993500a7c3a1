"""Read-side queries over analyzed repositories."""
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from repo_timeline.application.content_cache import ContentCache
from repo_timeline.domain.exceptions import RepositoryNotFoundError
from repo_timeline.domain.models import (
    ChangeType,
    CommitStats,
    ContentRequest,
    FileChange,
    FileTimeline,
    PageResult,
    Repository,
    RepositoryOverview,
    TimelineEntry,
)
from repo_timeline.domain.repository_interface import IHistoryStorage
from repo_timeline.infrastructure.file_change_extractor import FileChangeExtractor
from repo_timeline.infrastructure.stats_calculator import StatsCalculator


logger = logging.getLogger(__name__)

TOP_CONTRIBUTORS = 10


class HistoryService:
    """Commits, stats, contents and timelines of analyzed repositories.

    Commit stats are computed on first request and persisted once calculated.
    File contents and timelines are served through bounded caches.
    """

    def __init__(
        self,
        storage: IHistoryStorage,
        file_change_extractor: FileChangeExtractor,
        stats_calculator: StatsCalculator,
        content_cache: Optional[ContentCache] = None,
        timeline_cache: Optional[ContentCache] = None,
    ):
        self._storage = storage
        self._extractor = file_change_extractor
        self._stats = stats_calculator
        # An empty cache is falsy, so test against None
        self._content_cache = content_cache if content_cache is not None else ContentCache(1000, 3600.0, name="content")
        self._timeline_cache = timeline_cache if timeline_cache is not None else ContentCache(200, 1800.0, name="timeline")

    def _require(self, repo_id: int) -> Repository:
        repository = self._storage.get_repository(repo_id)
        if repository is None:
            raise RepositoryNotFoundError(repo_id)
        return repository

    def list_commits(self, repo_id: int, page: int = 1, page_size: int = 20, keyword: Optional[str] = None) -> PageResult:
        """Page through commits, newest first.

        keyword matches the message or author name (case-insensitive) or a hash prefix.
        """
        self._require(repo_id)
        page = max(1, page)
        page_size = max(1, page_size)
        items, total = self._storage.list_commits(
            repo_id,
            offset=(page - 1) * page_size,
            limit=page_size,
            keyword=keyword.strip() if keyword and keyword.strip() else None,
        )
        return PageResult(items=items, total=total, page=page, page_size=page_size)

    def get_file_changes(self, commit_ids: Sequence[int]) -> Dict[int, List[FileChange]]:
        return self._storage.get_file_changes(list(dict.fromkeys(commit_ids)))

    def get_commit_stats(self, commit_id: int) -> Optional[CommitStats]:
        """Stats of one commit, computed and stored on first request.

        Returns None for an unknown commit.
        """
        return self.get_commit_stats_batch([commit_id]).get(commit_id)

    def get_commit_stats_batch(self, commit_ids: Sequence[int]) -> Dict[int, CommitStats]:
        commits = self._storage.get_commits(list(dict.fromkeys(commit_ids)))
        result: Dict[int, CommitStats] = {}
        pending = defaultdict(list)
        for commit_id, commit in commits.items():
            if commit.has_stats:
                result[commit_id] = CommitStats.of(commit.additions, commit.deletions, commit.files_changed or 0)
            else:
                pending[commit.repo_id].append(commit)

        for repo_id, missing in pending.items():
            repository = self._require(repo_id)
            computed = self._stats.calculate_many(repository.local_path, [c.commit_hash for c in missing])
            for commit in missing:
                stats = computed.get(commit.commit_hash, CommitStats.unavailable())
                if stats.calculated:
                    self._storage.update_commit_stats(commit.commit_id, stats)
                result[commit.commit_id] = stats
        return result

    def get_file_content(self, repo_id: int, commit_hash: str, file_path: str) -> Optional[str]:
        repository = self._require(repo_id)
        return self._content_cache.get_or_load(
            (repo_id, commit_hash, file_path),
            lambda: self._extractor.read_file_content(repository.local_path, commit_hash, file_path),
        )

    def prefetch_file_contents(self, repo_id: int, requests: Iterable[ContentRequest]) -> Dict[str, str]:
        """Contents for many (commit, path) pairs keyed "<hash>:<path>", loading misses in one batch."""
        repository = self._require(repo_id)
        contents: Dict[str, str] = {}
        missing = []
        for request in dict.fromkeys(requests):
            cached = self._content_cache.get((repo_id, request.commit_hash, request.file_path))
            if cached is not None:
                contents[request.key] = cached
            else:
                missing.append(request)
        cached_count = len(contents)
        if missing:
            loaded = self._extractor.prefetch_file_contents(repository.local_path, missing)
            for request in missing:
                if request.key in loaded:
                    self._content_cache.put((repo_id, request.commit_hash, request.file_path), loaded[request.key])
            contents.update(loaded)
        logger.debug(f"Prefetch for repository {repo_id}: {cached_count} cached, {len(missing)} requested from git")
        return contents

    def get_file_timeline(self, repo_id: int, file_path: str, include_content: bool = False) -> FileTimeline:
        """All changes to file_path, oldest first, optionally with the content after each change."""
        self._require(repo_id)
        timeline = self._timeline_cache.get_or_load(
            (repo_id, file_path),
            lambda: FileTimeline(
                repo_id=repo_id,
                file_path=file_path,
                entries=[
                    TimelineEntry(commit=commit, change=change)
                    for commit, change in self._storage.get_file_history(repo_id, file_path)
                ],
            ),
        )
        if not include_content:
            return timeline

        requests = [
            ContentRequest(entry.commit.commit_hash, file_path)
            for entry in timeline.entries
            if entry.change.change_type != ChangeType.DELETE
        ]
        contents = self.prefetch_file_contents(repo_id, requests) if requests else {}
        return FileTimeline(
            repo_id=repo_id,
            file_path=file_path,
            entries=[
                TimelineEntry(
                    commit=entry.commit,
                    change=entry.change,
                    content=entry.change.file_content or contents.get(f"{entry.commit.commit_hash}:{file_path}"),
                )
                for entry in timeline.entries
            ],
        )

    def get_diff(self, repo_id: int, commit_hash: str, file_path: str, base_commit: Optional[str] = None) -> Optional[str]:
        repository = self._require(repo_id)
        return self._extractor.read_diff(repository.local_path, commit_hash, file_path, base_commit)

    def get_overview(self, repo_id: int) -> RepositoryOverview:
        self._require(repo_id)
        contributors = self._storage.get_contributor_stats(repo_id, limit=None)
        oldest, total = self._storage.list_commits(repo_id, limit=1, newest_first=False)
        newest, _ = self._storage.list_commits(repo_id, limit=1, newest_first=True)
        return RepositoryOverview(
            repo_id=repo_id,
            total_commits=total,
            total_authors=len(contributors),
            total_additions=sum(c["additions"] for c in contributors),
            total_deletions=sum(c["deletions"] for c in contributors),
            top_contributors=contributors[:TOP_CONTRIBUTORS],
            first_commit=oldest[0].commit_time if oldest else None,
            last_commit=newest[0].commit_time if newest else None,
        )

    def get_file_tree(self, repo_id: int) -> Dict[str, Any]:
        """Directory tree of every changed path with per-file modification counts.

        Directories are listed before files, each group sorted by name.
        """
        self._require(repo_id)
        root: Dict[str, Any] = {"name": "", "path": "", "type": "directory", "children": {}}
        for path, count in self._storage.get_file_modification_counts(repo_id).items():
            node = root
            parts = path.split("/")
            for depth, part in enumerate(parts[:-1]):
                # Directory keys carry a trailing slash so a file and a directory may share a name
                node = node["children"].setdefault(f"{part}/", {
                    "name": part,
                    "path": "/".join(parts[:depth + 1]),
                    "type": "directory",
                    "children": {},
                })
            node["children"][parts[-1]] = {"name": parts[-1], "path": path, "type": "file", "modifications": count}
        return _freeze_tree(root)


def _freeze_tree(node: Dict[str, Any]) -> Dict[str, Any]:
    if node["type"] != "directory":
        return node
    children = sorted(node["children"].values(), key=lambda n: (n["type"] != "directory", n["name"]))
    return {**node, "children": [_freeze_tree(child) for child in children]}
