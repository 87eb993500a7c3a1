"""In-memory implementation of history persistence, for tests and dry runs."""
import itertools
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from repo_timeline.domain.repository_interface import IHistoryStorage
from repo_timeline.domain.models import CommitRecord, CommitStats, FileChange, Repository


logger = logging.getLogger(__name__)


class InMemoryHistoryStorage(IHistoryStorage):
    """Thread-safe dictionary-backed storage with the same keys as the database schema."""

    def __init__(self):
        self._lock = threading.RLock()
        self._repo_ids = itertools.count(1)
        self._commit_ids = itertools.count(1)
        self._change_ids = itertools.count(1)
        self._repositories: Dict[int, Repository] = {}
        self._commits: Dict[int, CommitRecord] = {}
        self._commit_index: Dict[Tuple[int, str], int] = {}
        self._changes: Dict[int, Dict[str, FileChange]] = {}

    def create_repository(self, repository: Repository) -> Repository:
        now = datetime.now(timezone.utc)
        with self._lock:
            if any(r.url == repository.url for r in self._repositories.values()):
                raise ValueError(f"Repository already exists: {repository.url}")
            created = replace(repository.with_id(next(self._repo_ids)), created_at=now, updated_at=now)
            self._repositories[created.repo_id] = created
            return created

    def get_repository(self, repo_id: int) -> Optional[Repository]:
        with self._lock:
            return self._repositories.get(repo_id)

    def get_repository_by_url(self, url: str) -> Optional[Repository]:
        with self._lock:
            for repository in self._repositories.values():
                if repository.url == url:
                    return repository
            return None

    def update_repository(self, repository: Repository) -> None:
        with self._lock:
            if repository.repo_id not in self._repositories:
                return
            self._repositories[repository.repo_id] = replace(repository, updated_at=datetime.now(timezone.utc))

    def save_commits(self, repo_id: int, commits: Sequence[CommitRecord]) -> Dict[str, int]:
        ids = {}
        with self._lock:
            for commit in commits:
                key = (repo_id, commit.commit_hash)
                commit_id = self._commit_index.get(key)
                if commit_id is None:
                    commit_id = next(self._commit_ids)
                    self._commit_index[key] = commit_id
                    self._commits[commit_id] = commit.with_id(commit_id, repo_id)
                else:
                    existing = self._commits[commit_id]
                    self._commits[commit_id] = replace(
                        existing,
                        commit_order=commit.commit_order,
                        additions=existing.additions if existing.additions is not None else commit.additions,
                        deletions=existing.deletions if existing.deletions is not None else commit.deletions,
                        files_changed=(
                            existing.files_changed if existing.files_changed is not None else commit.files_changed
                        ),
                    )
                ids[commit.commit_hash] = commit_id
        return ids

    def save_file_changes(self, repo_id: int, changes_by_commit: Dict[int, List[FileChange]]) -> int:
        inserted = 0
        with self._lock:
            for commit_id, changes in changes_by_commit.items():
                stored = self._changes.setdefault(commit_id, {})
                for change in changes:
                    if change.file_path in stored:
                        continue
                    stored[change.file_path] = replace(
                        change.with_ids(commit_id, repo_id), change_id=next(self._change_ids)
                    )
                    inserted += 1
        return inserted

    def _repo_commits(self, repo_id: int) -> List[CommitRecord]:
        return [c for c in self._commits.values() if c.repo_id == repo_id]

    def get_commit_hashes(self, repo_id: int) -> Set[str]:
        with self._lock:
            return {c.commit_hash for c in self._repo_commits(repo_id)}

    def count_commits(self, repo_id: int) -> int:
        with self._lock:
            return len(self._repo_commits(repo_id))

    def list_commits(
        self,
        repo_id: int,
        offset: int = 0,
        limit: Optional[int] = None,
        keyword: Optional[str] = None,
        newest_first: bool = True,
    ) -> Tuple[List[CommitRecord], int]:
        with self._lock:
            commits = self._repo_commits(repo_id)
        if keyword:
            needle = keyword.lower()
            commits = [
                c for c in commits
                if needle in c.message.lower()
                or needle in c.author_name.lower()
                or c.commit_hash.startswith(needle)
            ]
        commits.sort(key=lambda c: c.commit_order, reverse=newest_first)
        start = max(0, offset)
        end = start + limit if limit is not None else None
        return commits[start:end], len(commits)

    def get_commit(self, commit_id: int) -> Optional[CommitRecord]:
        with self._lock:
            return self._commits.get(commit_id)

    def get_commits(self, commit_ids: Sequence[int]) -> Dict[int, CommitRecord]:
        with self._lock:
            return {cid: self._commits[cid] for cid in commit_ids if cid in self._commits}

    def update_commit_stats(self, commit_id: int, stats: CommitStats) -> None:
        with self._lock:
            if commit_id in self._commits:
                self._commits[commit_id] = self._commits[commit_id].with_stats(stats)

    def get_file_changes(self, commit_ids: Sequence[int]) -> Dict[int, List[FileChange]]:
        with self._lock:
            return {
                cid: sorted(self._changes.get(cid, {}).values(), key=lambda f: f.file_path)
                for cid in commit_ids
            }

    def get_file_history(self, repo_id: int, file_path: str) -> List[Tuple[CommitRecord, FileChange]]:
        with self._lock:
            history = [
                (self._commits[commit_id], changes[file_path])
                for commit_id, changes in self._changes.items()
                if file_path in changes and changes[file_path].repo_id == repo_id
            ]
        history.sort(key=lambda pair: pair[0].commit_order)
        return history

    def get_file_modification_counts(self, repo_id: int) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for changes in self._changes.values():
                for change in changes.values():
                    if change.repo_id == repo_id:
                        counts[change.file_path] = counts.get(change.file_path, 0) + 1
        return counts

    def get_contributor_stats(self, repo_id: int, limit: Optional[int] = 10) -> List[Dict[str, Any]]:
        authors: Dict[str, Dict[str, Any]] = {}
        with self._lock:
            commits = self._repo_commits(repo_id)
        for commit in commits:
            entry = authors.setdefault(commit.author_name, {
                "author_name": commit.author_name,
                "author_email": commit.author_email,
                "commits": 0,
                "additions": 0,
                "deletions": 0,
            })
            entry["author_email"] = max(entry["author_email"], commit.author_email)
            entry["commits"] += 1
            entry["additions"] += commit.additions or 0
            entry["deletions"] += commit.deletions or 0
        ranked = sorted(authors.values(), key=lambda a: (-a["commits"], a["author_name"]))
        return ranked[:limit] if limit is not None else ranked

    def get_repository_count(self) -> int:
        with self._lock:
            return len(self._repositories)

    def delete_repository(self, repo_id: int) -> None:
        with self._lock:
            self._repositories.pop(repo_id, None)
            for commit_id in [cid for cid, c in self._commits.items() if c.repo_id == repo_id]:
                commit = self._commits.pop(commit_id)
                self._commit_index.pop((repo_id, commit.commit_hash), None)
                self._changes.pop(commit_id, None)
        logger.info(f"Deleted repository {repo_id} from memory")

    def close(self) -> None:
        pass
