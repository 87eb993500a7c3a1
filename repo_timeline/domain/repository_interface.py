"""Repository interface (port) for history persistence.

This is the port in hexagonal architecture that the infrastructure layer implements.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from repo_timeline.domain.models import CommitRecord, CommitStats, FileChange, Repository


class IHistoryStorage(ABC):
    """Abstract interface for repository history storage."""

    @abstractmethod
    def create_repository(self, repository: Repository) -> Repository:
        """Insert a repository row and return it with its assigned ID."""
        pass

    @abstractmethod
    def get_repository(self, repo_id: int) -> Optional[Repository]:
        pass

    @abstractmethod
    def get_repository_by_url(self, url: str) -> Optional[Repository]:
        pass

    @abstractmethod
    def update_repository(self, repository: Repository) -> None:
        pass

    @abstractmethod
    def save_commits(self, repo_id: int, commits: Sequence[CommitRecord]) -> Dict[str, int]:
        """Upsert commits keyed by (repo_id, commit_hash).

        Re-saving a stored commit must not create a second row, and stats
        already computed must not be overwritten by missing ones.

        Returns:
            Mapping of commit hash to storage ID for every saved commit
        """
        pass

    @abstractmethod
    def save_file_changes(self, repo_id: int, changes_by_commit: Dict[int, List[FileChange]]) -> int:
        """Insert file changes, ignoring (commit_id, file_path) pairs already stored.

        Returns:
            Number of rows inserted
        """
        pass

    @abstractmethod
    def get_commit_hashes(self, repo_id: int) -> Set[str]:
        pass

    @abstractmethod
    def count_commits(self, repo_id: int) -> int:
        pass

    @abstractmethod
    def list_commits(
        self,
        repo_id: int,
        offset: int = 0,
        limit: Optional[int] = None,
        keyword: Optional[str] = None,
        newest_first: bool = True,
    ) -> Tuple[List[CommitRecord], int]:
        """Return a slice of commits ordered by commit_order, and the total match count."""
        pass

    @abstractmethod
    def get_commit(self, commit_id: int) -> Optional[CommitRecord]:
        pass

    @abstractmethod
    def get_commits(self, commit_ids: Sequence[int]) -> Dict[int, CommitRecord]:
        pass

    @abstractmethod
    def update_commit_stats(self, commit_id: int, stats: CommitStats) -> None:
        pass

    @abstractmethod
    def get_file_changes(self, commit_ids: Sequence[int]) -> Dict[int, List[FileChange]]:
        """File changes per commit ID, each list ordered by file path."""
        pass

    @abstractmethod
    def get_file_history(self, repo_id: int, file_path: str) -> List[Tuple[CommitRecord, FileChange]]:
        """Every change to file_path with its commit, oldest first."""
        pass

    @abstractmethod
    def get_file_modification_counts(self, repo_id: int) -> Dict[str, int]:
        pass

    @abstractmethod
    def get_contributor_stats(self, repo_id: int, limit: Optional[int] = 10) -> List[Dict[str, Any]]:
        """Top authors by commit count with their summed additions/deletions; all of them when limit is None."""
        pass

    @abstractmethod
    def get_repository_count(self) -> int:
        """Get the total number of repositories in storage."""
        pass

    @abstractmethod
    def delete_repository(self, repo_id: int) -> None:
        """Delete a repository with all its commits and file changes."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close any open connections."""
        pass
