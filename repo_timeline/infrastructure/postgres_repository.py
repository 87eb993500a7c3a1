"""PostgreSQL implementation of history persistence."""
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import psycopg2
from psycopg2.extras import RealDictCursor, execute_values

from repo_timeline.domain.repository_interface import IHistoryStorage
from repo_timeline.domain.models import (
    ChangeType,
    CommitRecord,
    CommitStats,
    FileChange,
    Repository,
    RepositoryStatus,
)


logger = logging.getLogger(__name__)

_REPOSITORY_COLUMNS = """
    id, url, name, local_path, status, analyze_progress, analyze_depth,
    analyze_since, analyze_until, analyze_path_filters, total_commits,
    total_files, repo_size, default_branch, can_load_more, error_message,
    last_analyzed_at, created_at, updated_at
"""

_COMMIT_COLUMNS = """
    id, repo_id, commit_hash, parent_hash, author_name, author_email,
    commit_message, commit_time, commit_order, is_merge, additions,
    deletions, files_changed
"""

_FILE_CHANGE_COLUMNS = """
    id, repo_id, commit_id, file_path, old_path, change_type, additions,
    deletions, diff_text, file_content, content_hash
"""


def _repository_from_row(row: Dict[str, Any]) -> Repository:
    return Repository(
        url=row["url"],
        name=row["name"],
        local_path=row["local_path"],
        status=RepositoryStatus(row["status"]),
        analyze_progress=row["analyze_progress"],
        analyze_depth=row["analyze_depth"],
        analyze_since=row["analyze_since"],
        analyze_until=row["analyze_until"],
        analyze_path_filters=tuple(row["analyze_path_filters"] or ()),
        total_commits=row["total_commits"],
        total_files=row["total_files"],
        repo_size=row["repo_size"],
        default_branch=row["default_branch"],
        can_load_more=row["can_load_more"],
        error_message=row["error_message"],
        last_analyzed_at=row["last_analyzed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        repo_id=row["id"],
    )


def _commit_from_row(row: Dict[str, Any]) -> CommitRecord:
    return CommitRecord(
        commit_hash=row["commit_hash"],
        author_name=row["author_name"],
        author_email=row["author_email"],
        message=row["commit_message"],
        commit_time=row["commit_time"],
        commit_order=row["commit_order"],
        parent_hash=row["parent_hash"],
        is_merge=row["is_merge"],
        additions=row["additions"],
        deletions=row["deletions"],
        files_changed=row["files_changed"],
        repo_id=row["repo_id"],
        commit_id=row["id"],
    )


def _file_change_from_row(row: Dict[str, Any], prefix: str = "") -> FileChange:
    return FileChange(
        file_path=row[f"{prefix}file_path"],
        change_type=ChangeType(row[f"{prefix}change_type"]),
        old_path=row[f"{prefix}old_path"],
        additions=row[f"{prefix}additions"],
        deletions=row[f"{prefix}deletions"],
        diff_text=row[f"{prefix}diff_text"],
        file_content=row[f"{prefix}file_content"],
        content_hash=row[f"{prefix}content_hash"],
        commit_id=row[f"{prefix}commit_id"],
        repo_id=row[f"{prefix}repo_id"],
        change_id=row[f"{prefix}id"],
    )


class PostgresHistoryStorage(IHistoryStorage):
    """PostgreSQL implementation of history storage.

    Commits and file changes are written with bulk UPSERTs keyed on their
    natural keys, so re-running an analysis never duplicates rows. One
    connection is shared; a lock serializes transactions across threads.
    """

    def __init__(self, connection_string: str):
        """Initialize PostgreSQL connection.

        Args:
            connection_string: PostgreSQL connection string
        """
        self._connection_string = connection_string
        self._conn = psycopg2.connect(connection_string)
        self._conn.autocommit = False
        self._lock = threading.RLock()
        logger.info("Connected to PostgreSQL database")

    def _write(self, operation: str, statement, *args):
        """Run statement(cursor, *args) in a transaction; roll back and re-raise on error."""
        with self._lock:
            cursor = self._conn.cursor(cursor_factory=RealDictCursor)
            try:
                result = statement(cursor, *args)
                self._conn.commit()
                return result
            except Exception as e:
                self._conn.rollback()
                logger.error(f"Error during {operation}: {e}")
                raise
            finally:
                cursor.close()

    def _read(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            cursor = self._conn.cursor(cursor_factory=RealDictCursor)
            try:
                cursor.execute(query, params)
                rows = cursor.fetchall()
                # Close the read transaction so later reads see fresh data
                self._conn.commit()
                return rows
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cursor.close()

    def create_repository(self, repository: Repository) -> Repository:
        def insert(cursor):
            cursor.execute(
                f"""
                INSERT INTO repository (
                    url, name, local_path, status, analyze_progress, analyze_depth,
                    analyze_since, analyze_until, analyze_path_filters, total_commits,
                    total_files, repo_size, default_branch, can_load_more, error_message,
                    last_analyzed_at, created_at, updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                        CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                RETURNING {_REPOSITORY_COLUMNS}
                """,
                self._repository_values(repository),
            )
            return _repository_from_row(cursor.fetchone())

        created = self._write("create_repository", insert)
        logger.info(f"Created repository {created.repo_id} for {created.url}")
        return created

    def _repository_values(self, repository: Repository) -> Tuple:
        return (
            repository.url,
            repository.name,
            repository.local_path,
            repository.status.value,
            repository.analyze_progress,
            repository.analyze_depth,
            repository.analyze_since,
            repository.analyze_until,
            list(repository.analyze_path_filters),
            repository.total_commits,
            repository.total_files,
            repository.repo_size,
            repository.default_branch,
            repository.can_load_more,
            repository.error_message,
            repository.last_analyzed_at,
        )

    def get_repository(self, repo_id: int) -> Optional[Repository]:
        rows = self._read(f"SELECT {_REPOSITORY_COLUMNS} FROM repository WHERE id = %s", (repo_id,))
        return _repository_from_row(rows[0]) if rows else None

    def get_repository_by_url(self, url: str) -> Optional[Repository]:
        rows = self._read(f"SELECT {_REPOSITORY_COLUMNS} FROM repository WHERE url = %s", (url,))
        return _repository_from_row(rows[0]) if rows else None

    def update_repository(self, repository: Repository) -> None:
        def update(cursor):
            cursor.execute(
                """
                UPDATE repository SET
                    url = %s, name = %s, local_path = %s, status = %s, analyze_progress = %s,
                    analyze_depth = %s, analyze_since = %s, analyze_until = %s,
                    analyze_path_filters = %s, total_commits = %s, total_files = %s,
                    repo_size = %s, default_branch = %s, can_load_more = %s,
                    error_message = %s, last_analyzed_at = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                self._repository_values(repository) + (repository.repo_id,),
            )

        self._write("update_repository", update)

    def save_commits(self, repo_id: int, commits: Sequence[CommitRecord]) -> Dict[str, int]:
        """Save or update commits using a bulk UPSERT.

        commit_order is refreshed so a deeper walk keeps the ordering
        contiguous. Stats already computed are kept when the new row has none.
        """
        if not commits:
            return {}

        unique = list({c.commit_hash: c for c in commits}.values())
        values = [
            (
                repo_id,
                c.commit_hash,
                c.parent_hash,
                c.author_name,
                c.author_email,
                c.message,
                c.commit_time,
                c.commit_order,
                c.is_merge,
                c.additions,
                c.deletions,
                c.files_changed,
            )
            for c in unique
        ]
        query = """
            INSERT INTO commit_record (
                repo_id, commit_hash, parent_hash, author_name, author_email,
                commit_message, commit_time, commit_order, is_merge, additions,
                deletions, files_changed
            )
            VALUES %s
            ON CONFLICT (repo_id, commit_hash)
            DO UPDATE SET
                commit_order = EXCLUDED.commit_order,
                additions = COALESCE(commit_record.additions, EXCLUDED.additions),
                deletions = COALESCE(commit_record.deletions, EXCLUDED.deletions),
                files_changed = COALESCE(commit_record.files_changed, EXCLUDED.files_changed)
            RETURNING commit_hash, id
        """

        def upsert(cursor):
            rows = execute_values(cursor, query, values, page_size=500, fetch=True)
            return {row["commit_hash"]: row["id"] for row in rows}

        ids = self._write("save_commits", upsert)
        logger.info(f"Saved {len(ids)} commits for repository {repo_id}")
        return ids

    def save_file_changes(self, repo_id: int, changes_by_commit: Dict[int, List[FileChange]]) -> int:
        values = []
        for commit_id, changes in changes_by_commit.items():
            seen = set()
            for change in changes:
                if change.file_path in seen:
                    continue
                seen.add(change.file_path)
                values.append((
                    repo_id,
                    commit_id,
                    change.file_path,
                    change.old_path,
                    change.file_name,
                    change.file_extension,
                    change.change_type.value,
                    change.additions,
                    change.deletions,
                    change.diff_text,
                    change.file_content,
                    change.content_hash,
                ))
        if not values:
            return 0

        query = """
            INSERT INTO file_change (
                repo_id, commit_id, file_path, old_path, file_name, file_extension,
                change_type, additions, deletions, diff_text, file_content, content_hash
            )
            VALUES %s
            ON CONFLICT (commit_id, file_path) DO NOTHING
            RETURNING id
        """

        def insert(cursor):
            return len(execute_values(cursor, query, values, page_size=500, fetch=True))

        inserted = self._write("save_file_changes", insert)
        logger.info(f"Saved {inserted} file changes for repository {repo_id}")
        return inserted

    def get_commit_hashes(self, repo_id: int) -> Set[str]:
        rows = self._read("SELECT commit_hash FROM commit_record WHERE repo_id = %s", (repo_id,))
        return {row["commit_hash"] for row in rows}

    def count_commits(self, repo_id: int) -> int:
        rows = self._read("SELECT COUNT(*) AS total FROM commit_record WHERE repo_id = %s", (repo_id,))
        return rows[0]["total"]

    def list_commits(
        self,
        repo_id: int,
        offset: int = 0,
        limit: Optional[int] = None,
        keyword: Optional[str] = None,
        newest_first: bool = True,
    ) -> Tuple[List[CommitRecord], int]:
        where = "repo_id = %s"
        params: List[Any] = [repo_id]
        if keyword:
            pattern = f"%{keyword}%"
            where += " AND (commit_message ILIKE %s OR author_name ILIKE %s OR commit_hash LIKE %s)"
            params.extend([pattern, pattern, f"{keyword.lower()}%"])

        total = self._read(f"SELECT COUNT(*) AS total FROM commit_record WHERE {where}", params)[0]["total"]
        order = "DESC" if newest_first else "ASC"
        query = f"SELECT {_COMMIT_COLUMNS} FROM commit_record WHERE {where} ORDER BY commit_order {order} OFFSET %s"
        page_params = params + [max(0, offset)]
        if limit is not None:
            query += " LIMIT %s"
            page_params.append(limit)
        rows = self._read(query, page_params)
        return [_commit_from_row(row) for row in rows], total

    def get_commit(self, commit_id: int) -> Optional[CommitRecord]:
        rows = self._read(f"SELECT {_COMMIT_COLUMNS} FROM commit_record WHERE id = %s", (commit_id,))
        return _commit_from_row(rows[0]) if rows else None

    def get_commits(self, commit_ids: Sequence[int]) -> Dict[int, CommitRecord]:
        if not commit_ids:
            return {}
        rows = self._read(
            f"SELECT {_COMMIT_COLUMNS} FROM commit_record WHERE id = ANY(%s)", (list(commit_ids),)
        )
        return {row["id"]: _commit_from_row(row) for row in rows}

    def update_commit_stats(self, commit_id: int, stats: CommitStats) -> None:
        def update(cursor):
            cursor.execute(
                "UPDATE commit_record SET additions = %s, deletions = %s, files_changed = %s WHERE id = %s",
                (stats.additions, stats.deletions, stats.files_changed, commit_id),
            )

        self._write("update_commit_stats", update)

    def get_file_changes(self, commit_ids: Sequence[int]) -> Dict[int, List[FileChange]]:
        result: Dict[int, List[FileChange]] = {cid: [] for cid in commit_ids}
        if not commit_ids:
            return result
        rows = self._read(
            f"SELECT {_FILE_CHANGE_COLUMNS} FROM file_change WHERE commit_id = ANY(%s) ORDER BY commit_id, file_path",
            (list(commit_ids),),
        )
        for row in rows:
            result.setdefault(row["commit_id"], []).append(_file_change_from_row(row))
        return result

    def get_file_history(self, repo_id: int, file_path: str) -> List[Tuple[CommitRecord, FileChange]]:
        rows = self._read(
            f"""
            SELECT c.id, c.repo_id, c.commit_hash, c.parent_hash, c.author_name, c.author_email,
                   c.commit_message, c.commit_time, c.commit_order, c.is_merge, c.additions,
                   c.deletions, c.files_changed,
                   f.id AS fc_id, f.repo_id AS fc_repo_id, f.commit_id AS fc_commit_id,
                   f.file_path AS fc_file_path, f.old_path AS fc_old_path,
                   f.change_type AS fc_change_type, f.additions AS fc_additions,
                   f.deletions AS fc_deletions, f.diff_text AS fc_diff_text,
                   f.file_content AS fc_file_content, f.content_hash AS fc_content_hash
            FROM file_change f
            JOIN commit_record c ON c.id = f.commit_id
            WHERE f.repo_id = %s AND f.file_path = %s
            ORDER BY c.commit_order ASC
            """,
            (repo_id, file_path),
        )
        return [(_commit_from_row(row), _file_change_from_row(row, prefix="fc_")) for row in rows]

    def get_file_modification_counts(self, repo_id: int) -> Dict[str, int]:
        rows = self._read(
            "SELECT file_path, COUNT(*) AS modifications FROM file_change WHERE repo_id = %s GROUP BY file_path",
            (repo_id,),
        )
        return {row["file_path"]: row["modifications"] for row in rows}

    def get_contributor_stats(self, repo_id: int, limit: Optional[int] = 10) -> List[Dict[str, Any]]:
        query = """
            SELECT author_name,
                   MAX(author_email) AS author_email,
                   COUNT(*) AS commits,
                   COALESCE(SUM(additions), 0) AS additions,
                   COALESCE(SUM(deletions), 0) AS deletions
            FROM commit_record
            WHERE repo_id = %s
            GROUP BY author_name
            ORDER BY commits DESC, author_name ASC
        """
        params: List[Any] = [repo_id]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        return [
            {
                "author_name": row["author_name"],
                "author_email": row["author_email"],
                "commits": row["commits"],
                "additions": int(row["additions"]),
                "deletions": int(row["deletions"]),
            }
            for row in self._read(query, params)
        ]

    def delete_repository(self, repo_id: int) -> None:
        def delete(cursor):
            # commit_record and file_change rows cascade
            cursor.execute("DELETE FROM repository WHERE id = %s", (repo_id,))

        self._write("delete_repository", delete)
        logger.info(f"Deleted repository {repo_id} from database")

    def get_repository_count(self) -> int:
        """Get the total number of repositories in storage."""
        return self._read("SELECT COUNT(*) AS total FROM repository")[0]["total"]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            logger.info("Closed PostgreSQL connection")
