"""Analysis orchestrator driving clone, parse, extract and persist for a repository."""
import asyncio
import hashlib
import logging
import os
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from repo_timeline.application.content_cache import ContentCache
from repo_timeline.application.progress_tracker import ProgressTracker
from repo_timeline.domain.exceptions import (
    AnalysisCancelledError,
    CloneError,
    InvalidOptionsError,
    InvalidStateError,
    RepositoryBusyError,
    RepositoryNotFoundError,
)
from repo_timeline.domain.models import (
    FAILED_PROGRESS,
    UNBOUNDED_DEPTH,
    AnalysisStage,
    AnalyzeOptions,
    ChangeType,
    CommitRecord,
    ContentRequest,
    FileChange,
    ProgressSnapshot,
    Repository,
    RepositoryStatus,
)
from repo_timeline.domain.path_filters import matches_path_filters
from repo_timeline.domain.repository_interface import IHistoryStorage
from repo_timeline.infrastructure.clone_manager import CloneManager
from repo_timeline.infrastructure.commit_parser import CommitHistoryParser
from repo_timeline.infrastructure.file_change_extractor import FileChangeExtractor


logger = logging.getLogger(__name__)

CLONE_DONE_PROGRESS = 20
METADATA_DONE_PROGRESS = 30
PARSE_DONE_PROGRESS = 80
PERSIST_DONE_PROGRESS = 95


class CancellationToken:
    """Cooperative cancellation flag checked at stage boundaries."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelledError()


class AnalysisOrchestrator:
    """Application service running one ingestion job per repository.

    Jobs run as asyncio tasks; the git and storage work of a job runs in a
    worker thread. Callers get the repository back immediately and poll
    get_progress.
    """

    def __init__(
        self,
        storage: IHistoryStorage,
        clone_manager: CloneManager,
        commit_parser: CommitHistoryParser,
        file_change_extractor: FileChangeExtractor,
        progress_tracker: Optional[ProgressTracker] = None,
        content_cache: Optional[ContentCache] = None,
        timeline_cache: Optional[ContentCache] = None,
        repo_storage_path: str = "./repos",
        batch_size: int = 200,
        store_snapshots: bool = False,
        default_options: Optional[AnalyzeOptions] = None,
    ):
        """Initialize the orchestrator.

        Args:
            storage: History storage implementation
            clone_manager: Obtains and deepens local copies
            commit_parser: Reads commit history
            file_change_extractor: Reads per-commit file changes and contents
            progress_tracker: Shared progress state
            content_cache: File content cache, invalidated on delete
            timeline_cache: File timeline cache, invalidated after each job
            repo_storage_path: Directory holding local copies
            batch_size: Commits extracted and persisted per batch
            store_snapshots: Store file content with each change
            default_options: Options used when analyze gets none
        """
        if batch_size <= 0:
            raise InvalidOptionsError("batch_size must be positive")
        self._storage = storage
        self._clone_manager = clone_manager
        self._commit_parser = commit_parser
        self._extractor = file_change_extractor
        self._tracker = progress_tracker or ProgressTracker()
        self._content_cache = content_cache
        self._timeline_cache = timeline_cache
        self._repo_storage_path = repo_storage_path
        self._batch_size = batch_size
        self._store_snapshots = store_snapshots
        self._default_options = default_options or AnalyzeOptions.recommended()
        self._jobs: Dict[int, asyncio.Task] = {}
        self._tokens: Dict[int, CancellationToken] = {}

    @property
    def progress_tracker(self) -> ProgressTracker:
        return self._tracker

    def is_running(self, repo_id: int) -> bool:
        task = self._jobs.get(repo_id)
        return task is not None and not task.done()

    async def analyze(self, url: str, options: Optional[AnalyzeOptions] = None) -> Repository:
        """Start analyzing url and return its repository without waiting.

        A repository that is DONE, or ANALYZING with a live job, is returned
        unchanged. A FAILED or stale repository is reset and analyzed again
        into a fresh local copy.

        Args:
            url: Remote repository URL
            options: Depth, time window and path filters

        Returns:
            The repository row as stored when the job was started
        """
        if not url or not url.strip():
            raise InvalidOptionsError("Repository URL is required")
        url = url.strip()
        options = options or self._default_options

        existing = self._storage.get_repository_by_url(url)
        if existing is not None:
            if self.is_running(existing.repo_id):
                logger.info(f"Repository {existing.repo_id} is already being analyzed")
                return existing
            if existing.status == RepositoryStatus.DONE:
                logger.info(f"Repository {existing.repo_id} already analyzed")
                return existing
            logger.info(f"Resetting repository {existing.repo_id} (status {existing.status.value})")
            repository = replace(
                existing.with_options(options),
                local_path=self._new_local_path(),
                status=RepositoryStatus.PENDING,
                analyze_progress=0,
                error_message=None,
            )
            self._storage.update_repository(repository)
            stale_path = existing.local_path
        else:
            repository = self._storage.create_repository(Repository(
                url=url,
                name=Repository.name_from_url(url),
                local_path=self._new_local_path(),
            ).with_options(options))
            stale_path = None

        self._tracker.start(repository.repo_id)
        self._start_job(repository.repo_id, lambda token: self._run_job(repository, options, token, stale_path=stale_path))
        return repository

    async def fetch_more_history(self, repo_id: int, additional_depth: int) -> Repository:
        """Deepen an analyzed repository and ingest the additional commits.

        Raises:
            InvalidOptionsError: additional_depth is not positive
            RepositoryNotFoundError: Unknown repository
            RepositoryBusyError: A job is running for the repository
            InvalidStateError: The repository is not DONE
        """
        if additional_depth <= 0:
            raise InvalidOptionsError(f"additional_depth must be positive, got {additional_depth}")
        repository = self._require(repo_id)
        if self.is_running(repo_id):
            raise RepositoryBusyError(repo_id)
        if repository.status != RepositoryStatus.DONE:
            raise InvalidStateError(
                f"Repository {repo_id} is {repository.status.value}; only DONE repositories can load more history"
            )

        options = repository.analyze_options()
        if options.depth != UNBOUNDED_DEPTH:
            options = options.with_depth(options.depth + additional_depth)
        repository = replace(
            repository.with_options(options),
            status=RepositoryStatus.ANALYZING,
            analyze_progress=0,
            error_message=None,
        )
        self._storage.update_repository(repository)
        self._tracker.begin(repo_id)
        logger.info(f"Fetching {additional_depth} more commits for repository {repo_id} (depth {options.depth})")
        self._start_job(repo_id, lambda token: self._run_job(repository, options, token, deepen_by=additional_depth))
        return repository

    async def delete(self, repo_id: int) -> None:
        """Delete a repository's rows, cached entries and local copy."""
        repository = self._require(repo_id)
        if self.is_running(repo_id):
            raise RepositoryBusyError(repo_id)
        self._storage.delete_repository(repo_id)
        for cache in (self._content_cache, self._timeline_cache):
            if cache is not None:
                cache.invalidate_repository(repo_id)
        await asyncio.to_thread(self._clone_manager.delete_local_repository, repository.local_path)
        self._tracker.forget(repo_id)
        logger.info(f"Deleted repository {repo_id} ({repository.url})")

    def cancel(self, repo_id: int) -> bool:
        """Request cancellation; the job fails at its next stage boundary."""
        token = self._tokens.get(repo_id)
        if token is None or not self.is_running(repo_id):
            return False
        token.cancel()
        return True

    def get_progress(self, repo_id: int) -> ProgressSnapshot:
        snapshot = self._tracker.snapshot(repo_id)
        if snapshot is not None:
            return snapshot
        repository = self._require(repo_id)
        stage = {
            RepositoryStatus.DONE: AnalysisStage.COMPLETE,
            RepositoryStatus.FAILED: AnalysisStage.FAILED,
        }.get(repository.status, AnalysisStage.CREATED)
        return ProgressSnapshot(repository.analyze_progress, repository.status, stage, repository.error_message)

    async def wait_for(self, repo_id: int, timeout: Optional[float] = None) -> Repository:
        """Wait for the running job of repo_id, if any, and return the stored repository."""
        task = self._jobs.get(repo_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return self._require(repo_id)

    async def close(self) -> None:
        """Cancel running jobs, wait for them and close storage."""
        for token in self._tokens.values():
            token.cancel()
        jobs = [task for task in self._jobs.values() if not task.done()]
        if jobs:
            logger.info(f"Waiting for {len(jobs)} running job(s) to stop")
            await asyncio.gather(*jobs, return_exceptions=True)
        self._storage.close()

    def _require(self, repo_id: int) -> Repository:
        repository = self._storage.get_repository(repo_id)
        if repository is None:
            raise RepositoryNotFoundError(repo_id)
        return repository

    def _new_local_path(self) -> str:
        return os.path.join(self._repo_storage_path, uuid.uuid4().hex)

    def _start_job(self, repo_id: int, make_job) -> None:
        if self.is_running(repo_id):
            raise RepositoryBusyError(repo_id)
        token = CancellationToken()
        task = asyncio.create_task(make_job(token))
        self._tokens[repo_id] = token
        self._jobs[repo_id] = task

        def finished(done: asyncio.Task) -> None:
            if self._jobs.get(repo_id) is done:
                del self._jobs[repo_id]
                self._tokens.pop(repo_id, None)

        task.add_done_callback(finished)

    async def _run_job(
        self,
        repository: Repository,
        options: AnalyzeOptions,
        token: CancellationToken,
        stale_path: Optional[str] = None,
        deepen_by: Optional[int] = None,
    ) -> None:
        repo_id = repository.repo_id
        try:
            await asyncio.to_thread(self._pipeline, repository, options, token, stale_path, deepen_by)
        except Exception as e:
            logger.error(f"Analysis of repository {repo_id} failed: {e}", exc_info=True)
            self._mark_failed(repo_id, str(e))

    def _mark_failed(self, repo_id: int, error: str) -> None:
        self._tracker.fail(repo_id, error)
        try:
            repository = self._storage.get_repository(repo_id)
            if repository is not None:
                self._storage.update_repository(replace(
                    repository,
                    status=RepositoryStatus.FAILED,
                    analyze_progress=FAILED_PROGRESS,
                    error_message=error,
                ))
        except Exception as e:
            # The job task is the outermost boundary; the tracker already holds the failure
            logger.error(f"Could not record failure of repository {repo_id}: {e}", exc_info=True)

    def _checkpoint(self, repository: Repository, progress: int, stage: AnalysisStage) -> Repository:
        self._tracker.set_stage(repository.repo_id, stage)
        value = self._tracker.advance(repository.repo_id, progress)
        repository = replace(repository, analyze_progress=value)
        self._storage.update_repository(repository)
        return repository

    def _pipeline(
        self,
        repository: Repository,
        options: AnalyzeOptions,
        token: CancellationToken,
        stale_path: Optional[str],
        deepen_by: Optional[int],
    ) -> Repository:
        repo_id = repository.repo_id
        local_path = repository.local_path
        self._tracker.begin(repo_id)
        repository = replace(repository, status=RepositoryStatus.ANALYZING, error_message=None)
        repository = self._checkpoint(repository, 5, AnalysisStage.CLONING)

        token.raise_if_cancelled()
        if stale_path and stale_path != local_path:
            self._clone_manager.delete_local_repository(stale_path)
        if deepen_by:
            if not self._clone_manager.fetch_more_history(local_path, deepen_by):
                raise CloneError(f"Failed to fetch {deepen_by} more commits into {local_path}")
        else:
            result = self._clone_manager.clone(repository.url, local_path, options)
            if not result:
                raise CloneError(result.error or f"Failed to clone {repository.url}")
        repository = self._checkpoint(repository, CLONE_DONE_PROGRESS, AnalysisStage.PARSING_METADATA)

        token.raise_if_cancelled()
        info = self._commit_parser.parse_repository_info(local_path)
        repository = replace(
            repository,
            default_branch=info.default_branch,
            total_files=info.total_files,
            repo_size=info.repo_size,
        )
        repository = self._checkpoint(repository, METADATA_DONE_PROGRESS, AnalysisStage.PARSING_COMMITS)

        token.raise_if_cancelled()
        span = PARSE_DONE_PROGRESS - METADATA_DONE_PROGRESS
        commits = self._commit_parser.parse_commits_with_options(
            local_path,
            options,
            lambda percent: self._tracker.advance(repo_id, METADATA_DONE_PROGRESS + percent * span // 100),
        )
        repository = self._checkpoint(repository, PARSE_DONE_PROGRESS, AnalysisStage.EXTRACTING_CHANGES)

        self._ingest(repository, commits, options, token)

        token.raise_if_cancelled()
        repository = replace(
            repository,
            status=RepositoryStatus.DONE,
            analyze_progress=100,
            total_commits=max(repository.total_commits, len(commits)),
            can_load_more=self._clone_manager.is_shallow(local_path),
            error_message=None,
            last_analyzed_at=datetime.now(timezone.utc),
        )
        self._storage.update_repository(repository)
        self._tracker.complete(repo_id)
        if self._timeline_cache is not None:
            self._timeline_cache.invalidate_repository(repo_id)
        logger.info(
            f"Analysis of repository {repo_id} complete: {len(commits)} commits "
            f"(can load more: {repository.can_load_more})"
        )
        return repository

    def _ingest(
        self,
        repository: Repository,
        commits: List[CommitRecord],
        options: AnalyzeOptions,
        token: CancellationToken,
    ) -> None:
        """Extract and persist commits batch by batch; earlier batches stay persisted on failure."""
        repo_id = repository.repo_id
        known = self._storage.get_commit_hashes(repo_id)
        batches = [commits[i:i + self._batch_size] for i in range(0, len(commits), self._batch_size)]
        span = PERSIST_DONE_PROGRESS - PARSE_DONE_PROGRESS

        for index, batch in enumerate(batches, start=1):
            token.raise_if_cancelled()
            self._tracker.set_stage(repo_id, AnalysisStage.EXTRACTING_CHANGES)
            new_hashes = [c.commit_hash for c in batch if c.commit_hash not in known]
            changes = self._extractor.parse_file_changes_batch(repository.local_path, new_hashes) if new_hashes else {}
            if options.path_filters:
                changes = {
                    h: [c for c in file_changes if matches_path_filters(c.file_path, options.path_filters)]
                    for h, file_changes in changes.items()
                }
            if self._store_snapshots:
                changes = self._attach_snapshots(repository.local_path, changes)

            token.raise_if_cancelled()
            self._tracker.set_stage(repo_id, AnalysisStage.PERSISTING)
            ids = self._storage.save_commits(repo_id, batch)
            self._storage.save_file_changes(
                repo_id,
                {ids[h]: file_changes for h, file_changes in changes.items() if file_changes and h in ids},
            )
            known.update(new_hashes)
            self._tracker.advance(repo_id, PARSE_DONE_PROGRESS + index * span // len(batches))
            logger.info(
                f"Repository {repo_id}: persisted batch {index}/{len(batches)} "
                f"({len(batch)} commits, {len(new_hashes)} new)"
            )

    def _attach_snapshots(self, local_path: str, changes: Dict[str, List[FileChange]]) -> Dict[str, List[FileChange]]:
        requests = [
            ContentRequest(commit_hash, change.file_path)
            for commit_hash, file_changes in changes.items()
            for change in file_changes
            if change.change_type != ChangeType.DELETE
        ]
        if not requests:
            return changes
        contents = self._extractor.prefetch_file_contents(local_path, requests)
        result = {}
        for commit_hash, file_changes in changes.items():
            attached = []
            for change in file_changes:
                content = contents.get(ContentRequest(commit_hash, change.file_path).key)
                if content is not None:
                    change = replace(
                        change,
                        file_content=content,
                        content_hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
                    )
                attached.append(change)
            result[commit_hash] = attached
        return result
