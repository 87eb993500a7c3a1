"""In-process analysis progress per repository."""
import logging
import threading
from typing import Dict, Optional

from repo_timeline.domain.models import (
    FAILED_PROGRESS,
    AnalysisStage,
    ProgressSnapshot,
    RepositoryStatus,
)


logger = logging.getLogger(__name__)


class ProgressTracker:
    """Lock-guarded progress state, written by the job that owns a repository.

    While ANALYZING, progress only moves forward and stays below 100; DONE is
    the only state at 100 and FAILED is reported as -1.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[int, ProgressSnapshot] = {}

    def start(self, repo_id: int) -> None:
        with self._lock:
            self._states[repo_id] = ProgressSnapshot(0, RepositoryStatus.PENDING, AnalysisStage.CREATED)

    def begin(self, repo_id: int, progress: int = 0) -> None:
        """Enter ANALYZING, e.g. at the start of a job or a deepen."""
        with self._lock:
            self._states[repo_id] = ProgressSnapshot(
                _clamp(progress), RepositoryStatus.ANALYZING, AnalysisStage.CREATED
            )

    def advance(self, repo_id: int, progress: int, stage: Optional[AnalysisStage] = None) -> int:
        """Raise progress; lower values are ignored. Returns the current value."""
        with self._lock:
            current = self._states.get(repo_id)
            if current is None or current.status != RepositoryStatus.ANALYZING:
                return current.progress if current else 0
            value = max(current.progress, _clamp(progress))
            self._states[repo_id] = ProgressSnapshot(value, current.status, stage or current.stage)
            return value

    def set_stage(self, repo_id: int, stage: AnalysisStage) -> None:
        with self._lock:
            current = self._states.get(repo_id)
            if current is not None:
                self._states[repo_id] = ProgressSnapshot(current.progress, current.status, stage, current.error)
        logger.info(f"Repository {repo_id}: {stage.value}")

    def complete(self, repo_id: int) -> None:
        with self._lock:
            self._states[repo_id] = ProgressSnapshot(100, RepositoryStatus.DONE, AnalysisStage.COMPLETE)

    def fail(self, repo_id: int, error: str) -> None:
        with self._lock:
            self._states[repo_id] = ProgressSnapshot(
                FAILED_PROGRESS, RepositoryStatus.FAILED, AnalysisStage.FAILED, error
            )

    def snapshot(self, repo_id: int) -> Optional[ProgressSnapshot]:
        with self._lock:
            return self._states.get(repo_id)

    def forget(self, repo_id: int) -> None:
        with self._lock:
            self._states.pop(repo_id, None)


def _clamp(progress: int) -> int:
    return max(0, min(99, int(progress)))
