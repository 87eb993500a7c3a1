"""Domain models representing repositories, commits and file changes."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from repo_timeline.domain.exceptions import InvalidOptionsError


class RepositoryStatus(str, Enum):
    """Lifecycle of an analyzed repository."""
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    DONE = "DONE"
    FAILED = "FAILED"


class ChangeType(str, Enum):
    """Kind of change a commit made to a file."""
    ADD = "ADD"
    MODIFY = "MODIFY"
    DELETE = "DELETE"
    RENAME = "RENAME"
    COPY = "COPY"


class AnalysisStage(str, Enum):
    """Stages of one ingestion job."""
    CREATED = "CREATED"
    CLONING = "CLONING"
    PARSING_METADATA = "PARSING_METADATA"
    PARSING_COMMITS = "PARSING_COMMITS"
    EXTRACTING_CHANGES = "EXTRACTING_CHANGES"
    PERSISTING = "PERSISTING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


UNBOUNDED_DEPTH = -1
FAILED_PROGRESS = -1
SHORT_HASH_LENGTH = 7
MAX_EXTENSION_LENGTH = 10


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidOptionsError(f"Invalid ISO-8601 timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no", "off"):
        return False
    raise InvalidOptionsError(f"Invalid boolean for {name}: {value!r}")


@dataclass(frozen=True)
class AnalyzeOptions:
    """Constraints for one analysis: history depth, time window and paths.

    depth is the number of most recent commits to analyze, -1 for all of them.
    """
    depth: int = 500
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    path_filters: Tuple[str, ...] = ()
    shallow: bool = True
    single_branch: bool = True

    def __post_init__(self):
        if self.depth == 0 or self.depth < UNBOUNDED_DEPTH:
            raise InvalidOptionsError(f"depth must be -1 or a positive integer, got {self.depth}")
        object.__setattr__(self, "since", parse_timestamp(self.since))
        object.__setattr__(self, "until", parse_timestamp(self.until))
        if self.since and self.until and self.since > self.until:
            raise InvalidOptionsError("since must not be after until")
        filters = tuple(f.strip() for f in (self.path_filters or ()) if f and f.strip())
        object.__setattr__(self, "path_filters", filters)

    @property
    def effective_clone_depth(self) -> int:
        """Depth passed to clone; 0 means a full clone."""
        if self.depth == UNBOUNDED_DEPTH:
            return 10000 if self.shallow else 0
        return self.depth

    @property
    def effective_analyze_depth(self) -> Optional[int]:
        """Maximum number of commits to analyze, None when unbounded."""
        if self.depth == UNBOUNDED_DEPTH:
            return None
        return self.depth

    @property
    def has_time_window(self) -> bool:
        return self.since is not None or self.until is not None

    def with_depth(self, depth: int) -> 'AnalyzeOptions':
        return replace(self, depth=depth)

    @classmethod
    def fast(cls) -> 'AnalyzeOptions':
        return cls(depth=100, shallow=True)

    @classmethod
    def recommended(cls) -> 'AnalyzeOptions':
        return cls(depth=500, shallow=True)

    @classmethod
    def deep(cls) -> 'AnalyzeOptions':
        return cls(depth=2000, shallow=True)

    @classmethod
    def full(cls) -> 'AnalyzeOptions':
        return cls(depth=UNBOUNDED_DEPTH, shallow=False)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AnalyzeOptions':
        """Build options from the wire shape (camelCase or snake_case keys)."""
        if not data:
            return cls()
        defaults = cls()

        def pick(*names, default=None):
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return default

        depth = pick("depth", default=defaults.depth)
        try:
            depth = int(depth)
        except (TypeError, ValueError) as e:
            raise InvalidOptionsError(f"Invalid depth: {depth!r}") from e

        filters = pick("pathFilters", "path_filters", default=())
        if isinstance(filters, str):
            filters = [filters]

        return cls(
            depth=depth,
            since=parse_timestamp(pick("since")),
            until=parse_timestamp(pick("until")),
            path_filters=tuple(filters),
            shallow=_parse_bool(pick("shallow", default=defaults.shallow), "shallow"),
            single_branch=_parse_bool(
                pick("singleBranch", "single_branch", default=defaults.single_branch),
                "singleBranch",
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depth": self.depth,
            "since": self.since.isoformat() if self.since else None,
            "until": self.until.isoformat() if self.until else None,
            "pathFilters": list(self.path_filters),
            "shallow": self.shallow,
            "singleBranch": self.single_branch,
        }


@dataclass(frozen=True)
class Repository:
    """An analyzed remote repository and the state of its local copy.

    The analyze_* fields echo the options that produced the current state.
    """
    url: str
    name: str
    local_path: str
    status: RepositoryStatus = RepositoryStatus.PENDING
    analyze_progress: int = 0
    analyze_depth: int = 500
    analyze_since: Optional[datetime] = None
    analyze_until: Optional[datetime] = None
    analyze_path_filters: Tuple[str, ...] = ()
    total_commits: int = 0
    total_files: int = 0
    repo_size: int = 0
    default_branch: Optional[str] = None
    can_load_more: bool = False
    error_message: Optional[str] = None
    last_analyzed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    repo_id: Optional[int] = None

    @staticmethod
    def name_from_url(url: str) -> str:
        """https://github.com/owner/repo.git -> repo"""
        name = url.rstrip("/")
        if name.endswith(".git"):
            name = name[:-4]
        for separator in ("/", ":"):
            if separator in name:
                name = name.rsplit(separator, 1)[1]
        return name

    def with_id(self, repo_id: int) -> 'Repository':
        """Returns a new Repository instance with the provided ID."""
        return replace(self, repo_id=repo_id)

    def with_options(self, options: AnalyzeOptions) -> 'Repository':
        return replace(
            self,
            analyze_depth=options.depth,
            analyze_since=options.since,
            analyze_until=options.until,
            analyze_path_filters=options.path_filters,
        )

    def analyze_options(self) -> AnalyzeOptions:
        """Rebuild the options echoed on this repository."""
        return AnalyzeOptions(
            depth=self.analyze_depth,
            since=self.analyze_since,
            until=self.analyze_until,
            path_filters=self.analyze_path_filters,
        )


@dataclass(frozen=True)
class CommitRecord:
    """One commit of a repository's history.

    Only the first parent of a merge is kept in parent_hash. additions,
    deletions and files_changed stay None until stats are computed.
    """
    commit_hash: str
    author_name: str
    author_email: str
    message: str
    commit_time: datetime
    commit_order: int
    parent_hash: Optional[str] = None
    is_merge: bool = False
    additions: Optional[int] = None
    deletions: Optional[int] = None
    files_changed: Optional[int] = None
    repo_id: Optional[int] = None
    commit_id: Optional[int] = None

    @property
    def short_hash(self) -> str:
        return self.commit_hash[:SHORT_HASH_LENGTH]

    @property
    def has_stats(self) -> bool:
        return self.additions is not None and self.deletions is not None

    def with_id(self, commit_id: int, repo_id: Optional[int] = None) -> 'CommitRecord':
        return replace(self, commit_id=commit_id, repo_id=repo_id if repo_id is not None else self.repo_id)

    def with_stats(self, stats: 'CommitStats') -> 'CommitRecord':
        return replace(
            self,
            additions=stats.additions,
            deletions=stats.deletions,
            files_changed=stats.files_changed,
        )


@dataclass(frozen=True)
class FileChange:
    """A change to one file made by one commit."""
    file_path: str
    change_type: ChangeType
    old_path: Optional[str] = None
    additions: Optional[int] = None
    deletions: Optional[int] = None
    diff_text: Optional[str] = None
    file_content: Optional[str] = None
    content_hash: Optional[str] = None
    commit_id: Optional[int] = None
    repo_id: Optional[int] = None
    change_id: Optional[int] = None

    @property
    def file_name(self) -> str:
        return self.file_path.rsplit("/", 1)[-1]

    @property
    def file_extension(self) -> Optional[str]:
        name = self.file_name
        if "." not in name:
            return None
        return name.rsplit(".", 1)[1][:MAX_EXTENSION_LENGTH]

    def with_ids(self, commit_id: int, repo_id: int) -> 'FileChange':
        return replace(self, commit_id=commit_id, repo_id=repo_id)


@dataclass(frozen=True)
class CommitStats:
    """Aggregate line statistics of a commit.

    calculated is False when no strategy could compute them; counts are then 0.
    """
    additions: int = 0
    deletions: int = 0
    files_changed: int = 0
    calculated: bool = False

    @classmethod
    def of(cls, additions: int, deletions: int, files_changed: int) -> 'CommitStats':
        return cls(additions, deletions, files_changed, calculated=True)

    @classmethod
    def unavailable(cls) -> 'CommitStats':
        return cls()


@dataclass(frozen=True)
class RepositoryInfo:
    """Facts read from a local copy after cloning."""
    default_branch: Optional[str]
    total_commits: int
    total_files: int
    repo_size: int
    is_shallow: bool


@dataclass(frozen=True)
class CloneResult:
    """Outcome of a clone; error holds the captured cause on failure."""
    success: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


@dataclass(frozen=True)
class ContentRequest:
    """A (commit, path) pair whose blob content is wanted."""
    commit_hash: str
    file_path: str

    @property
    def key(self) -> str:
        return f"{self.commit_hash}:{self.file_path}"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a repository's analysis progress."""
    progress: int
    status: RepositoryStatus
    stage: AnalysisStage = AnalysisStage.CREATED
    error: Optional[str] = None


@dataclass(frozen=True)
class PageResult:
    """One page of a larger result."""
    items: List[Any]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class TimelineEntry:
    """One commit in the history of a single file."""
    commit: CommitRecord
    change: FileChange
    content: Optional[str] = None


@dataclass(frozen=True)
class FileTimeline:
    """Changes to one file ordered oldest to newest."""
    repo_id: int
    file_path: str
    entries: List[TimelineEntry] = field(default_factory=list)

    @property
    def file_name(self) -> str:
        return self.file_path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class RepositoryOverview:
    """Summary of an analyzed repository."""
    repo_id: int
    total_commits: int
    total_authors: int
    total_additions: int
    total_deletions: int
    top_contributors: List[Dict[str, Any]]
    first_commit: Optional[datetime] = None
    last_commit: Optional[datetime] = None
