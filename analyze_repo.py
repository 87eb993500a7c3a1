"""Main entry point for analyzing a repository's history.

Usage: python analyze_repo.py <repository-url> [--more N]

Clones (or reuses) the repository, ingests its history into PostgreSQL and
logs a summary. With --more N an already analyzed repository is deepened by
N commits instead.
"""
import asyncio
import logging
import sys
import time
from dotenv import load_dotenv
from repo_timeline.config import Settings
from repo_timeline.application.analysis_orchestrator import AnalysisOrchestrator
from repo_timeline.application.content_cache import ContentCache
from repo_timeline.application.history_service import HistoryService
from repo_timeline.application.progress_tracker import ProgressTracker
from repo_timeline.domain.models import RepositoryStatus
from repo_timeline.infrastructure.clone_manager import CloneManager
from repo_timeline.infrastructure.commit_parser import CommitHistoryParser
from repo_timeline.infrastructure.file_change_extractor import FileChangeExtractor
from repo_timeline.infrastructure.git_command import GitRunner
from repo_timeline.infrastructure.postgres_repository import PostgresHistoryStorage
from repo_timeline.infrastructure.stats_calculator import StatsCalculator

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')

settings = Settings.from_env()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv):
    """Return (url, additional_depth) from the command line."""
    if not argv:
        logger.error("Usage: python analyze_repo.py <repository-url> [--more N]")
        sys.exit(1)
    url = argv[0]
    additional_depth = None
    if len(argv) >= 3 and argv[1] == "--more":
        try:
            additional_depth = int(argv[2])
        except ValueError:
            logger.error(f"--more expects a number, got {argv[2]!r}")
            sys.exit(1)
    return url, additional_depth


async def main():
    """Execute one analysis and report the result."""
    url, additional_depth = parse_args(sys.argv[1:])

    # Initialize infrastructure components
    runner = GitRunner(default_timeout=settings.git_timeout)
    storage = PostgresHistoryStorage(settings.connection_string)
    extractor = FileChangeExtractor(
        runner,
        timeout=settings.git_timeout,
        batch_size=settings.diff_batch_size,
        max_workers=settings.max_workers,
        rename_threshold=settings.rename_threshold,
        include_line_counts=settings.include_line_counts,
    )
    content_cache = ContentCache(settings.content_cache_size, settings.content_cache_ttl, name="content")
    timeline_cache = ContentCache(settings.timeline_cache_size, settings.timeline_cache_ttl, name="timeline")

    # Initialize application services
    orchestrator = AnalysisOrchestrator(
        storage=storage,
        clone_manager=CloneManager(
            runner,
            clone_timeout=settings.clone_timeout,
            fetch_timeout=settings.fetch_timeout,
            git_timeout=settings.git_timeout,
        ),
        commit_parser=CommitHistoryParser(runner, timeout=settings.git_timeout),
        file_change_extractor=extractor,
        progress_tracker=ProgressTracker(),
        content_cache=content_cache,
        timeline_cache=timeline_cache,
        repo_storage_path=settings.repo_storage_path,
        batch_size=settings.batch_size,
        store_snapshots=settings.store_snapshots,
        default_options=settings.default_options,
    )
    history = HistoryService(
        storage,
        extractor,
        StatsCalculator(max_workers=settings.max_workers, timeout=settings.stats_timeout),
        content_cache=content_cache,
        timeline_cache=timeline_cache,
    )

    start_time = time.time()
    try:
        if additional_depth:
            existing = storage.get_repository_by_url(url)
            if existing is None:
                logger.error(f"{url} has not been analyzed yet")
                sys.exit(1)
            repository = await orchestrator.fetch_more_history(existing.repo_id, additional_depth)
        else:
            logger.info(f"Starting analysis of {url} with options {settings.default_options.to_dict()}")
            repository = await orchestrator.analyze(url)

        repo_id = repository.repo_id
        last_reported = None
        while orchestrator.is_running(repo_id):
            snapshot = orchestrator.get_progress(repo_id)
            if (snapshot.progress, snapshot.stage) != last_reported:
                logger.info(f"Progress: {snapshot.progress}% ({snapshot.stage.value})")
                last_reported = (snapshot.progress, snapshot.stage)
            await asyncio.sleep(settings.poll_interval)

        repository = await orchestrator.wait_for(repo_id)
        duration = time.time() - start_time

        if repository.status != RepositoryStatus.DONE:
            logger.error(f"Analysis failed: {repository.error_message}")
            sys.exit(1)

        overview = history.get_overview(repo_id)

        # Log results
        logger.info("=" * 50)
        logger.info("Analysis Summary:")
        logger.info(f"  Repository: {repository.name} (id {repo_id})")
        logger.info(f"  Default branch: {repository.default_branch}")
        logger.info(f"  Commits analyzed: {overview.total_commits}")
        logger.info(f"  Authors: {overview.total_authors}")
        logger.info(f"  Files at HEAD: {repository.total_files}")
        logger.info(f"  History window: {overview.first_commit} - {overview.last_commit}")
        logger.info(f"  More history available: {repository.can_load_more}")
        logger.info(f"  Duration: {duration:.2f} seconds")
        logger.info("=" * 50)

        logger.info(f"Total repositories in database: {storage.get_repository_count()}")

    except Exception as e:
        logger.error(f"Analysis failed: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await orchestrator.close()


if __name__ == "__main__":
    asyncio.run(main())
