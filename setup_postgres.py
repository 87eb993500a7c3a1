"""Database initialization script.

Creates the repository, commit_record and file_change tables. Commits are
unique per repository and file changes unique per commit and path, so
re-ingesting a history never duplicates rows.
"""
import sys
import psycopg2
import logging
from dotenv import load_dotenv
from repo_timeline.config import Settings

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def create_schema(conn) -> None:
    """Create database schema.

    Schema design considerations:
    - repository is the root; url is its natural key
    - commit_record rows are keyed by (repo_id, commit_hash); stats columns
      stay NULL until computed
    - file_change rows are keyed by (commit_id, file_path)
    - Deleting a repository cascades to its commits and file changes
    """
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS repository (
                id SERIAL PRIMARY KEY,
                url TEXT NOT NULL,
                name VARCHAR(255) NOT NULL,
                local_path TEXT NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
                analyze_progress INTEGER NOT NULL DEFAULT 0,
                analyze_depth INTEGER NOT NULL DEFAULT 500,
                analyze_since TIMESTAMPTZ,
                analyze_until TIMESTAMPTZ,
                analyze_path_filters TEXT[] NOT NULL DEFAULT '{}',
                total_commits INTEGER NOT NULL DEFAULT 0,
                total_files INTEGER NOT NULL DEFAULT 0,
                repo_size BIGINT NOT NULL DEFAULT 0,
                default_branch VARCHAR(255),
                can_load_more BOOLEAN NOT NULL DEFAULT FALSE,
                error_message TEXT,
                last_analyzed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT repository_url_unique UNIQUE (url)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS commit_record (
                id BIGSERIAL PRIMARY KEY,
                repo_id INTEGER NOT NULL REFERENCES repository(id) ON DELETE CASCADE,
                commit_hash VARCHAR(64) NOT NULL,
                parent_hash VARCHAR(64),
                author_name VARCHAR(255) NOT NULL,
                author_email VARCHAR(255) NOT NULL,
                commit_message TEXT NOT NULL,
                commit_time TIMESTAMPTZ NOT NULL,
                commit_order INTEGER NOT NULL,
                is_merge BOOLEAN NOT NULL DEFAULT FALSE,
                additions INTEGER,
                deletions INTEGER,
                files_changed INTEGER,
                CONSTRAINT commit_record_repo_hash_unique UNIQUE (repo_id, commit_hash)
            )
        """)

        # Commit lists are paged by order within a repository
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_commit_record_repo_order
            ON commit_record(repo_id, commit_order DESC)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS file_change (
                id BIGSERIAL PRIMARY KEY,
                repo_id INTEGER NOT NULL REFERENCES repository(id) ON DELETE CASCADE,
                commit_id BIGINT NOT NULL REFERENCES commit_record(id) ON DELETE CASCADE,
                file_path TEXT NOT NULL,
                old_path TEXT,
                file_name VARCHAR(255) NOT NULL,
                file_extension VARCHAR(10),
                change_type VARCHAR(10) NOT NULL,
                additions INTEGER,
                deletions INTEGER,
                diff_text TEXT,
                file_content TEXT,
                content_hash VARCHAR(64),
                CONSTRAINT file_change_commit_path_unique UNIQUE (commit_id, file_path)
            )
        """)

        # File timelines look up every change to one path
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_file_change_repo_path
            ON file_change(repo_id, file_path)
        """)

        conn.commit()
        logger.info("Database schema created successfully")

    except Exception as e:
        conn.rollback()
        logger.error(f"Error creating schema: {e}")
        raise
    finally:
        cursor.close()


def main():
    """Initialize the database."""
    try:
        settings = Settings.from_env()
        logger.info("Connecting to database...")

        conn = psycopg2.connect(settings.connection_string)
        conn.autocommit = False

        create_schema(conn)

        conn.close()
        logger.info("Database initialization completed successfully")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
