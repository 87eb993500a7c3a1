"""Query and display statistics about the analyzed repositories.

Usage: python scripts/query_stats.py [repository-id]
"""
import sys
import psycopg2
from dotenv import load_dotenv
from repo_timeline.config import Settings

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def print_section(title: str):
    """Print a section header."""
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def display_repositories(cursor):
    """List every repository with its analysis state."""
    print_section("Repositories")
    cursor.execute("""
        SELECT id, name, status, analyze_progress, total_commits, can_load_more, last_analyzed_at
        FROM repository
        ORDER BY id
    """)

    print(f"{'Id':>5} {'Name':<25} {'Status':<10} {'Progress':>9} {'Commits':>9} {'More':>5}")
    print("-" * 70)
    for row in cursor:
        print(f"{row[0]:>5} {row[1]:<25} {row[2]:<10} {row[3]:>8}% {row[4]:>9,} {'yes' if row[5] else 'no':>5}")


def display_repository(cursor, repo_id: int):
    """Display overview statistics of one repository."""
    cursor.execute("SELECT name, url, default_branch, error_message FROM repository WHERE id = %s", (repo_id,))
    repository = cursor.fetchone()
    if repository is None:
        print(f"Repository {repo_id} not found")
        return

    print_section(f"Overview: {repository[0]}")
    print(f"URL: {repository[1]}")
    print(f"Default branch: {repository[2]}")
    if repository[3]:
        print(f"Last error: {repository[3]}")

    cursor.execute("""
        SELECT COUNT(*), COUNT(DISTINCT author_name), MIN(commit_time), MAX(commit_time),
               COUNT(*) FILTER (WHERE additions IS NOT NULL)
        FROM commit_record
        WHERE repo_id = %s
    """, (repo_id,))
    stats = cursor.fetchone()
    print(f"Commits: {stats[0]:,}")
    print(f"Authors: {stats[1]:,}")
    print(f"First commit: {stats[2]}")
    print(f"Last commit: {stats[3]}")
    print(f"Commits with computed stats: {stats[4]:,}")

    print_section("Top 10 Contributors")
    cursor.execute("""
        SELECT author_name, COUNT(*) AS commits,
               COALESCE(SUM(additions), 0), COALESCE(SUM(deletions), 0)
        FROM commit_record
        WHERE repo_id = %s
        GROUP BY author_name
        ORDER BY commits DESC
        LIMIT 10
    """, (repo_id,))

    print(f"{'Author':<30} {'Commits':>8} {'Added':>10} {'Deleted':>10}")
    print("-" * 60)
    for row in cursor:
        print(f"{row[0]:<30} {row[1]:>8,} {row[2]:>10,} {row[3]:>10,}")

    print_section("Change Types")
    cursor.execute("""
        SELECT change_type, COUNT(*)
        FROM file_change
        WHERE repo_id = %s
        GROUP BY change_type
        ORDER BY COUNT(*) DESC
    """, (repo_id,))
    for row in cursor:
        print(f"{row[0]:<20} {row[1]:>15,}")

    print_section("Most Modified Files")
    cursor.execute("""
        SELECT file_path, COUNT(*) AS modifications
        FROM file_change
        WHERE repo_id = %s
        GROUP BY file_path
        ORDER BY modifications DESC, file_path
        LIMIT 10
    """, (repo_id,))
    for row in cursor:
        print(f"{row[0]:<50} {row[1]:>9,}")


def display_statistics():
    """Display statistics about the analyzed data."""
    conn = psycopg2.connect(Settings.from_env().connection_string)
    cursor = conn.cursor()

    if len(sys.argv) > 1:
        display_repository(cursor, int(sys.argv[1]))
    else:
        display_repositories(cursor)

    cursor.close()
    conn.close()

    print("\n" + "=" * 60)
    print("Query completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    try:
        display_statistics()
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
