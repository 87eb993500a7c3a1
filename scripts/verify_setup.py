"""Verify that the setup is correct before analyzing repositories."""
import os
import shutil
import subprocess
import sys
import psycopg2
from dotenv import load_dotenv
from repo_timeline.config import Settings

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')

REQUIRED_TABLES = ("repository", "commit_record", "file_change")


def check_settings():
    """Check that the environment parses into valid settings."""
    print("Checking settings...")

    try:
        settings = Settings.from_env()
    except Exception as e:
        print(f"❌ Invalid settings: {e}")
        return False

    print("✅ Settings are valid")
    for var in ("POSTGRES_HOST", "POSTGRES_PORT", "POSTGRES_DB", "POSTGRES_USER", "REPO_STORAGE_PATH"):
        if os.getenv(var):
            print(f"   {var}: {os.getenv(var)}")
    print(f"   Default analyze options: {settings.default_options.to_dict()}")
    return True


def check_git():
    """Check that a git executable with --diff-merges support is available."""
    print("\nChecking git...")

    if shutil.which("git") is None:
        print("❌ git executable not found on PATH")
        return False

    version = subprocess.run(["git", "--version"], stdout=subprocess.PIPE, text=True, timeout=10).stdout.strip()
    print(f"✅ Found {version}")
    parts = version.split()[-1].split(".")
    try:
        major, minor = int(parts[0]), int(parts[1])
    except (IndexError, ValueError):
        print("⚠️  Could not parse the git version")
        return True
    if (major, minor) < (2, 31):
        print("❌ git 2.31 or newer is required")
        return False
    return True


def check_storage_path():
    """Check that the local repository directory is writable."""
    print("\nChecking repository storage path...")

    path = Settings.from_env().repo_storage_path
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        print(f"❌ Cannot create {path}: {e}")
        return False
    if not os.access(path, os.W_OK):
        print(f"❌ {path} is not writable")
        return False
    print(f"✅ {os.path.abspath(path)} is writable")
    return True


def check_database_connection():
    """Check PostgreSQL connection."""
    print("\nChecking database connection...")

    settings = Settings.from_env()
    try:
        conn = psycopg2.connect(settings.connection_string)
        conn.close()
        print(f"✅ Successfully connected to PostgreSQL at {settings.postgres_host}:{settings.postgres_port}")
        return True
    except Exception as e:
        print(f"❌ Failed to connect to PostgreSQL: {e}")
        return False


def check_database_schema():
    """Check if database schema exists."""
    print("\nChecking database schema...")

    try:
        conn = psycopg2.connect(Settings.from_env().connection_string)
        cursor = conn.cursor()

        cursor.execute("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = ANY(%s)
        """, (list(REQUIRED_TABLES),))
        found = {row[0] for row in cursor.fetchall()}
        missing = [t for t in REQUIRED_TABLES if t not in found]

        if not missing:
            cursor.execute("SELECT COUNT(*) FROM repository")
            count = cursor.fetchone()[0]
            print("✅ Database schema exists")
            print(f"   Current repository count: {count}")
            result = True
        else:
            print(f"❌ Missing tables: {', '.join(missing)}. Run 'python setup_postgres.py' first.")
            result = False

        cursor.close()
        conn.close()
        return result

    except Exception as e:
        print(f"❌ Failed to check schema: {e}")
        return False


def main():
    """Run all verification checks."""
    print("=" * 60)
    print("Repository Timeline - Setup Verification")
    print("=" * 60)

    checks = [
        ("Settings", check_settings),
        ("Git", check_git),
        ("Repository Storage", check_storage_path),
        ("Database Connection", check_database_connection),
        ("Database Schema", check_database_schema),
    ]

    results = {}
    for name, check_func in checks:
        try:
            results[name] = check_func()
        except Exception as e:
            print(f"❌ {name} check failed with exception: {e}")
            results[name] = False

    print("\n" + "=" * 60)
    print("Verification Summary")
    print("=" * 60)

    for name, passed in results.items():
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"{status}: {name}")

    if all(results.values()):
        print("\n✅ All checks passed! Ready to analyze repositories.")
        print("\nNext steps:")
        print("  python analyze_repo.py https://github.com/owner/repo.git")
        sys.exit(0)
    else:
        print("\n❌ Some checks failed. Please fix the issues above.")
        print("\nCommon solutions:")
        print("  - Install git 2.31+")
        print("  - Start PostgreSQL and set POSTGRES_* variables")
        print("  - Create schema: python setup_postgres.py")
        sys.exit(1)


if __name__ == "__main__":
    main()
