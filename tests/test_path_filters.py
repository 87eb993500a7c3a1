"""Tests for path filter matching."""
import pytest

from repo_timeline.domain.path_filters import any_path_matches, matches_path_filters


@pytest.mark.parametrize("path, filters, expected", [
    ("src/app.py", [], True),
    ("src/app.py", ["src/"], True),
    ("src/pkg/app.py", ["src/"], True),
    ("srcs/app.py", ["src/"], False),
    ("docs/src/app.py", ["src/"], False),
    ("src/app.py", ["src"], True),
    ("src", ["src"], True),
    ("src2/app.py", ["src"], False),
    ("src/app.py", ["src/app.py"], True),
    ("src/app.py", ["*.py"], True),
    ("src/app.py", ["*.md"], False),
    ("src/app.py", ["src/*.py"], True),
    ("lib/app.py", ["src/*.py"], False),
    ("docs/guide.md", ["src/", "*.md"], True),
    ("/src/app.py", ["src/"], True),
    ("src/app.py", ["/src/"], True),
])
def test_matches_path_filters(path, filters, expected):
    assert matches_path_filters(path, filters) is expected


def test_any_path_matches():
    assert any_path_matches(["docs/a.md", "src/b.py"], ["src/"])
    assert not any_path_matches(["docs/a.md"], ["src/"])
    assert not any_path_matches([], ["src/"])
    assert any_path_matches([], [])
