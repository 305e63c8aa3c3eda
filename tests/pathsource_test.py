from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from drive_backup.backuperror import EnumerationError
from drive_backup.backuperror import PatternError
from drive_backup.pathsource import iter_glob_files


@pytest.fixture
def fixture_dir(tmp_path: Path) -> Path:
    (tmp_path / "directory01").mkdir()
    (tmp_path / "directory01" / "nested").mkdir()
    (tmp_path / "file01.txt").write_text("1")
    (tmp_path / "file02.log").write_text("2")
    (tmp_path / "directory01" / "file03.txt").write_text("3")
    (tmp_path / "directory01" / "nested" / "file04.txt").write_text("4")
    return tmp_path


def test_iter_glob_files_recursive(fixture_dir: Path) -> None:
    result = set(iter_glob_files([f"{fixture_dir}/**/*.txt"]))

    assert result == {
        (fixture_dir / "file01.txt").resolve(),
        (fixture_dir / "directory01" / "file03.txt").resolve(),
        (fixture_dir / "directory01" / "nested" / "file04.txt").resolve(),
    }


def test_iter_glob_files_skips_directories(fixture_dir: Path) -> None:
    result = list(iter_glob_files([f"{fixture_dir}/*"]))

    assert all(path.is_file() for path in result)
    assert len(result) == 2


def test_iter_glob_files_keeps_pattern_order(fixture_dir: Path) -> None:
    result = list(
        iter_glob_files([f"{fixture_dir}/*.log", f"{fixture_dir}/file01.txt"])
    )

    assert [path.name for path in result] == ["file02.log", "file01.txt"]


def test_iter_glob_files_yields_each_file_once(fixture_dir: Path) -> None:
    result = list(iter_glob_files([f"{fixture_dir}/*.txt", f"{fixture_dir}/file01*"]))

    assert [path.name for path in result] == ["file01.txt"]


def test_iter_glob_files_returns_absolute_paths(
    fixture_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.chdir(fixture_dir)

    result = list(iter_glob_files(["*.log"]))

    assert result == [(fixture_dir / "file02.log").resolve()]
    assert result[0].is_absolute()


def test_iter_glob_files_exclude_pattern(fixture_dir: Path) -> None:
    result = list(
        iter_glob_files(
            [f"{fixture_dir}/**/*.txt"],
            exclude_file_pattern=r"file0[34]",
        )
    )

    assert [path.name for path in result] == ["file01.txt"]


def test_iter_glob_files_no_matches(fixture_dir: Path) -> None:
    assert list(iter_glob_files([f"{fixture_dir}/*.nothing"])) == []


def test_iter_glob_files_empty_pattern_raises() -> None:
    with pytest.raises(PatternError):
        list(iter_glob_files(["  "]))


def test_iter_glob_files_invalid_exclude_raises(fixture_dir: Path) -> None:
    with pytest.raises(PatternError):
        list(iter_glob_files([f"{fixture_dir}/*"], exclude_file_pattern="(unclosed"))


def test_iter_glob_files_file_moved_during_walk(fixture_dir: Path) -> None:
    missing = str(fixture_dir / "moved.txt")

    with patch("drive_backup.pathsource.glob.iglob") as mock_glob:
        mock_glob.return_value = iter([missing, str(fixture_dir / "file01.txt")])
        result = list(iter_glob_files(["anything"]))

    assert [path.name for path in result] == ["file01.txt"]


def test_iter_glob_files_resolve_failure_raises(fixture_dir: Path) -> None:
    with patch("drive_backup.pathsource.Path.resolve") as mock_resolve:
        mock_resolve.side_effect = PermissionError("denied")

        with pytest.raises(EnumerationError):
            list(iter_glob_files([f"{fixture_dir}/*.txt"]))
