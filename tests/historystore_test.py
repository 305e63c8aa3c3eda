from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from drive_backup.backuperror import DataLayerError
from drive_backup.backupmodel import RECORD_VERSION
from drive_backup.backupmodel import Directory
from drive_backup.backupmodel import FileVersion
from drive_backup.historystore import SqliteHistoryStore

# Predefine some rows for testing.
DIRECTORY_ROWS = [
    [1, None, ""],
    [2, 1, "home"],
    [3, 2, "obiwan"],
    [4, 2, "luke"],
]
FILE_ROWS = [
    [1, RECORD_VERSION, 3, "file1", 100.0, "hash1"],
    [2, RECORD_VERSION, 3, "file1", 200.0, "hash2"],
    [3, RECORD_VERSION, 3, "file2", 100.0, "hash3"],
    [4, RECORD_VERSION, 4, "file1", 300.0, "hash4"],
    [5, RECORD_VERSION, 4, "file2", 150.0, None],
]


@pytest.fixture
def store() -> SqliteHistoryStore:
    return SqliteHistoryStore(":memory:")


@pytest.fixture
def store_full() -> SqliteHistoryStore:
    db = SqliteHistoryStore(":memory:")
    db._connection.executemany(
        "INSERT INTO directories (id, parent_id, name) VALUES (?, ?, ?)",
        DIRECTORY_ROWS,
    )
    db._connection.executemany(
        """
        INSERT INTO file_versions
            (id, version, directory_id, file_name, backup_ts, hash)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        FILE_ROWS,
    )
    db._connection.commit()
    return db


def test_store_built_from_config() -> None:
    config = MagicMock(database_path=":memory:")

    store = SqliteHistoryStore.from_config(config)

    assert store.get_max_file_id() == 0


def test_store_works_with_context_manager() -> None:
    with SqliteHistoryStore(":memory:") as store:
        store.create_directory("", None)

    with pytest.raises(DataLayerError):
        store.get_directory("")


def test_create_tables(store: SqliteHistoryStore) -> None:
    cursor = store._connection.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    tables = [name[0] for name in cursor.fetchall()]

    assert "directories" in tables
    assert "file_versions" in tables


def test_invalid_database_path_raises() -> None:
    with pytest.raises(DataLayerError):
        SqliteHistoryStore("/no/such/directory/history.db")


def test_get_max_file_id_empty(store: SqliteHistoryStore) -> None:
    assert store.get_max_file_id() == 0


def test_get_max_file_id(store_full: SqliteHistoryStore) -> None:
    assert store_full.get_max_file_id() == 5


def test_get_max_file_id_does_not_go_backwards(store_full: SqliteHistoryStore) -> None:
    store_full.delete_file_version(5)

    assert store_full.get_max_file_id() == 5


def test_get_directory(store_full: SqliteHistoryStore) -> None:
    assert store_full.get_directory("") == Directory(1, "", None)


def test_get_directory_only_matches_roots(store_full: SqliteHistoryStore) -> None:
    assert store_full.get_directory("home") is None


def test_get_subdirectories(store_full: SqliteHistoryStore) -> None:
    rows = store_full.get_subdirectories(2)

    assert set(rows) == {Directory(3, "obiwan", 2), Directory(4, "luke", 2)}


def test_create_directory(store: SqliteHistoryStore) -> None:
    root_id = store.create_directory("", None)
    child_id = store.create_directory("data", root_id)

    assert store.get_directory("") == Directory(root_id, "", None)
    assert store.get_subdirectories(root_id) == [Directory(child_id, "data", root_id)]


def test_create_duplicate_directory_raises(store: SqliteHistoryStore) -> None:
    root_id = store.create_directory("", None)
    store.create_directory("data", root_id)

    with pytest.raises(DataLayerError):
        store.create_directory("data", root_id)


def test_get_latest_file(store_full: SqliteHistoryStore) -> None:
    latest = store_full.get_latest_file(3, "file1")

    assert latest == FileVersion(RECORD_VERSION, 2, 3, "file1", 200.0, "hash2")


def test_get_latest_file_tombstone(store_full: SqliteHistoryStore) -> None:
    latest = store_full.get_latest_file(4, "file2")

    assert latest is not None
    assert latest.is_tombstone


def test_get_latest_file_missing(store_full: SqliteHistoryStore) -> None:
    assert store_full.get_latest_file(3, "file9") is None


def test_get_files_oldest_first(store_full: SqliteHistoryStore) -> None:
    rows = store_full.get_files(3, "file1")

    assert [row.id for row in rows] == [1, 2]


def test_get_file_ids_skips_tombstones(store_full: SqliteHistoryStore) -> None:
    assert store_full.get_file_ids() == {1, 2, 3, 4}


def test_create_file_version(store_full: SqliteHistoryStore) -> None:
    store_full.create_file_version(3, 10, "file1", "hash10", 400.0)

    latest = store_full.get_latest_file(3, "file1")

    assert latest == FileVersion(RECORD_VERSION, 10, 3, "file1", 400.0, "hash10")
    assert store_full.get_max_file_id() == 10


def test_refresh_latest_timestamp(store_full: SqliteHistoryStore) -> None:
    store_full.refresh_latest_timestamp(3, "file1", 500.0)

    rows = store_full.get_files(3, "file1")

    assert [(row.id, row.backup_timestamp) for row in rows] == [(1, 100.0), (2, 500.0)]


def test_mark_deleted_groups(store_full: SqliteHistoryStore) -> None:
    count = store_full.mark_deleted_groups(250.0)

    # file1 in directory 4 was seen at 300, everything else is older
    assert count == 3
    for directory_id, file_name in [(3, "file1"), (3, "file2"), (4, "file2")]:
        latest = store_full.get_latest_file(directory_id, file_name)
        assert latest is not None
        assert latest.is_tombstone
        assert latest.backup_timestamp == 250.0

    latest = store_full.get_latest_file(4, "file1")
    assert latest is not None
    assert latest.content_hash == "hash4"


def test_mark_deleted_groups_new_ids_continue_sequence(
    store_full: SqliteHistoryStore,
) -> None:
    store_full.mark_deleted_groups(250.0)

    assert store_full.get_max_file_id() == 8


def test_delete_file_version(store_full: SqliteHistoryStore) -> None:
    store_full.delete_file_version(1)

    rows = store_full.get_files(3, "file1")

    assert [row.id for row in rows] == [2]


def test_closed_store_raises_data_layer_error(store: SqliteHistoryStore) -> None:
    store.close()

    with pytest.raises(DataLayerError):
        store.get_max_file_id()
