import duckdb

from stargazer_sync.data.models import ContentMetadata, FetchStatus
from stargazer_sync.data.repositories import item_repository as item_repository_module
from stargazer_sync.data.repositories.item_repository import ItemRepository

from conftest import make_item, make_items


def test_missing_database_reads_empty(tmp_path):
    repo = ItemRepository(tmp_path / "nothing.duckdb")

    assert repo.get_items() == {}
    assert repo.get_content_metadata() == {}
    assert repo.count_items() == 0
    assert repo.get_removed_ids() == []
    assert not (tmp_path / "nothing.duckdb").exists()


def test_store_and_read_items(item_repository):
    items = make_items(3)
    items[0].topics = ["cli", "sync"]

    inserted, updated = item_repository.store_items(items)

    assert (inserted, updated) == (3, 0)
    stored = item_repository.get_items()
    assert set(stored) == {"R_0000", "R_0001", "R_0002"}
    assert stored["R_0000"] == items[0]
    assert stored["R_0000"].topics == ["cli", "sync"]
    assert stored["R_0002"].star_count == 6


def test_store_items_upserts_by_id(item_repository):
    item_repository.store_items(make_items(3))

    inserted, updated = item_repository.store_items([make_item(1, star_count=500), make_item(3)])

    assert (inserted, updated) == (1, 1)
    stored = item_repository.get_items()
    assert len(stored) == 4
    assert stored["R_0001"].star_count == 500


def test_upsert_refreshes_synced_at(item_repository):
    item_repository.store_items(make_items(2))
    with duckdb.connect(str(item_repository.db_path)) as con:
        con.execute("UPDATE starred_items SET synced_at = TIMESTAMP '2000-01-01 00:00:00'")

    assert item_repository.store_items([make_item(0, star_count=9)]) == (0, 1)

    with duckdb.connect(str(item_repository.db_path), read_only=True) as con:
        rows = dict(con.execute("SELECT id, year(synced_at) FROM starred_items").fetchall())
    assert rows["R_0000"] > 2000
    assert rows["R_0001"] == 2000


def test_mark_removed_keeps_rows(item_repository):
    item_repository.store_items(make_items(4))

    assert item_repository.mark_removed(["R_0002", "R_0002"]) == 1

    assert "R_0002" not in item_repository.get_items()
    assert "R_0002" in item_repository.get_items(include_removed=True)
    assert item_repository.get_removed_ids() == ["R_0002"]
    assert item_repository.count_items() == 3
    assert item_repository.count_items(include_removed=True) == 4


def test_restarred_item_is_no_longer_removed(item_repository):
    item_repository.store_items(make_items(2))
    item_repository.mark_removed(["R_0001"])

    item_repository.store_items([make_item(1)])

    assert item_repository.get_removed_ids() == []


def test_delete_items_removes_content_metadata(item_repository):
    item_repository.store_items(make_items(2))
    item_repository.store_content_metadata(
        {"R_0000": ContentMetadata(storage_location="readmes/a/README.md", fetch_status=FetchStatus.SUCCESS)}
    )

    assert item_repository.delete_items(["R_0000", "R_9999"]) == 1

    assert set(item_repository.get_items(include_removed=True)) == {"R_0001"}
    assert item_repository.get_content_metadata() == {}


def test_content_metadata_round_trip(item_repository):
    metadata = {
        "R_0000": ContentMetadata(
            storage_location="readmes/owner0/repo0/README.md",
            fetch_status=FetchStatus.SUCCESS,
            fingerprint="sha-0",
            local_hash="abc",
            size=120,
            original_file_name="README.md",
        ),
        "R_0001": ContentMetadata(storage_location="", fetch_status=FetchStatus.NOT_AVAILABLE),
        "R_0002": ContentMetadata(
            storage_location="",
            fetch_status=FetchStatus.FAILED,
            error_message="timed out",
        ),
    }

    assert item_repository.store_content_metadata(metadata) == 3
    loaded = item_repository.get_content_metadata()

    assert loaded["R_0000"].fingerprint == "sha-0"
    assert loaded["R_0000"].size == 120
    assert loaded["R_0000"].local_hash == "abc"
    assert loaded["R_0000"].last_fetched_at == metadata["R_0000"].last_fetched_at
    assert loaded["R_0001"].fetch_status is FetchStatus.NOT_AVAILABLE
    assert loaded["R_0001"].size is None
    assert loaded["R_0002"].error_message == "timed out"


def test_schema_is_plain_duckdb(item_repository):
    item_repository.store_items(make_items(1))

    with duckdb.connect(str(item_repository.db_path), read_only=True) as con:
        tables = {row[0] for row in con.execute("SHOW TABLES").fetchall()}
    assert {"starred_items", "item_content"} <= tables


def test_module_has_docstring():
    assert item_repository_module.__doc__.startswith("DuckDB repository")
