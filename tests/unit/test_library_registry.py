from app.models.schemas import Library
from domains.document_ingest.library_registry import LibraryRegistry, library_key


def test_auto_scan_libraries_skip_disabled_and_malformed(fake_redis, tmp_path):
    fake_redis.json_set(library_key("a"), Library(id="a", name="A", folder_path=str(tmp_path)).model_dump())
    fake_redis.json_set(
        library_key("b"),
        Library(id="b", name="B", folder_path=str(tmp_path), auto_scan=False).model_dump(),
    )
    fake_redis.json_set(library_key("broken"), {"id": "broken"})

    registry = LibraryRegistry(fake_redis)

    assert [library.id for library in registry.list_libraries()] == ["a", "b"]
    assert [library.id for library in registry.auto_scan_libraries()] == ["a"]


def test_adjust_stats_clamps_at_zero(fake_redis, stored_library):
    registry = LibraryRegistry(fake_redis)

    registry.adjust_stats(stored_library.id, chunk_delta=5, document_delta=1, size_delta=100)
    registry.adjust_stats(stored_library.id, chunk_delta=-9, document_delta=-3, size_delta=-500)

    library = registry.get(stored_library.id)
    assert (library.document_count, library.chunk_count, library.total_size_bytes) == (0, 0, 0)
    assert library.last_scanned is not None


def test_adjust_stats_for_unknown_library_is_a_no_op(fake_redis):
    LibraryRegistry(fake_redis).adjust_stats("missing", chunk_delta=1)

    assert fake_redis.docs == {}


def test_concurrent_updates_are_not_lost(fake_redis, stored_library, monkeypatch):
    registry = LibraryRegistry(fake_redis)
    snapshot = fake_redis.json_get(library_key(stored_library.id))
    # Both workers saw the record before either wrote
    monkeypatch.setattr(fake_redis, "json_get", lambda key: snapshot)

    registry.adjust_stats(stored_library.id, chunk_delta=2, document_delta=1)
    registry.adjust_stats(stored_library.id, chunk_delta=3, document_delta=1)

    record = fake_redis.docs[library_key(stored_library.id)]
    assert (record["document_count"], record["chunk_count"]) == (2, 5)
