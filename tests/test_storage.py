import os
import threading
import time

import mongomock
import pytest

from errors import StaleWriteError
from schemas import Listing
from shop import Cart
from storage import (
    ChangeEvent,
    JsonFileBackend,
    KeyValueStore,
    MemoryBackend,
    MongoBackend,
    RecordCollection,
    scoped_key,
)


def test_save_then_load_preserves_order(store):
    records = [{"id": "b", "n": 2}, {"id": "a", "n": 1}, {"id": "c", "n": 3}]
    store.save("rc_things", records)
    assert store.load("rc_things") == records


def test_load_missing_key_is_empty(store):
    assert store.load("nope") == []
    assert store.load_object("nope") is None


def test_load_corrupt_value_is_empty(store, caplog):
    store.backend.write("rc_cart", "{not json")
    assert store.load("rc_cart") == []
    assert "Corrupt value" in caplog.text


def test_load_wrong_shape_is_empty(store):
    store.save("rc_cart", {"oops": True})
    assert store.load("rc_cart") == []
    assert store.load_object("rc_cart") == {"oops": True}


def test_remove_clears_key(store):
    store.save("rc_user", {"id": "u1"})
    store.remove("rc_user")
    assert store.load_object("rc_user") is None


def test_save_notifies_subscribers_of_that_key_only(store):
    seen, everything = [], []
    store.subscribe(seen.append, "rc_cart")
    store.subscribe(everything.append)

    store.save("rc_cart", [])
    store.save("rc_wishlist", [])

    assert seen == [ChangeEvent("rc_cart", 1)]
    assert [e.key for e in everything] == ["rc_cart", "rc_wishlist"]


def test_unsubscribe_stops_notifications(store):
    seen = []
    unsubscribe = store.subscribe(seen.append, "k")
    store.save("k", [1])
    unsubscribe()
    store.save("k", [2])
    assert len(seen) == 1


def test_failing_listener_does_not_block_others_or_write(store):
    seen = []

    def boom(event):
        raise RuntimeError("listener broke")

    store.subscribe(boom, "k")
    store.subscribe(seen.append, "k")
    store.save("k", [1])

    assert store.load("k") == [1]
    assert len(seen) == 1


def test_stale_write_is_rejected(store):
    store.save("k", [1])
    rev = store.revision("k")
    store.save("k", [2], expected_revision=rev)

    with pytest.raises(StaleWriteError):
        store.save("k", [3], expected_revision=rev)
    assert store.load("k") == [2]


def test_batch_commits_together_and_notifies_after(store):
    events = []

    def listener(event):
        # by the time anyone hears about a key, the whole batch is visible
        events.append((event.key, store.load("a"), store.load("b")))

    store.subscribe(listener)
    with store.batch():
        store.save("a", [1])
        assert store.load("a") == [1]
        store.save("b", [2])
        assert events == []

    assert events == [("a", [1], [2]), ("b", [1], [2])]


def test_batch_discards_on_error(store):
    store.save("a", ["kept"])
    with pytest.raises(ValueError):
        with store.batch():
            store.save("a", ["changed"])
            store.save("b", ["new"])
            raise ValueError("halfway")
    assert store.load("a") == ["kept"]
    assert store.load("b") == []


def test_scoped_key():
    assert scoped_key("rc_cart") == "rc_cart"
    assert scoped_key("rc_cart", "u1") == "rc_cart:u1"


def test_json_file_backend_round_trip(tmp_path):
    path = tmp_path / "store.json"
    store = KeyValueStore(JsonFileBackend(path))
    store.save("rc_listings", [{"id": "1"}, {"id": "2"}])

    reopened = KeyValueStore(JsonFileBackend(path))
    assert reopened.load("rc_listings") == [{"id": "1"}, {"id": "2"}]
    assert reopened.revision("rc_listings") == 1


def test_json_file_backend_corrupt_file_reads_empty(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("garbage", encoding="utf-8")
    store = KeyValueStore(JsonFileBackend(path))
    assert store.load("anything") == []
    store.save("anything", [1])
    assert store.load("anything") == [1]


def test_mongo_backend_round_trip_and_revisions():
    collection = mongomock.MongoClient().db.kvstore
    store = KeyValueStore(MongoBackend(collection))

    store.save("rc_cart", [{"qty": 1}])
    store.save("rc_cart", [{"qty": 2}])
    assert store.load("rc_cart") == [{"qty": 2}]
    assert store.revision("rc_cart") == 2

    with pytest.raises(StaleWriteError):
        store.save("rc_cart", [], expected_revision=1)
    store.save("rc_cart", [], expected_revision=2)
    assert store.load("rc_cart") == []


def test_record_collection_upsert_replaces_in_place_or_prepends(store):
    listings = RecordCollection(store, "rc_listings", Listing)
    listings.upsert(Listing(id="a", title="Jar", price=100, stock=1))
    listings.upsert(Listing(id="b", title="Rug", price=900, stock=2))
    listings.upsert(Listing(id="a", title="Jar v2", price=120, stock=1))

    assert [(l.id, l.title) for l in listings.all()] == [("b", "Rug"), ("a", "Jar v2")]


def test_record_collection_skips_malformed_records(store):
    store.save("rc_listings", [{"id": "a", "title": "Jar", "price": 100, "stock": 1}, {"id": "broken"}])
    listings = RecordCollection(store, "rc_listings", Listing)
    assert [l.id for l in listings.all()] == ["a"]


def test_memory_backend_revision_starts_at_zero():
    backend = MemoryBackend()
    assert backend.read("k") is None
    assert backend.write("k", "[]", expected_revision=0) == 1


def test_nested_batch_error_only_drops_its_own_writes(store):
    with store.batch():
        store.save("a", [1])
        with pytest.raises(ValueError):
            with store.batch():
                store.save("a", [2])
                store.save("b", [2])
                raise ValueError("inner")
        assert store.load("a") == [1]
        store.save("c", [3])

    assert store.load("a") == [1]
    assert store.load("b") == []
    assert store.revision("b") == 0
    assert store.load("c") == [3]


def test_batch_is_private_to_its_thread(store):
    staged = threading.Event()
    peeked = threading.Event()
    seen = {}

    def seller():
        try:
            with store.batch():
                store.save("rc_listings:s1", [{"id": "draft"}])
                staged.set()
                peeked.wait(5)
                time.sleep(0.1)
                raise RuntimeError("publish failed")
        except RuntimeError:
            seen["rolled_back"] = True

    def shopper():
        staged.wait(5)
        seen["listings"] = store.load("rc_listings:s1")
        peeked.set()
        # waits for the seller's batch to finish, then commits on its own
        store.save("rc_cart:u1", [{"qty": 1}])

    threads = [threading.Thread(target=seller), threading.Thread(target=shopper)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert seen == {"rolled_back": True, "listings": []}
    assert store.load("rc_cart:u1") == [{"qty": 1}]
    assert store.load("rc_listings:s1") == []


def test_concurrent_cart_adds_keep_every_line(store, make_product):
    barrier = threading.Barrier(8)

    def add(i):
        barrier.wait(5)
        Cart(store, "u1").add(make_product(id=str(i)))

    threads = [threading.Thread(target=add, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert sorted(item.product.id for item in Cart(store, "u1").items()) == [str(i) for i in range(8)]


def test_json_file_backend_failed_write_keeps_old_file(tmp_path, monkeypatch):
    path = tmp_path / "store.json"
    store = KeyValueStore(JsonFileBackend(path))
    store.save("rc_listings", [{"id": "1"}])

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    with pytest.raises(OSError):
        store.save("rc_listings", [{"id": "2"}])
    monkeypatch.undo()

    assert KeyValueStore(JsonFileBackend(path)).load("rc_listings") == [{"id": "1"}]
    assert [p.name for p in tmp_path.iterdir()] == ["store.json"]
