import threading

import pytest

from ett.errors import NotFound, RetryExhausted, StoreError, VersionConflict
from ett.store import RoutingRecord, record_id

A, B, C = "10.0.0.1:8000", "10.0.0.2:8000", "10.0.0.3:8000"


def seed(store, ctx, service="hello", endpoints=(A, B)):
    return store.create_if_absent(service, endpoints, ctx)


def test_fetch_missing_record(store, ctx):
    with pytest.raises(NotFound):
        store.fetch("hello", ctx)


def test_create_starts_at_version_zero(store, dynamo, ctx):
    seed(store, ctx)

    rec = store.fetch("hello", ctx)
    assert rec.id == "hello__backend" == record_id("hello")
    assert rec.name == "hello"
    assert rec.version == 0
    assert rec.servers == {A: {"URL": f"http://{A}"}, B: {"URL": f"http://{B}"}}
    assert dynamo.items["hello__backend"]["backend"]["M"]["Servers"]["M"][A] == {"M": {"URL": {"S": f"http://{A}"}}}


def test_create_twice_conflicts(store, ctx):
    seed(store, ctx)
    with pytest.raises(VersionConflict):
        seed(store, ctx)


def test_apply_with_optimistic_lock(store, ctx):
    rec = seed(store, ctx)
    store.apply_with_optimistic_lock(rec.with_servers({}), ctx)

    stored = store.fetch("hello", ctx)
    assert stored.version == 1
    assert stored.endpoints == set()

    # a writer still holding version 0 loses
    with pytest.raises(VersionConflict):
        store.apply_with_optimistic_lock(rec, ctx)


def test_apply_surfaces_other_failures(store, dynamo, ctx):
    rec = seed(store, ctx)
    dynamo.fail.add("update_item")
    with pytest.raises(StoreError):
        store.apply_with_optimistic_lock(rec, ctx)


def test_upsert_creates_missing_record(store, ctx):
    rec = store.upsert_endpoint_set("hello", [C], False, ctx)
    assert rec.version == 0
    assert store.fetch("hello", ctx).endpoints == {C}


def test_upsert_merges(store, ctx):
    seed(store, ctx)
    rec = store.upsert_endpoint_set("hello", [C], False, ctx)

    assert rec.version == 1
    stored = store.fetch("hello", ctx)
    assert stored.endpoints == {A, B, C}
    assert stored.version == 1


def test_upsert_overwrites(store, ctx):
    seed(store, ctx)
    store.upsert_endpoint_set("hello", [C], True, ctx)
    assert store.fetch("hello", ctx).endpoints == {C}


def test_upsert_keeps_operator_config(store, dynamo, ctx):
    seed(store, ctx)
    item = dynamo.items["hello__backend"]
    item["backend"]["M"]["CircuitBreaker"] = {"M": {"Expression": {"S": "NetworkErrorRatio() > 0.5"}}}
    item["backend"]["M"]["Servers"]["M"][A]["M"]["Weight"] = {"N": "5"}

    store.upsert_endpoint_set("hello", [A, C], False, ctx)
    stored = store.fetch("hello", ctx)
    assert stored.route_config == {"CircuitBreaker": {"Expression": "NetworkErrorRatio() > 0.5"}}
    assert stored.servers[A]["Weight"] == 5

    store.upsert_endpoint_set("hello", [C], True, ctx)
    stored = store.fetch("hello", ctx)
    assert stored.route_config == {"CircuitBreaker": {"Expression": "NetworkErrorRatio() > 0.5"}}
    assert stored.endpoints == {C}


def test_upsert_retries_on_conflict(store, dynamo, sleeps, ctx):
    seed(store, ctx)
    # another writer slips in right before our first conditional write
    dynamo.before_update.append(lambda: store.upsert_endpoint_set("hello", [B, "10.0.0.9:1"], True, ctx))

    store.upsert_endpoint_set("hello", [C], False, ctx)

    stored = store.fetch("hello", ctx)
    assert stored.version == 2
    assert stored.endpoints == {B, "10.0.0.9:1", C}
    assert dynamo.conflicts == 1
    assert sleeps == [0.1]


def test_concurrent_upserts_both_land(store, dynamo, ctx):
    seed(store, ctx)
    barrier = threading.Barrier(2)
    # hold both writers until each has read version 0
    dynamo.before_update.extend([barrier.wait, barrier.wait])
    errors = []

    def add(endpoint):
        try:
            store.upsert_endpoint_set("hello", [endpoint], False, ctx)
        except Exception as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=add, args=(ep,)) for ep in (C, "10.0.0.9:1")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert errors == []
    stored = store.fetch("hello", ctx)
    assert stored.version == 2
    assert stored.endpoints == {A, B, C, "10.0.0.9:1"}
    assert dynamo.conflicts == 1


def test_upsert_gives_up_after_max_tries(store, dynamo, sleeps, ctx):
    seed(store, ctx)

    def bump():
        item = dynamo.items["hello__backend"]
        item["version"] = {"N": str(int(item["version"]["N"]) + 1)}

    dynamo.before_update.extend([bump, bump, bump])

    with pytest.raises(RetryExhausted) as info:
        store.upsert_endpoint_set("hello", [C], False, ctx)
    assert info.value.operation == "upsert_endpoint_set"
    assert info.value.service == "hello"
    assert "upsert_endpoint_set(hello)" in str(info.value)
    assert isinstance(info.value.__cause__, VersionConflict)
    assert dynamo.calls["update_item"] == 3
    # no wait after the final attempt
    assert len(sleeps) == 2


def test_upsert_aborts_on_other_errors(store, dynamo, sleeps, ctx):
    seed(store, ctx)
    dynamo.fail.add("update_item")
    with pytest.raises(StoreError):
        store.upsert_endpoint_set("hello", [C], False, ctx)
    assert dynamo.calls["update_item"] == 1
    assert sleeps == []


def test_upsert_read_failure(store, dynamo, ctx):
    dynamo.fail.add("get_item")
    with pytest.raises(StoreError):
        store.upsert_endpoint_set("hello", [C], False, ctx)
    assert dynamo.calls["put_item"] == 0


def test_remove_endpoint(store, ctx):
    seed(store, ctx)
    store.remove_endpoint("hello", A, ctx)

    stored = store.fetch("hello", ctx)
    assert stored.endpoints == {B}
    assert stored.version == 1


def test_remove_non_member_is_a_noop(store, dynamo, ctx):
    seed(store, ctx)
    store.remove_endpoint("hello", C, ctx)

    assert store.fetch("hello", ctx).version == 0
    assert dynamo.calls["update_item"] == 0


def test_remove_from_missing_record(store, ctx):
    with pytest.raises(NotFound):
        store.remove_endpoint("hello", A, ctx)


def test_remove_retries_on_conflict(store, dynamo, sleeps, ctx):
    seed(store, ctx)
    dynamo.before_update.append(lambda: store.upsert_endpoint_set("hello", [C], False, ctx))

    store.remove_endpoint("hello", A, ctx)

    stored = store.fetch("hello", ctx)
    assert stored.endpoints == {B, C}
    assert stored.version == 2
    assert sleeps == [0.1]


def test_record_round_trips_through_item():
    rec = RoutingRecord.new("hello", [A])
    again = RoutingRecord.from_item(rec.to_item())
    assert again == rec
