import pytest

from ohm_lib.engine.delta import DeltaComputer
from ohm_lib.engine.execution import (
    BodyWrite,
    MixedWithCompensation,
    Pipelined,
    PlanExecutor,
    Transactional,
    plan_for,
    steps_for,
)
from ohm_lib.errors import RollbackFailure, StoreUnavailable, TransactionAborted
from ohm_lib.storage.memory_backend import MemoryStore

from tests.helpers import FailingStore, Order, Person


def _person_delta():
    return DeltaComputer().additions(Person(id=1, name="A", age=30))


def _order_delta(region="west"):
    return DeltaComputer().additions(Order(id=1, region=region, status="open", amount=5))


def test_plan_for_single_node_is_pipelined():
    assert plan_for(MemoryStore(), _order_delta()) == Pipelined()


def test_plan_for_same_tag_is_transactional():
    assert plan_for(MemoryStore(partitioned=True), _order_delta()) == Transactional("{region_west}")


def test_plan_for_untagged_on_partitioned_is_mixed():
    plan = plan_for(MemoryStore(partitioned=True), _person_delta())
    assert isinstance(plan, MixedWithCompensation)
    assert plan.groups == {}
    assert plan.loose == {"Person:name:A", "Person:age:30", "Person:age"}


def test_plan_for_tag_change_spans_groups():
    d = DeltaComputer()
    delta = d.update(
        Order(id=1, region="east", status="open"),
        Order(id=1, region="west", status="open"),
    )
    plan = plan_for(MemoryStore(partitioned=True), delta)
    assert isinstance(plan, MixedWithCompensation)
    assert set(plan.groups) == {"{region_east}", "{region_west}"}
    assert plan.loose == frozenset()


def test_steps_remove_before_add():
    delta = DeltaComputer().update(Person(id=1, name="B"), Person(id=1, name="A"))
    ops = [s.op for s in steps_for(delta)]
    assert ops.index("sadd") > max(i for i, op in enumerate(ops) if op == "srem")


def test_pipelined_apply_writes_indexes_and_body():
    store = MemoryStore()
    plan = PlanExecutor(store).apply(_person_delta(), BodyWrite("Person:1", {"id": "1", "name": "A"}))
    assert plan == Pipelined()
    assert store.smembers("Person:name:A") == {"1"}
    assert store.smembers("Person:all") == {"1"}
    assert store.zrangebyscore("Person:age", "-inf", "+inf") == ["1"]
    assert store.hgetall("Person:1") == {"id": "1", "name": "A"}


def test_body_write_replaces_stale_fields():
    store = MemoryStore()
    store.hset("Person:1", {"id": "1", "email": "old"})
    PlanExecutor(store).apply(_person_delta(), BodyWrite("Person:1", {"id": "1"}))
    assert store.hgetall("Person:1") == {"id": "1"}


def test_pipelined_failure_is_not_compensated():
    inner = MemoryStore()
    store = FailingStore(inner, StoreUnavailable("down"), {"execute": {1}})
    with pytest.raises(StoreUnavailable):
        PlanExecutor(store).apply(_person_delta(), BodyWrite("Person:1", {"id": "1"}))
    assert not any(entry[0] in ("srem", "zrem") for entry in store.log)
    assert inner.keys() == []


def test_transactional_apply():
    store = MemoryStore(partitioned=True)
    plan = PlanExecutor(store).apply(_order_delta(), BodyWrite("Order:1", {"id": "1"}))
    assert plan == Transactional("{region_west}")
    assert store.smembers("Order:{region_west}:status:open") == {"1"}
    assert store.smembers("Order:all") == {"1"}
    assert store.hgetall("Order:1") == {"id": "1"}


def test_aborted_transaction_needs_no_compensation():
    inner = MemoryStore(partitioned=True)
    store = FailingStore(inner, TransactionAborted("EXECABORT"), {"execute": {1}})
    with pytest.raises(TransactionAborted):
        PlanExecutor(store).apply(_order_delta(), BodyWrite("Order:1", {"id": "1"}))
    assert inner.keys() == []
    assert not any(entry[0] in ("srem", "zrem") for entry in store.log)


def test_failed_body_write_compensates_committed_transaction():
    inner = MemoryStore(partitioned=True)
    store = FailingStore(inner, TransactionAborted("EXECABORT"), {"execute": {2}})
    with pytest.raises(TransactionAborted):
        PlanExecutor(store).apply(_order_delta(), BodyWrite("Order:1", {"id": "1"}))
    assert inner.keys() == []


def test_mixed_failure_compensates_applied_steps():
    inner = MemoryStore(partitioned=True)
    store = FailingStore(inner, StoreUnavailable("timeout"), {"sadd": {2}})
    with pytest.raises(StoreUnavailable):
        PlanExecutor(store).apply(_person_delta(), BodyWrite("Person:1", {"id": "1"}))
    # first loose membership was applied then inverted
    assert ("sadd", "Person:age:30", "1") in store.log
    assert ("srem", "Person:age:30", "1") in store.log
    assert inner.keys() == []


def test_mixed_transaction_failure_compensates_loose_steps():
    inner = MemoryStore(partitioned=True)
    store = FailingStore(inner, TransactionAborted("EXECABORT"), {"execute": {1}})
    delta = DeltaComputer().update(
        Order(id=1, region="east", status="open"),
        Order(id=1, region="west", status="open"),
    )
    inner.sadd("Order:{region_west}:status:open", "1")
    inner.sadd("Order:{region_west}:region:west", "1")
    inner.sadd("Order:all", "1")
    with pytest.raises(TransactionAborted):
        PlanExecutor(store).apply(delta, BodyWrite("Order:1", {"id": "1", "region": "east"}))
    # the east group never committed and nothing else was applied before it
    assert inner.smembers("Order:{region_west}:status:open") == {"1"}
    assert not inner.exists("Order:{region_east}:status:open")


def test_second_group_failure_restores_first_group():
    inner = MemoryStore(partitioned=True)
    store = FailingStore(inner, TransactionAborted("EXECABORT"), {"execute": {2}})
    delta = DeltaComputer().update(
        Order(id=1, region="east", status="open"),
        Order(id=1, region="west", status="open"),
    )
    inner.sadd("Order:{region_west}:status:open", "1")
    inner.sadd("Order:{region_west}:region:west", "1")
    inner.sadd("Order:all", "1")
    with pytest.raises(TransactionAborted):
        PlanExecutor(store).apply(delta, BodyWrite("Order:1", {"id": "1", "region": "east"}))
    # groups run in tag order: east committed, west aborted, east inverted
    assert not inner.exists("Order:{region_east}:status:open")
    assert inner.smembers("Order:{region_west}:status:open") == {"1"}


def test_compensation_failure_raises_rollback_failure():
    inner = MemoryStore(partitioned=True)
    err = StoreUnavailable("timeout")
    store = FailingStore(inner, err, {"sadd": {2}, "srem": {1}})
    with pytest.raises(RollbackFailure) as ei:
        PlanExecutor(store).apply(_person_delta(), BodyWrite("Person:1", {"id": "1"}))
    assert ei.value.cause is err
    assert ei.value.compensation_error is err
