import pytest

from ohm_lib.errors import InvalidRangeValue, InvalidType, MissingIdentity, MissingOrEmptyTagValue, StoreUnavailable
from ohm_lib.ohm import Ohm

from tests.helpers import Department, Employee, Order, Person


def _index_members(store, member):
    """Every set / sorted set key currently holding `member`."""
    out = set()
    for k in store.keys():
        if k.endswith(":id"):
            continue
        try:
            if member in store.smembers(k):
                out.add(k)
                continue
        except StoreUnavailable:
            pass
        try:
            if store.zscore(k, member) is not None:
                out.add(k)
        except StoreUnavailable:
            pass
    return out


def test_save_assigns_identity_and_get_round_trips(ohm):
    p = Person(name="Alice", age=30, email="alice@example.com")
    assert ohm.is_new(p)
    ohm.save(p)
    assert p.id == 1
    assert not ohm.is_new(p)
    assert ohm.get_id(p) == 1

    got = ohm.get(Person, 1)
    assert got == p
    assert got is not p


def test_get_missing_returns_none(ohm):
    assert ohm.get(Person, 42) is None


def test_identity_counter_increments(ohm):
    a = ohm.save(Person(name="A"))
    b = ohm.save(Person(name="B"))
    assert (a.id, b.id) == (1, 2)


def test_record_with_only_identity_is_readable(ohm):
    p = ohm.save(Person())
    assert ohm.get(Person, p.id) == Person(id=p.id)


def test_update_moves_index_membership(ohm, store):
    p = ohm.save(Person(name="Alice", age=30))
    p.name = "Alicia"
    p.age = 31
    ohm.save(p)
    assert store.smembers("Person:name:Alice") == set()
    assert store.smembers("Person:name:Alicia") == {"1"}
    assert store.zscore("Person:age", "1") == 31
    assert not store.exists("Person:age:30")


def test_cleared_attribute_does_not_linger(ohm, store):
    p = ohm.save(Person(name="Alice", email="a@example.com"))
    p.email = None
    p.name = None
    ohm.save(p)
    assert ohm.get(Person, p.id) == Person(id=p.id)
    assert "email" not in store.hgetall("Person:1")
    assert not store.exists("Person:name:Alice")


def test_resave_is_idempotent(ohm, store):
    p = ohm.save(Person(name="Alice", age=30))
    before = _index_members(store, "1")
    ohm.save(p)
    ohm.save(p)
    assert _index_members(store, "1") == before


def test_delete_removes_every_membership(ohm, store):
    p = ohm.save(Person(name="Alice", age=30))
    assert ohm.delete(Person, p.id) is True
    assert ohm.get(Person, p.id) is None
    assert _index_members(store, "1") == set()
    assert not store.exists("Person:1")


def test_delete_twice_is_idempotent(ohm, store):
    p = ohm.save(Person(name="Alice", age=30))
    assert ohm.delete(Person, p.id) is True
    assert ohm.delete(Person, p.id) is False
    assert _index_members(store, "1") == set()


def test_delete_without_indexes_keeps_memberships(ohm, store):
    p = ohm.save(Person(name="Alice"))
    assert ohm.delete(Person, p.id, delete_indexes=False) is True
    assert ohm.get(Person, p.id) is None
    assert store.smembers("Person:name:Alice") == {"1"}


def test_reference_round_trip(ohm):
    boss = ohm.save(Person(name="Boss"))
    worker = ohm.save(Person(name="Worker", boss=boss))
    got = ohm.get(Person, worker.id)
    assert got.boss == boss
    assert got.boss.id == boss.id


def test_unsaved_reference_without_cascade_fails_before_io(ohm, store):
    with pytest.raises(MissingIdentity):
        ohm.save(Person(name="Worker", boss=Person(name="Boss")))
    assert store.keys() == []


def test_cascade_saves_references_first(ohm, store):
    boss = Person(name="Boss")
    worker = Person(name="Worker", boss=boss)
    ohm.save(worker, cascade=True)
    assert boss.id is not None and worker.id is not None
    assert store.smembers(f"Person:boss_id:{boss.id}") == {str(worker.id)}
    assert store.smembers("Person:boss_id:name:Boss") == {str(worker.id)}


def test_cyclic_references(ohm):
    a = Person(name="A")
    b = Person(name="B", boss=a)
    a.boss = b
    ohm.save(a, cascade=True)
    got = ohm.get(Person, a.id)
    assert got.boss.name == "B"
    assert got.boss.boss is got


def test_cascade_delete(ohm, store):
    dept = Department(name="R&D", budget=10)
    e = ohm.save(Employee(name="Bob", department=dept), cascade=True)
    assert ohm.delete(Employee, e.id, cascade=True) is True
    assert ohm.get(Department, dept.id) is None
    assert store.smembers("Department:all") == set()
    assert store.smembers("Employee:department_id:name:R&D") == set()


def test_delete_after_referenced_record_vanished(ohm, store):
    boss = ohm.save(Person(name="Boss"))
    worker = ohm.save(Person(name="Worker", boss=boss))
    ohm.delete(Person, boss.id)
    assert ohm.get(Person, worker.id).boss is None
    ohm.delete(Person, worker.id)
    assert store.smembers(f"Person:boss_id:{boss.id}") == set()


def test_validation_failure_leaves_no_state(ohm, store):
    with pytest.raises(MissingOrEmptyTagValue):
        ohm.save(Order(status="open"))
    assert store.keys() == []


def test_failed_cascade_releases_reserved_identities(ohm, store):
    a = Person(name="A")
    b = Person(name="B", boss=a)
    a.boss = b
    # make the second record of the cycle invalid
    b.age = "old"
    with pytest.raises(InvalidRangeValue):
        ohm.save(a, cascade=True)
    assert a.id is None and b.id is None
    assert store.keys() == []


def test_invalid_cascaded_record_fails_before_io(ohm, store):
    with pytest.raises(InvalidRangeValue):
        ohm.save(Employee(name="Bob", department=Department(budget="lots")), cascade=True)
    assert store.keys() == []


def test_unregistered_type_rejected(ohm):
    class NotAModel:
        pass

    with pytest.raises(InvalidType):
        ohm.get(NotAModel, 1)


def test_get_all(ohm):
    ohm.save(Person(name="A"))
    ohm.save(Person(name="B"))
    assert [p.name for p in ohm.get_all(Person)] == ["A", "B"]


def test_ohm_accepts_custom_metadata(store):
    from ohm_lib.models.metadata import ModelMetadataProvider

    provider = ModelMetadataProvider()
    o = Ohm(store, metadata=provider)
    p = o.save(Person(name="A"))
    assert provider.roles_of(Person).model_name == "Person"
    assert o.get_id(p) == 1
    assert not o.is_new(p)
    assert o.is_new(Person(name="B"))
