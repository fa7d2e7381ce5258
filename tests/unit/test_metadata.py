from dataclasses import dataclass
from typing import Optional
import threading

import pytest

from ohm_lib.errors import InvalidFieldDefinition, InvalidType, MissingIndexedAnnotation, NoSuchField
from ohm_lib.models import Role, attribute, identity, model, reference
from ohm_lib.models.metadata import ModelMetadataProvider, classify, get_id, is_new, roles_of

from tests.helpers import Employee, Order, Person


def test_person_roles():
    roles = roles_of(Person)
    assert roles.model_name == "Person"
    assert roles.id_field == "id"
    assert roles.tag_field is None
    assert {f.name for f in roles.indexed} == {"name", "age", "boss"}
    assert roles.has("age", Role.COMPARABLE)
    assert not roles.has("email", Role.INDEXED)
    assert roles.field("boss").key_name == "boss_id"
    assert roles.field("boss").py_type is Person


def test_tag_field_and_collections():
    assert roles_of(Order).tag_field == "region"
    roles = roles_of(Employee)
    assert [f.name for f in roles.arrays] == ["scores"]
    assert roles.field("scores").length == 3
    assert roles.field("scores").element_type is int
    assert {f.name for f in roles.collections} == {"skills", "history", "ratings", "meta"}
    assert roles.field("meta").key_type is str
    assert roles.field("meta").element_type is int
    assert "scratch" not in roles.fields


def test_unknown_field_raises():
    with pytest.raises(NoSuchField):
        roles_of(Person).field("nope")


def test_unregistered_class_is_invalid_type():
    @dataclass
    class Plain:
        id: Optional[int] = None

    with pytest.raises(InvalidType):
        roles_of(Plain)


def test_comparable_without_indexed_rejected():
    @model
    @dataclass
    class BadComparable:
        id: Optional[int] = identity()
        score: Optional[int] = attribute(comparable=True)

    with pytest.raises(MissingIndexedAnnotation):
        classify(BadComparable)


def test_identity_required():
    @model
    @dataclass
    class NoIdentity:
        name: Optional[str] = attribute(indexed=True)

    with pytest.raises(InvalidType):
        classify(NoIdentity)


def test_reserved_names_cannot_be_indexed():
    @model
    @dataclass
    class Reserved:
        id: Optional[int] = identity()
        all: Optional[str] = attribute(indexed=True)

    with pytest.raises(InvalidFieldDefinition):
        classify(Reserved)


def test_hashtag_must_be_attribute_and_unique():
    @model
    @dataclass
    class TwoTags:
        id: Optional[int] = identity()
        a: Optional[str] = attribute(indexed=True, hashtag=True)
        b: Optional[str] = attribute(indexed=True, hashtag=True)

    with pytest.raises(InvalidFieldDefinition):
        classify(TwoTags)


def test_reference_to_non_model_rejected():
    @model
    @dataclass
    class BadRef:
        id: Optional[int] = identity()
        other: Optional[str] = reference(indexed=True)

    with pytest.raises(InvalidFieldDefinition):
        classify(BadRef)


def test_model_name_override():
    @model(name="Acct")
    @dataclass
    class Account:
        id: Optional[int] = identity()

    assert roles_of(Account).model_name == "Acct"


def test_provider_caches_one_instance_across_threads():
    provider = ModelMetadataProvider()
    seen = []

    def worker():
        seen.append(provider.roles_of(Person))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert all(r is seen[0] for r in seen)
    assert provider.roles_of(Person) is seen[0]


def test_is_indexable():
    assert ModelMetadataProvider.is_indexable("name")
    assert not ModelMetadataProvider.is_indexable("id")
    assert not ModelMetadataProvider.is_indexable("all")
    assert not ModelMetadataProvider.is_indexable("")


def test_identity_helpers():
    p = Person(name="x")
    assert is_new(p)
    assert get_id(p) is None
    p.id = 4
    assert not is_new(p)
    assert get_id(p) == 4
