"""Declarative field roles for persisted models.

Models are plain dataclasses. Each persisted field is declared with one of
the factories below, which return a `dataclasses.field` whose metadata
carries the field's roles::

    @model
    @dataclass
    class Person:
        id: Optional[int] = identity()
        name: Optional[str] = attribute(indexed=True)
        age: Optional[int] = attribute(indexed=True, comparable=True)

Fields declared without a factory are ignored by the mapper.
"""
from __future__ import annotations
import dataclasses
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar, overload

ROLES = "ohm_roles"
OPTIONS = "ohm_options"

T = TypeVar("T", bound=type)

# model name -> class; filled by @model
_registry: Dict[str, type] = {}


class Role(str, Enum):
    IDENTITY = "identity"
    ATTRIBUTE = "attribute"
    REFERENCE = "reference"
    INDEXED = "indexed"
    COMPARABLE = "comparable"
    HASHTAG = "hashtag"
    ARRAY = "array"
    COLLECTION_LIST = "collection_list"
    COLLECTION_SET = "collection_set"
    COLLECTION_SORTED_SET = "collection_sorted_set"
    COLLECTION_MAP = "collection_map"


COLLECTION_ROLES = frozenset({
    Role.COLLECTION_LIST,
    Role.COLLECTION_SET,
    Role.COLLECTION_SORTED_SET,
    Role.COLLECTION_MAP,
})


def _field(roles: set, default: Any = None, default_factory: Optional[Callable[[], Any]] = None, **options: Any):
    metadata = {ROLES: frozenset(roles), OPTIONS: options}
    if default_factory is not None:
        return dataclasses.field(default_factory=default_factory, metadata=metadata)
    return dataclasses.field(default=default, metadata=metadata)


def identity():
    """Integer identity, assigned on first save."""
    return _field({Role.IDENTITY})


def attribute(*, indexed: bool = False, comparable: bool = False, hashtag: bool = False, default: Any = None):
    roles = {Role.ATTRIBUTE}
    if indexed:
        roles.add(Role.INDEXED)
    if comparable:
        roles.add(Role.COMPARABLE)
    if hashtag:
        roles.add(Role.HASHTAG)
    return _field(roles, default=default)


def reference(*, indexed: bool = False, comparable: bool = False):
    """Reference to another model; stored and indexed by the target's identity."""
    roles = {Role.REFERENCE}
    if indexed:
        roles.add(Role.INDEXED)
    if comparable:
        roles.add(Role.COMPARABLE)
    return _field(roles)


def array(length: int, *, of: Optional[type] = None):
    """Fixed-length array persisted beside the record body."""
    return _field({Role.ARRAY}, length=length, of=of)


def collection_list(*, of: Optional[type] = None):
    return _field({Role.COLLECTION_LIST}, default_factory=list, of=of)


def collection_set(*, of: Optional[type] = None):
    return _field({Role.COLLECTION_SET}, default_factory=set, of=of)


def collection_sorted_set(*, of: Optional[type] = float):
    """Numeric members kept ordered by their own value."""
    return _field({Role.COLLECTION_SORTED_SET}, default_factory=list, of=of)


def collection_map(*, key: Optional[type] = None, value: Optional[type] = None):
    return _field({Role.COLLECTION_MAP}, default_factory=dict, key=key, value=value)


@overload
def model(cls: T) -> T: ...


@overload
def model(*, name: Optional[str] = None) -> Callable[[T], T]: ...


def model(cls=None, *, name=None):
    """Register a dataclass as a persisted model.

    `name` overrides the key namespace, which defaults to the class name.
    Applies ``@dataclass`` when the class is not one already.
    """

    def wrap(c):
        if not dataclasses.is_dataclass(c):
            c = dataclasses.dataclass(c)
        model_name = name or c.__name__
        c.__ohm_name__ = model_name
        _registry[model_name] = c
        return c

    if cls is None:
        return wrap
    return wrap(cls)


def is_model(cls: Any) -> bool:
    return isinstance(cls, type) and "__ohm_name__" in cls.__dict__


def model_name(cls: type) -> str:
    return cls.__dict__["__ohm_name__"]


def registered_models() -> Dict[str, type]:
    return dict(_registry)
