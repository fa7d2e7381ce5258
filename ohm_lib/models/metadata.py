"""Field role classification for registered models.

`ModelMetadataProvider.roles_of(cls)` classifies a model's fields once and
caches the resulting `FieldRoleSet` for the life of the process. Reads are
lock-free; a freshly built role set is published with insert-if-absent so
concurrent first uses agree on one instance.
"""
from __future__ import annotations
import dataclasses
import logging
import threading
import types
import typing
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from ohm_lib.errors import (
    InvalidFieldDefinition,
    InvalidType,
    MissingIndexedAnnotation,
    NoSuchField,
)
from ohm_lib.models.fields import (
    COLLECTION_ROLES,
    OPTIONS,
    ROLES,
    Role,
    is_model,
    model_name,
    registered_models,
)
from ohm_lib.storage.keys import ALL_SET, ID_COUNTER

logger = logging.getLogger(__name__)

RESERVED_NAMES = frozenset({ALL_SET, ID_COUNTER})
REFERENCE_SUFFIX = "_id"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    roles: frozenset
    py_type: Optional[type] = None
    length: Optional[int] = None
    element_type: Optional[type] = None
    key_type: Optional[type] = None

    def has(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_collection(self) -> bool:
        return bool(self.roles & COLLECTION_ROLES)

    @property
    def key_name(self) -> str:
        """Name used in the record body and in index keys."""
        if Role.REFERENCE in self.roles:
            return self.name + REFERENCE_SUFFIX
        return self.name


@dataclass(frozen=True)
class FieldRoleSet:
    """Immutable classification of one model's fields."""

    model_type: type
    model_name: str
    fields: Mapping[str, FieldSpec]
    id_field: str
    tag_field: Optional[str] = None

    def field(self, name: str) -> FieldSpec:
        try:
            return self.fields[name]
        except KeyError as e:
            raise NoSuchField(f"{self.model_name} has no field {name!r}", cause=e)

    def has(self, name: str, role: Role) -> bool:
        spec = self.fields.get(name)
        return spec is not None and spec.has(role)

    def with_role(self, role: Role) -> List[FieldSpec]:
        return [f for f in self.fields.values() if f.has(role)]

    @property
    def attributes(self) -> List[FieldSpec]:
        return self.with_role(Role.ATTRIBUTE)

    @property
    def references(self) -> List[FieldSpec]:
        return self.with_role(Role.REFERENCE)

    @property
    def indexed(self) -> List[FieldSpec]:
        return self.with_role(Role.INDEXED)

    @property
    def arrays(self) -> List[FieldSpec]:
        return self.with_role(Role.ARRAY)

    @property
    def collections(self) -> List[FieldSpec]:
        return [f for f in self.fields.values() if f.is_collection]


def _unwrap_optional(tp: Any) -> Any:
    origin = typing.get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return _unwrap_optional(args[0])
    return tp


def _plain_type(tp: Any) -> Optional[type]:
    tp = _unwrap_optional(tp)
    origin = typing.get_origin(tp)
    if origin is not None:
        return origin
    return tp if isinstance(tp, type) else None


def _element_type(tp: Any, index: int = 0) -> Optional[type]:
    args = typing.get_args(_unwrap_optional(tp))
    if len(args) > index and isinstance(args[index], type):
        return args[index]
    return None


def _resolve_hints(cls: type) -> Dict[str, Any]:
    localns = {c.__name__: c for c in registered_models().values()}
    try:
        return typing.get_type_hints(cls, localns=localns)
    except (NameError, TypeError) as e:
        raise InvalidFieldDefinition(f"cannot resolve annotations of {cls.__name__}", cause=e)


def _build_spec(cls: type, f: dataclasses.Field, hint: Any) -> FieldSpec:
    roles = f.metadata[ROLES]
    options = f.metadata.get(OPTIONS, {})
    where = f"{cls.__name__}.{f.name}"

    if Role.ATTRIBUTE in roles and Role.REFERENCE in roles:
        raise InvalidFieldDefinition(f"{where} cannot be both attribute and reference")
    if Role.COMPARABLE in roles and Role.INDEXED not in roles:
        raise MissingIndexedAnnotation(f"{where} is comparable but not indexed")
    if Role.INDEXED in roles and not roles & {Role.ATTRIBUTE, Role.REFERENCE}:
        raise InvalidFieldDefinition(f"{where} is indexed but neither attribute nor reference")
    if Role.HASHTAG in roles and Role.ATTRIBUTE not in roles:
        raise InvalidFieldDefinition(f"{where} is a hashtag but not an attribute")
    if Role.INDEXED in roles and f.name in RESERVED_NAMES:
        raise InvalidFieldDefinition(f"{where}: {f.name!r} is reserved and cannot be indexed")

    py_type = _plain_type(hint)
    if Role.IDENTITY in roles and py_type is not int:
        raise InvalidFieldDefinition(f"{where}: identity must be declared int")
    if Role.REFERENCE in roles and not is_model(py_type):
        raise InvalidFieldDefinition(f"{where} references {hint!r}, which is not a registered model")

    length = options.get("length")
    if Role.ARRAY in roles and (not isinstance(length, int) or length <= 0):
        raise InvalidFieldDefinition(f"{where}: array length must be a positive int")

    element_type = options.get("of") or options.get("value")
    key_type = options.get("key")
    if element_type is None:
        element_type = _element_type(hint, 1 if Role.COLLECTION_MAP in roles else 0)
    if key_type is None and Role.COLLECTION_MAP in roles:
        key_type = _element_type(hint, 0)

    return FieldSpec(
        name=f.name,
        roles=roles,
        py_type=py_type,
        length=length,
        element_type=element_type,
        key_type=key_type,
    )


def classify(cls: type) -> FieldRoleSet:
    """Build the role set for `cls`, validating its declaration."""
    if not is_model(cls):
        raise InvalidType(f"{getattr(cls, '__name__', cls)!r} is not a registered model")

    hints = _resolve_hints(cls)
    specs: Dict[str, FieldSpec] = {}
    for f in dataclasses.fields(cls):
        if ROLES not in f.metadata:
            continue
        specs[f.name] = _build_spec(cls, f, hints.get(f.name))

    ids = [s.name for s in specs.values() if s.has(Role.IDENTITY)]
    if len(ids) != 1:
        raise InvalidType(f"{cls.__name__} must declare exactly one identity field, found {len(ids)}")
    tags = [s.name for s in specs.values() if s.has(Role.HASHTAG)]
    if len(tags) > 1:
        raise InvalidFieldDefinition(f"{cls.__name__} declares more than one hashtag field: {tags}")

    roles = FieldRoleSet(
        model_type=cls,
        model_name=model_name(cls),
        fields=MappingProxyType(specs),
        id_field=ids[0],
        tag_field=tags[0] if tags else None,
    )
    logger.debug("Classified %s: %s", roles.model_name, {n: sorted(r.value for r in s.roles) for n, s in specs.items()})
    return roles


class ModelMetadataProvider:
    """Process-wide cache of `FieldRoleSet` keyed by model class."""

    def __init__(self) -> None:
        self._cache: Dict[type, FieldRoleSet] = {}
        self._lock = threading.Lock()

    def roles_of(self, cls: type) -> FieldRoleSet:
        roles = self._cache.get(cls)
        if roles is not None:
            return roles
        built = classify(cls)
        with self._lock:
            return self._cache.setdefault(cls, built)

    def reference_roles(self, roles: FieldRoleSet, field_name: str) -> FieldRoleSet:
        """Role set of the model a reference field points at."""
        spec = roles.field(field_name)
        if not spec.has(Role.REFERENCE):
            raise InvalidFieldDefinition(f"{roles.model_name}.{field_name} is not a reference")
        return self.roles_of(spec.py_type)

    @staticmethod
    def is_indexable(name: Optional[str]) -> bool:
        return bool(name) and name not in RESERVED_NAMES


metadata = ModelMetadataProvider()


def roles_of(cls: type) -> FieldRoleSet:
    return metadata.roles_of(cls)


def get_id(record: Any) -> Optional[int]:
    """Identity of `record`, or None if it was never saved."""
    roles = metadata.roles_of(type(record))
    return getattr(record, roles.id_field)


def is_new(record: Any) -> bool:
    return get_id(record) is None
