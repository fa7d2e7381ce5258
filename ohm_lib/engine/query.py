"""Resolving conjunctive predicates into record identities.

Equality predicates are intersected on the store (SINTERSTORE, or the
index key itself when there is only one). Range predicates read the
field's sorted set, first masked by the equality result with ZINTERSTORE
(weight 1 on the range side, 0 on the equality side) so the scores stay
the field's values. Results of several range predicates and NOTEQUALS
differences are combined in-process. Temporary keys are always deleted.

On a partitioned store the keys of an untagged query live on different
shards, so the same algebra runs in-process over SMEMBERS and
ZRANGEBYSCORE reads instead.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Set, Tuple

from ohm_lib.errors import InvalidValue, MissingComparableField, MissingIndexedAnnotation
from ohm_lib.models.convert import coerce, format_score, is_null_or_empty, parse_score, to_store_value
from ohm_lib.models.fields import Role, is_model
from ohm_lib.models.metadata import FieldRoleSet, FieldSpec, ModelMetadataProvider, metadata as default_metadata
from ohm_lib.storage import keys
from ohm_lib.storage.interfaces import StoreProtocol

logger = logging.getLogger(__name__)

POS_INF = "+inf"
NEG_INF = "-inf"


class Condition(str, Enum):
    EQUALS = "EQUALS"
    NOTEQUALS = "NOTEQUALS"
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"

    @property
    def is_range(self) -> bool:
        return self in (Condition.GT, Condition.GTE, Condition.LT, Condition.LTE)


@dataclass(frozen=True)
class Predicate:
    """One condition of a query.

    For a reference field, `reference_attribute` names an indexed attribute
    of the referenced model and `reference_value` (or `value` when unset)
    is compared against it. Without `reference_attribute`, `value` is the
    referenced record or its identity.
    """

    name: str
    value: Any = None
    condition: Condition = Condition.EQUALS
    reference_attribute: Optional[str] = None
    reference_value: Any = None


@dataclass(frozen=True)
class _Term:
    condition: Condition
    path: Tuple[str, ...]
    value: str
    score: Optional[float] = None

    def bounds(self) -> Tuple[str, str]:
        v = format_score(self.score)
        if self.condition is Condition.GTE:
            return v, POS_INF
        if self.condition is Condition.GT:
            return "(" + v, POS_INF
        if self.condition is Condition.LTE:
            return NEG_INF, v
        return NEG_INF, "(" + v


class QueryResolver:
    def __init__(self, store: StoreProtocol, metadata: Optional[ModelMetadataProvider] = None):
        self.store = store
        self.metadata = metadata or default_metadata

    # -- validation --------------------------------------------------------
    def _term(self, roles: FieldRoleSet, p: Predicate) -> Tuple[_Term, Optional[str]]:
        """Validate `p` and return its term plus the tag it supplies, if any."""
        condition = Condition(p.condition)
        if not self.metadata.is_indexable(p.name):
            raise MissingIndexedAnnotation(f"{p.name!r} cannot be queried")
        spec = roles.field(p.name)
        if not spec.has(Role.INDEXED):
            raise MissingIndexedAnnotation(f"{roles.model_name}.{p.name} is not indexed")

        value = p.value
        compared: FieldSpec = spec
        value_type = spec.py_type
        path: Tuple[str, ...] = (spec.key_name,)
        if spec.has(Role.REFERENCE):
            target_roles = self.metadata.reference_roles(roles, spec.name)
            if p.reference_attribute is not None:
                compared = target_roles.field(p.reference_attribute)
                if not compared.has(Role.INDEXED) or not compared.has(Role.ATTRIBUTE):
                    raise MissingIndexedAnnotation(
                        f"{target_roles.model_name}.{p.reference_attribute} is not an indexed attribute"
                    )
                path = (spec.key_name, compared.name)
                value_type = compared.py_type
                if p.reference_value is not None:
                    value = p.reference_value
            else:
                if is_model(type(value)):
                    value = getattr(value, target_roles.id_field)
                value_type = int

        if condition.is_range and not compared.has(Role.COMPARABLE):
            raise MissingComparableField(f"{roles.model_name}.{'.'.join(path)} is not comparable")
        if is_null_or_empty(value):
            raise InvalidValue(f"{roles.model_name}.{'.'.join(path)}: value is null or empty")

        value = coerce(value_type, value)
        if condition.is_range:
            score = parse_score(value, p.name)
            return _Term(condition, path, format_score(score), score), None

        stored = to_store_value(value)
        tag = None
        if spec.has(Role.HASHTAG) and condition is Condition.EQUALS:
            tag = keys.hash_tag(spec.name, stored)
        return _Term(condition, path, stored), tag

    def _terms(self, roles: FieldRoleSet, predicates: Iterable[Predicate]) -> Tuple[List[_Term], Optional[str]]:
        terms: List[_Term] = []
        tag: Optional[str] = None
        for p in predicates:
            term, term_tag = self._term(roles, p)
            if term_tag is not None:
                if tag is not None and tag != term_tag:
                    raise InvalidValue(f"query names two co-location tags: {tag} and {term_tag}")
                tag = term_tag
            terms.append(term)
        if not terms:
            raise InvalidValue("a query needs at least one predicate")
        return terms, tag

    # -- resolution --------------------------------------------------------
    def resolve(self, cls: type, predicates: Iterable[Predicate]) -> Set[str]:
        """Identities of `cls` records matching every predicate."""
        roles = self.metadata.roles_of(cls)
        terms, tag = self._terms(roles, predicates)
        name = roles.model_name
        equals = [t for t in terms if t.condition is Condition.EQUALS]
        not_equals = [t for t in terms if t.condition is Condition.NOTEQUALS]
        ranges = [t for t in terms if t.condition.is_range]

        eq_keys = [keys.key(name, *t.path, t.value, tag=tag) for t in equals]
        native = not self.store.partitioned or tag is not None
        logger.debug("Resolving %s: %d eq, %d ne, %d range, tag=%s, native=%s",
                     name, len(equals), len(not_equals), len(ranges), tag, native)

        if native:
            result = self._resolve_native(name, tag, eq_keys, ranges)
        else:
            result = self._resolve_in_process(name, eq_keys, ranges)

        for t in not_equals:
            if not result:
                break
            result -= self.store.smembers(keys.key(name, *t.path, t.value, tag=tag))
        return result

    def _resolve_native(self, name: str, tag: Optional[str], eq_keys: List[str], ranges: List[_Term]) -> Set[str]:
        temp: List[str] = []
        try:
            base: Optional[str] = None
            if len(eq_keys) == 1:
                base = eq_keys[0]
            elif eq_keys:
                base = keys.combined_key(eq_keys)
                temp.append(base)
                self.store.sinterstore(base, eq_keys)

            result: Optional[Set[str]] = None
            for t in ranges:
                if result is not None and not result:
                    break
                range_key = keys.key(name, *t.path, tag=tag)
                source = range_key
                if base is not None:
                    source = keys.combined_key([range_key, base])
                    temp.append(source)
                    self.store.zinterstore(source, {range_key: 1, base: 0})
                hits = set(self.store.zrangebyscore(source, *t.bounds()))
                result = hits if result is None else result & hits

            if result is None:
                result = set(self.store.smembers(base if base is not None else keys.all_key(name)))
            return result
        finally:
            if temp:
                self.store.delete(*temp)

    def _resolve_in_process(self, name: str, eq_keys: List[str], ranges: List[_Term]) -> Set[str]:
        result: Optional[Set[str]] = None
        for k in eq_keys:
            members = set(self.store.smembers(k))
            result = members if result is None else result & members
            if not result:
                return set()
        for t in ranges:
            hits = set(self.store.zrangebyscore(keys.key(name, *t.path), *t.bounds()))
            result = hits if result is None else result & hits
            if not result:
                return set()
        if result is None:
            result = set(self.store.smembers(keys.all_key(name)))
        return result

    def lookup(self, cls: type, name: str, value: Any, hash_tag: Optional[str] = None) -> Set[str]:
        """Identities in a single equality index.

        `hash_tag` is the value of the model's tag field, or a ready-made
        ``{field_value}`` tag.
        """
        roles = self.metadata.roles_of(cls)
        term, term_tag = self._term(roles, Predicate(name, value))
        tag = term_tag
        if hash_tag is not None:
            if keys.is_hash_tag(str(hash_tag)):
                tag = str(hash_tag)
            elif roles.tag_field is not None:
                tag = keys.hash_tag(roles.tag_field, to_store_value(hash_tag))
        return set(self.store.smembers(keys.key(roles.model_name, *term.path, term.value, tag=tag)))
