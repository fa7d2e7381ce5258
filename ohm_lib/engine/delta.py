"""Index membership deltas for save and delete.

A delta lists, for one record, the equality sets and range sorted sets its
identity must join (additions) and leave (removals). Updates always carry
both halves in full: removals derived from the persisted record, additions
from the in-memory one. Nothing is diffed field by field, so re-running a
save converges on the same index state.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from ohm_lib.errors import MissingIdentity, MissingOrEmptyTagValue
from ohm_lib.models.convert import is_null_or_empty, to_score, to_store_value
from ohm_lib.models.fields import Role
from ohm_lib.models.metadata import FieldRoleSet, FieldSpec, ModelMetadataProvider, metadata as default_metadata
from ohm_lib.storage import keys

logger = logging.getLogger(__name__)


@dataclass
class IndexEntries:
    """Equality set keys and range key -> score for one record."""

    sets: Set[str] = field(default_factory=set)
    sorted_sets: Dict[str, float] = field(default_factory=dict)

    def keys(self) -> Set[str]:
        return set(self.sets) | set(self.sorted_sets)

    def __bool__(self) -> bool:
        return bool(self.sets or self.sorted_sets)


@dataclass
class IndexDelta:
    """Index changes for one record identity.

    `all_key` names the type's enumeration set; it appears in `additions`
    on save and in `removals` on delete like any other set, but it is not
    an index key and never carries a co-location tag.
    """

    member: str
    all_key: str
    additions: IndexEntries = field(default_factory=IndexEntries)
    removals: IndexEntries = field(default_factory=IndexEntries)

    @property
    def sets_to_add(self) -> Set[str]:
        return self.additions.sets

    @property
    def sorted_sets_to_add(self) -> Dict[str, float]:
        return self.additions.sorted_sets

    @property
    def sets_to_remove(self) -> Set[str]:
        return self.removals.sets

    @property
    def sorted_sets_to_remove(self) -> Dict[str, float]:
        return self.removals.sorted_sets

    def index_keys(self) -> Set[str]:
        """Every index key touched, the enumeration set excluded."""
        return (self.additions.keys() | self.removals.keys()) - {self.all_key}

    def is_empty(self) -> bool:
        return not self.additions and not self.removals


class DeltaComputer:
    def __init__(self, metadata: Optional[ModelMetadataProvider] = None):
        self.metadata = metadata or default_metadata

    def tag_of(self, roles: FieldRoleSet, record: Any, required: bool = True) -> Optional[str]:
        """Co-location tag of `record`, or None for models without one.

        Raises MissingOrEmptyTagValue when the model has a tag field whose
        value is null or empty and `required` is set.
        """
        if roles.tag_field is None:
            return None
        value = getattr(record, roles.tag_field, None)
        if is_null_or_empty(value):
            if required:
                raise MissingOrEmptyTagValue(f"{roles.model_name}.{roles.tag_field} is null or empty")
            return None
        return keys.hash_tag(roles.tag_field, to_store_value(value))

    def entries(self, record: Any, required: bool = True, references: bool = True) -> IndexEntries:
        """Full index membership of `record` in its current state.

        With `required` unset (cleanup of a persisted record) a missing tag
        value is tolerated and the untagged keys are used. With
        `references` unset, reference fields are skipped.
        """
        roles = self.metadata.roles_of(type(record))
        tag = self.tag_of(roles, record, required=required)
        out = IndexEntries()
        for spec in roles.indexed:
            value = getattr(record, spec.name, None)
            if is_null_or_empty(value):
                continue
            if spec.has(Role.REFERENCE):
                if references:
                    self._reference_entries(roles, spec, value, tag, out)
            else:
                self._field_entries(roles.model_name, tag, (spec.key_name,), spec, value, out)
        return out

    def validate(self, record: Any) -> None:
        """Raise the errors `additions` would raise, references aside."""
        self.entries(record, references=False)

    def additions(self, record: Any, record_id: Any = None) -> IndexDelta:
        """Delta adding `record`.

        `record_id` overrides the record's identity. For a record that has
        none yet the member is left empty for the caller to fill in once
        the identity is assigned.
        """
        roles = self.metadata.roles_of(type(record))
        if record_id is None:
            record_id = getattr(record, roles.id_field)
        member = "" if record_id is None else str(record_id)
        all_key = keys.all_key(roles.model_name)
        delta = IndexDelta(member=member, all_key=all_key, additions=self.entries(record))
        delta.additions.sets.add(all_key)
        return delta

    def removals(self, persisted: Any) -> IndexDelta:
        """Delta removing a persisted record from every index it joined."""
        roles = self.metadata.roles_of(type(persisted))
        all_key = keys.all_key(roles.model_name)
        member = str(getattr(persisted, roles.id_field))
        delta = IndexDelta(member=member, all_key=all_key, removals=self.entries(persisted, required=False))
        delta.removals.sets.add(all_key)
        return delta

    def update(self, record: Any, persisted: Optional[Any]) -> IndexDelta:
        """Removals from `persisted` (if any) plus additions from `record`."""
        delta = self.additions(record)
        if persisted is not None:
            delta.removals = self.removals(persisted).removals
        logger.debug(
            "Delta for %s: +%d/-%d sets, +%d/-%d sorted sets",
            delta.all_key, len(delta.sets_to_add), len(delta.sets_to_remove),
            len(delta.sorted_sets_to_add), len(delta.sorted_sets_to_remove),
        )
        return delta

    def _field_entries(self, type_name: str, tag: Optional[str], path: tuple, spec: FieldSpec, value: Any, out: IndexEntries) -> None:
        out.sets.add(keys.key(type_name, *path, to_store_value(value), tag=tag))
        if spec.has(Role.COMPARABLE):
            out.sorted_sets[keys.key(type_name, *path, tag=tag)] = to_score(value, spec.name)

    def _reference_entries(self, roles: FieldRoleSet, spec: FieldSpec, target: Any, tag: Optional[str], out: IndexEntries) -> None:
        target_roles = self.metadata.reference_roles(roles, spec.name)
        target_id = getattr(target, target_roles.id_field, None)
        if target_id is None:
            raise MissingIdentity(f"{roles.model_name}.{spec.name} references an unsaved {target_roles.model_name}")
        self._field_entries(roles.model_name, tag, (spec.key_name,), spec, target_id, out)

        # one level deep: the referenced record's own indexed attributes
        for sub in target_roles.indexed:
            if not sub.has(Role.ATTRIBUTE):
                continue
            sub_value = getattr(target, sub.name, None)
            if is_null_or_empty(sub_value):
                continue
            self._field_entries(roles.model_name, tag, (spec.key_name, sub.name), sub, sub_value, out)
