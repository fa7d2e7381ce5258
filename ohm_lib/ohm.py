"""Record CRUD on top of the index engine.

`Ohm` binds a store client to the delta computer, the execution planner and
the query resolver. It keeps no record state between calls: every read
re-hydrates from the store.
"""
from __future__ import annotations
import logging
from decimal import InvalidOperation
from typing import Any, Dict, List, Optional, Set, Tuple, Type, TypeVar

from ohm_lib.engine.delta import DeltaComputer
from ohm_lib.engine.execution import BodyWrite, PlanExecutor
from ohm_lib.engine.query import Predicate, QueryResolver
from ohm_lib.errors import InvalidValue, MissingIdentity, OhmError
from ohm_lib.models.convert import from_store_value, to_store_value
from ohm_lib.models.metadata import FieldRoleSet, ModelMetadataProvider, metadata as default_metadata
from ohm_lib.storage import keys
from ohm_lib.storage.containers import ContainerPersistence
from ohm_lib.storage.interfaces import StoreProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Ohm:
    def __init__(self, store: StoreProtocol, metadata: Optional[ModelMetadataProvider] = None):
        self.store = store
        self.metadata = metadata or default_metadata
        self.deltas = DeltaComputer(self.metadata)
        self.executor = PlanExecutor(store)
        self.resolver = QueryResolver(store, self.metadata)
        self.containers = ContainerPersistence(store)

    # -- identity helpers --------------------------------------------------
    def get_id(self, record: Any) -> Optional[int]:
        return self._id_of(record)

    def is_new(self, record: Any) -> bool:
        return self._id_of(record) is None

    # -- reads -------------------------------------------------------------
    def get(self, cls: Type[T], record_id: Any) -> Optional[T]:
        """Hydrate one record, or None when its body does not exist."""
        return self._load(cls, record_id, {})

    def _load(self, cls: type, record_id: Any, memo: Dict[Tuple[type, int], Any], cleanup: bool = False) -> Any:
        roles = self.metadata.roles_of(cls)
        if record_id is None:
            return None
        try:
            rid = int(record_id)
        except (TypeError, ValueError) as e:
            raise InvalidValue(f"{roles.model_name}: invalid identity {record_id!r}", cause=e)
        if (cls, rid) in memo:
            return memo[(cls, rid)]

        body = self.store.hgetall(keys.body_key(roles.model_name, rid))
        if not body:
            return None

        values: Dict[str, Any] = {roles.id_field: rid}
        for spec in roles.attributes:
            raw = body.get(spec.key_name)
            if raw is None:
                continue
            try:
                values[spec.name] = from_store_value(spec.py_type, raw)
            except (ValueError, InvalidOperation) as e:
                raise InvalidValue(f"{roles.model_name}:{rid} holds {raw!r} for {spec.name}", cause=e)
        record = cls(**values)
        memo[(cls, rid)] = record

        # references after memo registration so cycles resolve to the same instance
        for spec in roles.references:
            raw = body.get(spec.key_name)
            if not raw:
                continue
            target = self._load(spec.py_type, raw, memo, cleanup)
            if target is None and cleanup:
                target = self._stub(spec.py_type, int(raw))
            setattr(record, spec.name, target)

        if not cleanup:
            for spec in roles.arrays + roles.collections:
                setattr(record, spec.name, self.containers.read(roles, rid, spec))
        return record

    def _stub(self, cls: type, record_id: int) -> Any:
        """Identity-only stand-in for a referenced record that no longer exists."""
        roles = self.metadata.roles_of(cls)
        return cls(**{roles.id_field: record_id})

    def _hydrate(self, cls: type, ids: Set[str]) -> List[Any]:
        out = []
        for rid in sorted(ids, key=int):
            record = self.get(cls, rid)
            if record is not None:
                out.append(record)
        return out

    def find(self, cls: Type[T], *predicates: Predicate, ids_only: bool = False) -> List[Any]:
        """Records (or identity strings with `ids_only`) matching every predicate."""
        ids = self.resolver.resolve(cls, predicates)
        if ids_only:
            return sorted(ids, key=int)
        return self._hydrate(cls, ids)

    def find_by(self, cls: Type[T], name: str, value: Any, hash_tag: Optional[str] = None) -> List[T]:
        return self._hydrate(cls, self.resolver.lookup(cls, name, value, hash_tag))

    def get_all(self, cls: Type[T]) -> List[T]:
        roles = self.metadata.roles_of(cls)
        return self._hydrate(cls, self.store.smembers(keys.all_key(roles.model_name)))

    # -- writes ------------------------------------------------------------
    def save(self, record: T, cascade: bool = False) -> T:
        """Persist `record`, assigning its identity on first save.

        With `cascade`, unsaved referenced records are saved first.
        Otherwise a reference to an unsaved record raises MissingIdentity.
        """
        self._check(record, cascade, set())
        assigned: List[Any] = []
        try:
            self._save(record, set(), assigned)
        except OhmError:
            # identities reserved for records that were never written
            for r in assigned:
                setattr(r, self.metadata.roles_of(type(r)).id_field, None)
            raise
        return record

    def _check(self, record: Any, cascade: bool, seen: Set[int]) -> None:
        """Validate `record` and every unsaved record it would cascade to."""
        if id(record) in seen:
            return
        seen.add(id(record))
        roles = self.metadata.roles_of(type(record))

        self.deltas.validate(record)
        for spec in roles.arrays + roles.collections:
            self.containers.check(spec, getattr(record, spec.name))

        for spec in roles.references:
            target = getattr(record, spec.name)
            if target is not None and self._id_of(target) is None:
                if not cascade:
                    raise MissingIdentity(f"{roles.model_name}.{spec.name} references an unsaved record")
                self._check(target, cascade, seen)

    def _save(self, record: Any, seen: Set[int], assigned: List[Any]) -> None:
        if id(record) in seen:
            return
        seen.add(id(record))
        roles = self.metadata.roles_of(type(record))

        pending = [
            target for target in (getattr(record, spec.name) for spec in roles.references)
            if target is not None and self._id_of(target) is None
        ]
        if pending:
            # reserve our identity first so references back to us resolve
            if self._id_of(record) is None:
                self._assign_id(roles, record, assigned)
            for target in pending:
                self._save(target, seen, assigned)

        record_id = self._id_of(record)
        if record_id is None:
            delta = self.deltas.additions(record)
            record_id = self._assign_id(roles, record, assigned)
            delta.member = str(record_id)
        else:
            persisted = self._load(type(record), record_id, {}, cleanup=True)
            delta = self.deltas.update(record, persisted)

        body = BodyWrite(keys.body_key(roles.model_name, record_id), self._body(roles, record))
        plan = self.executor.apply(delta, body)
        assigned[:] = [r for r in assigned if r is not record]
        for spec in roles.arrays + roles.collections:
            self.containers.write(roles, record_id, spec, getattr(record, spec.name))
        logger.debug("Saved %s:%s via %s", roles.model_name, record_id, type(plan).__name__)

    def _id_of(self, record: Any) -> Optional[int]:
        return getattr(record, self.metadata.roles_of(type(record)).id_field)

    def _assign_id(self, roles: FieldRoleSet, record: Any, assigned: List[Any]) -> int:
        record_id = self.store.incr(keys.counter_key(roles.model_name))
        setattr(record, roles.id_field, record_id)
        assigned.append(record)
        return record_id

    def _body(self, roles: FieldRoleSet, record: Any) -> Dict[str, str]:
        body = {roles.id_field: str(getattr(record, roles.id_field))}
        for spec in roles.attributes:
            value = getattr(record, spec.name)
            if value is not None:
                body[spec.key_name] = to_store_value(value)
        for spec in roles.references:
            target = getattr(record, spec.name)
            if target is not None:
                body[spec.key_name] = str(self._id_of(target))
        return body

    def delete(self, cls: type, record_id: Any, delete_indexes: bool = True, cascade: bool = False) -> bool:
        """Delete a record; False when it does not exist.

        With `cascade`, referenced records are deleted too (after this
        record's index removals were computed, before they are applied).
        """
        return self._delete(cls, record_id, delete_indexes, cascade, set())

    def _delete(self, cls: type, record_id: Any, delete_indexes: bool, cascade: bool, seen: Set[Tuple[type, int]]) -> bool:
        roles = self.metadata.roles_of(cls)
        persisted = self._load(cls, record_id, {}, cleanup=True)
        if persisted is None:
            logger.debug("Delete of missing %s:%s ignored", roles.model_name, record_id)
            return False
        rid = self._id_of(persisted)
        seen.add((cls, rid))
        delta = self.deltas.removals(persisted) if delete_indexes else None

        if cascade:
            for spec in roles.references:
                target = getattr(persisted, spec.name)
                if target is None:
                    continue
                target_id = self._id_of(target)
                if (type(target), target_id) not in seen:
                    self._delete(type(target), target_id, delete_indexes, cascade, seen)

        body_key = keys.body_key(roles.model_name, rid)
        if delta is not None:
            self.executor.apply(delta, BodyWrite(body_key))
        else:
            self.store.delete(body_key)
        for spec in roles.arrays + roles.collections:
            self.containers.clear(roles, rid, spec)
        logger.debug("Deleted %s:%s", roles.model_name, rid)
        return True
