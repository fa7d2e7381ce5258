"""Applying index deltas and record bodies to the store.

The plan is picked once per save/delete, before any I/O:

- `Pipelined`: the store is a single node. Removals, additions and the body
  write are queued in one pipeline and flushed together.
- `Transactional(tag)`: the store is partitioned and every index key of
  the delta carries the same co-location tag. All index changes run in one
  MULTI/EXEC on the shard owning the tag.
- `MixedWithCompensation(groups, loose)`: the store is partitioned and the
  keys do not share one tag. Untagged keys are written one command at a
  time; each tag group runs in its own MULTI/EXEC.

On partitioned stores the enumeration set membership and the body are
single-key writes applied after the index changes. Whenever a step fails
after earlier steps were applied, every applied step is inverted once
(best effort) before the original error is re-raised. If inverting fails
too, `RollbackFailure` is raised.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Union

from ohm_lib.engine.delta import IndexDelta
from ohm_lib.errors import OhmError, RollbackFailure
from ohm_lib.storage.interfaces import StoreBatch, StoreProtocol
from ohm_lib.storage.keys import tag_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Pipelined:
    pass


@dataclass(frozen=True)
class Transactional:
    tag: str


@dataclass(frozen=True)
class MixedWithCompensation:
    groups: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    loose: FrozenSet[str] = frozenset()


ExecutionPlan = Union[Pipelined, Transactional, MixedWithCompensation]


@dataclass(frozen=True)
class Step:
    """One membership change: ``sadd``/``srem``/``zadd``/``zrem`` of `member`."""

    op: str
    key: str
    member: str
    score: Optional[float] = None

    _INVERSE = {"sadd": "srem", "srem": "sadd", "zadd": "zrem", "zrem": "zadd"}

    def inverse(self) -> "Step":
        return Step(self._INVERSE[self.op], self.key, self.member, self.score)

    def queue(self, batch: StoreBatch) -> None:
        if self.op == "zadd":
            batch.zadd(self.key, {self.member: self.score})
        else:
            getattr(batch, self.op)(self.key, self.member)

    def apply(self, store: StoreProtocol) -> None:
        if self.op == "zadd":
            store.zadd(self.key, {self.member: self.score})
        else:
            getattr(store, self.op)(self.key, self.member)


@dataclass
class BodyWrite:
    """Replacement (`fields` set) or deletion (`fields` None) of a record body."""

    key: str
    fields: Optional[Dict[str, str]] = None

    def queue(self, batch: StoreBatch) -> None:
        batch.delete(self.key)
        if self.fields:
            batch.hset(self.key, self.fields)


def steps_for(delta: IndexDelta) -> List[Step]:
    """Removals first, then additions, in a stable order."""
    m = delta.member
    steps = [Step("srem", k, m) for k in sorted(delta.sets_to_remove)]
    steps += [Step("zrem", k, m, s) for k, s in sorted(delta.sorted_sets_to_remove.items())]
    steps += [Step("sadd", k, m) for k in sorted(delta.sets_to_add)]
    steps += [Step("zadd", k, m, s) for k, s in sorted(delta.sorted_sets_to_add.items())]
    return steps


def plan_for(store: StoreProtocol, delta: IndexDelta) -> ExecutionPlan:
    if not store.partitioned:
        return Pipelined()
    groups: Dict[str, set] = {}
    loose = set()
    for k in delta.index_keys():
        tag = tag_of(k)
        if tag is None:
            loose.add(k)
        else:
            groups.setdefault(tag, set()).add(k)
    if not loose and len(groups) == 1:
        return Transactional(next(iter(groups)))
    return MixedWithCompensation({t: frozenset(ks) for t, ks in groups.items()}, frozenset(loose))


class PlanExecutor:
    def __init__(self, store: StoreProtocol):
        self.store = store

    def apply(self, delta: IndexDelta, body: Optional[BodyWrite] = None) -> ExecutionPlan:
        """Apply `delta` then `body`; returns the plan that was used."""
        plan = plan_for(self.store, delta)
        logger.debug("Applying delta for %s:%s with %s", delta.all_key, delta.member, plan)
        if isinstance(plan, Pipelined):
            self._run_pipelined(delta, body)
        elif isinstance(plan, Transactional):
            self._run_grouped({plan.tag: delta.index_keys()}, frozenset(), delta, body)
        else:
            self._run_grouped(plan.groups, plan.loose, delta, body)
        return plan

    def _run_pipelined(self, delta: IndexDelta, body: Optional[BodyWrite]) -> None:
        with self.store.pipeline() as batch:
            for step in steps_for(delta):
                step.queue(batch)
            if body is not None:
                body.queue(batch)
            batch.execute()

    def _run_grouped(self, groups: Mapping[str, FrozenSet[str]], loose: FrozenSet[str], delta: IndexDelta, body: Optional[BodyWrite]) -> None:
        steps = steps_for(delta)
        applied: List[Step] = []
        try:
            for step in steps:
                if step.key in loose:
                    step.apply(self.store)
                    applied.append(step)
            for tag in sorted(groups):
                group = [s for s in steps if s.key in groups[tag]]
                if not group:
                    continue
                with self.store.transaction(group[0].key) as tx:
                    for step in group:
                        step.queue(tx)
                    tx.execute()
                applied.extend(group)
            for step in steps:
                if step.key == delta.all_key:
                    step.apply(self.store)
                    applied.append(step)
            if body is not None:
                with self.store.transaction(body.key) as tx:
                    body.queue(tx)
                    tx.execute()
        except OhmError as e:
            if applied:
                self._compensate(applied, e)
            raise

    def _compensate(self, applied: List[Step], error: OhmError) -> None:
        logger.warning("%s after %d applied index steps; compensating", error.kind.value, len(applied))
        try:
            for step in reversed(applied):
                step.inverse().apply(self.store)
        except OhmError as e:
            logger.exception("Compensation failed; index state may be inconsistent")
            failure = RollbackFailure(f"compensation failed ({e}) after {error.kind.value}", cause=error)
            failure.compensation_error = e
            raise failure
        logger.info("Compensated %d index steps", len(applied))
