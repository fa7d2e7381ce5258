"""Sample models shared by the tests.

Usage in tests:
    from tests.helpers import Person, Order
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ohm_lib.models import (
    array,
    attribute,
    collection_list,
    collection_map,
    collection_set,
    collection_sorted_set,
    identity,
    model,
    reference,
)


@model
@dataclass
class Person:
    id: Optional[int] = identity()
    name: Optional[str] = attribute(indexed=True)
    age: Optional[int] = attribute(indexed=True, comparable=True)
    email: Optional[str] = attribute()
    boss: Optional[Person] = reference(indexed=True)


@model
@dataclass
class Order:
    id: Optional[int] = identity()
    region: Optional[str] = attribute(indexed=True, hashtag=True)
    status: Optional[str] = attribute(indexed=True)
    amount: Optional[float] = attribute(indexed=True, comparable=True)


@model
@dataclass
class Parcel:
    id: Optional[int] = identity()
    zip: Optional[str] = attribute(indexed=True, comparable=True)


@model
@dataclass
class Department:
    id: Optional[int] = identity()
    name: Optional[str] = attribute(indexed=True)
    budget: Optional[int] = attribute(indexed=True, comparable=True)


@model
@dataclass
class Employee:
    id: Optional[int] = identity()
    name: Optional[str] = attribute(indexed=True)
    salary: Optional[int] = attribute(indexed=True, comparable=True)
    active: Optional[bool] = attribute()
    department: Optional[Department] = reference(indexed=True)
    scores: Optional[List[int]] = array(3, of=int)
    skills: set = collection_set(of=str)
    history: list = collection_list(of=str)
    ratings: list = collection_sorted_set(of=float)
    meta: Dict[str, int] = collection_map(key=str, value=int)
    # not persisted
    scratch: Any = field(default=None)


class FailingStore:
    """Wraps a store and raises `error` on the configured command calls.

    `fail_on` maps a command name ("sadd", "zadd", "execute", ...) to the
    1-based call numbers that should fail.
    """

    def __init__(self, inner, error, fail_on: Dict[str, set]):
        self.inner = inner
        self.error = error
        self.fail_on = fail_on
        self.calls: Dict[str, int] = {}
        self.log: List[tuple] = []

    @property
    def partitioned(self):
        return self.inner.partitioned

    def _maybe_fail(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.calls[name] in self.fail_on.get(name, set()):
            raise self.error

    def __getattr__(self, name):
        target = getattr(self.inner, name)
        if name in ("pipeline", "transaction"):
            return self._wrap_batch(target)

        def call(*args, **kwargs):
            self.log.append((name,) + args)
            self._maybe_fail(name)
            return target(*args, **kwargs)

        return call

    def _wrap_batch(self, factory):
        from contextlib import contextmanager

        outer = self

        @contextmanager
        def cm(*args):
            with factory(*args) as batch:
                yield _FailingBatch(outer, batch)

        return cm


class _FailingBatch:
    def __init__(self, outer: FailingStore, batch):
        self._outer = outer
        self._batch = batch

    def __getattr__(self, name):
        return getattr(self._batch, name)

    def execute(self):
        self._outer.log.append(("execute",))
        self._outer._maybe_fail("execute")
        return self._batch.execute()
