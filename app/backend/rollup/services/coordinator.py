"""Recompute coordinator: decides when aggregates are stale and reloads them.

Each registered aggregate owns a filter specification and the record kinds
it reads. A filter change or a mutation of one of those kinds starts a new
load; a generation counter makes sure only the most recently issued load
may commit, so a slow response for an old filter is dropped on arrival.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from rollup.core.errors import SourceFetchError
from rollup.core.logging import get_logger
from rollup.domain.filters import FilterSpecification
from rollup.domain.records import MoneyRecord, RecordKind
from rollup.repositories.record_source import RecordSource, fetch_many

logger = get_logger(__name__)

T = TypeVar("T")

RecordsByKind = dict[RecordKind, list[MoneyRecord]]
ComputeFn = Callable[[FilterSpecification, RecordsByKind], T]


class AggregateState(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class AggregateView(Generic[T]):
    name: str
    state: AggregateState
    spec: FilterSpecification | None = None
    result: T | None = None
    error: BaseException | None = None

    @property
    def is_empty(self) -> bool:
        """Loaded successfully with nothing in it (distinct from ``error``)."""
        return self.state is AggregateState.READY and bool(getattr(self.result, "is_empty", False))


@dataclass(slots=True)
class _Slot:
    name: str
    kinds: tuple[RecordKind, ...]
    compute: ComputeFn
    view: AggregateView
    spec: FilterSpecification | None = None
    generation: int = 0


class RecomputeCoordinator:
    def __init__(self, source: RecordSource) -> None:
        self.source = source
        self._slots: dict[str, _Slot] = {}
        self._listeners: list[Callable[[AggregateView], None]] = []

    def register(
        self,
        name: str,
        kinds: Iterable[RecordKind],
        compute: ComputeFn,
        spec: FilterSpecification | None = None,
    ) -> AggregateView:
        if name in self._slots:
            raise ValueError(f"Aggregate {name!r} is already registered.")
        slot = _Slot(
            name=name,
            kinds=tuple(dict.fromkeys(kinds)),
            compute=compute,
            view=AggregateView(name=name, state=AggregateState.IDLE, spec=spec),
            spec=spec,
        )
        self._slots[name] = slot
        return slot.view

    def view(self, name: str) -> AggregateView:
        return self._slot(name).view

    def subscribe(self, listener: Callable[[AggregateView], None]) -> Callable[[], None]:
        """Call ``listener`` on every state change; returns an unsubscribe hook."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def set_filter(self, name: str, spec: FilterSpecification) -> AggregateView:
        slot = self._slot(name)
        if spec == slot.spec and slot.view.state in (AggregateState.LOADING, AggregateState.READY):
            return slot.view
        slot.spec = spec
        return await self._load(slot)

    async def retry(self, name: str) -> AggregateView:
        return await self._load(self._slot(name))

    async def notify_mutation(self, kind: RecordKind) -> list[AggregateView]:
        """Reload every aggregate that reads ``kind`` after a create/update/delete."""

        affected = [slot for slot in self._slots.values() if kind in slot.kinds and slot.spec is not None]
        if not affected:
            return []
        logger.info("Recomputing %s after %s mutation.", ", ".join(slot.name for slot in affected), kind.value)
        return list(await asyncio.gather(*(self._load(slot) for slot in affected)))

    def _slot(self, name: str) -> _Slot:
        try:
            return self._slots[name]
        except KeyError:
            raise KeyError(f"Unknown aggregate {name!r}.") from None

    def _publish(self, slot: _Slot, view: AggregateView) -> None:
        slot.view = view
        for listener in list(self._listeners):
            listener(view)

    async def _load(self, slot: _Slot) -> AggregateView:
        spec = slot.spec
        if spec is None:
            raise ValueError(f"Aggregate {slot.name!r} has no filter specification yet.")

        slot.generation += 1
        generation = slot.generation
        # Keep the previous result visible only while reloading the same slice.
        previous = slot.view.result if slot.view.spec == spec else None
        self._publish(slot, AggregateView(name=slot.name, state=AggregateState.LOADING, spec=spec, result=previous))

        try:
            records = await fetch_many(self.source, spec, slot.kinds)
        except SourceFetchError as exc:
            if generation != slot.generation:
                logger.debug("Dropping stale fetch failure for %s.", slot.name)
                return slot.view
            logger.error("Loading %s failed: %s", slot.name, exc)
            self._publish(slot, AggregateView(name=slot.name, state=AggregateState.ERROR, spec=spec, error=exc))
            return slot.view
        except Exception as exc:
            # Unexpected errors still move the view out of LOADING before propagating.
            if generation == slot.generation:
                logger.exception("Loading %s raised unexpectedly.", slot.name)
                self._publish(slot, AggregateView(name=slot.name, state=AggregateState.ERROR, spec=spec, error=exc))
            raise

        if generation != slot.generation:
            logger.debug("Dropping stale result for %s.", slot.name)
            return slot.view

        try:
            result = slot.compute(spec, records)
        except Exception as exc:
            self._publish(slot, AggregateView(name=slot.name, state=AggregateState.ERROR, spec=spec, error=exc))
            raise
        self._publish(slot, AggregateView(name=slot.name, state=AggregateState.READY, spec=spec, result=result))
        return slot.view
