from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from rollup.core.errors import ConfigurationError, SourceFetchError, ValidationError
from rollup.domain.filters import FilterSpecification
from rollup.domain.records import MoneyRecord, RecordKind
from rollup.services.aggregation import AggregateResult, aggregate
from rollup.services.coordinator import AggregateState, AggregateView, RecomputeCoordinator

SPEC_A = FilterSpecification(start=date(2024, 1, 1), end=date(2024, 1, 31))
SPEC_B = FilterSpecification(start=date(2024, 2, 1), end=date(2024, 2, 29))


def _record(record_id: str, amount: str, occurred_at: date, kind: RecordKind = RecordKind.PAYMENT) -> MoneyRecord:
    return MoneyRecord(
        id=record_id,
        kind=kind,
        amount=Decimal(amount),
        currency="USD",
        occurred_at=occurred_at,
        status="paid",
        department="Engineering",
    )


class FakeSource:
    """In-memory source; fetches for a gated spec block until released."""

    def __init__(self, records: list[MoneyRecord]) -> None:
        self.records = records
        self.calls: list[tuple[FilterSpecification, RecordKind]] = []
        self.gates: dict[FilterSpecification, asyncio.Event] = {}
        self.failures: dict[RecordKind, Exception] = {}
        # Raised as-is rather than wrapped as a fetch failure.
        self.errors: dict[RecordKind, Exception] = {}

    async def fetch(self, spec: FilterSpecification, kind: RecordKind) -> list[MoneyRecord]:
        self.calls.append((spec, kind))
        gate = self.gates.get(spec)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(kind)
        if failure is not None:
            raise SourceFetchError(failure, kind=kind)
        error = self.errors.get(kind)
        if error is not None:
            raise error
        return [
            record
            for record in self.records
            if record.kind is kind and spec.start <= record.occurred_at <= spec.end
        ]


def _payments_total(spec: FilterSpecification, records: dict[RecordKind, list[MoneyRecord]]) -> AggregateResult:
    return aggregate(records[RecordKind.PAYMENT])


def _source() -> FakeSource:
    return FakeSource(
        [
            _record("jan", "100", date(2024, 1, 15)),
            _record("feb", "250", date(2024, 2, 15)),
            _record("exp", "40", date(2024, 1, 20), RecordKind.EXPENSE),
        ]
    )


@pytest.mark.asyncio
async def test_set_filter_moves_through_loading_to_ready() -> None:
    source = _source()
    coordinator = RecomputeCoordinator(source)
    states: list[AggregateState] = []
    coordinator.subscribe(lambda view: states.append(view.state))
    initial = coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    view = await coordinator.set_filter("payments", SPEC_A)

    assert initial.state is AggregateState.IDLE
    assert states == [AggregateState.LOADING, AggregateState.READY]
    assert view.state is AggregateState.READY
    assert view.result.totals_by_currency == {"USD": Decimal("100")}
    assert coordinator.view("payments") is view


@pytest.mark.asyncio
async def test_same_filter_does_not_refetch() -> None:
    source = _source()
    coordinator = RecomputeCoordinator(source)
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    await coordinator.set_filter("payments", SPEC_A)
    await coordinator.set_filter("payments", SPEC_A)

    assert len(source.calls) == 1


@pytest.mark.asyncio
async def test_stale_result_from_superseded_filter_is_dropped() -> None:
    source = _source()
    source.gates[SPEC_A] = asyncio.Event()
    coordinator = RecomputeCoordinator(source)
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    load_a = asyncio.create_task(coordinator.set_filter("payments", SPEC_A))
    await asyncio.sleep(0)
    assert coordinator.view("payments").state is AggregateState.LOADING

    view_b = await coordinator.set_filter("payments", SPEC_B)
    source.gates[SPEC_A].set()
    await load_a

    final = coordinator.view("payments")
    assert final is view_b
    assert final.state is AggregateState.READY
    assert final.spec == SPEC_B
    assert final.result.totals_by_currency == {"USD": Decimal("250")}


@pytest.mark.asyncio
async def test_fetch_failure_becomes_error_state_and_retry_recovers() -> None:
    source = _source()
    source.failures[RecordKind.PAYMENT] = RuntimeError("connection reset")
    coordinator = RecomputeCoordinator(source)
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    failed = await coordinator.set_filter("payments", SPEC_A)

    assert failed.state is AggregateState.ERROR
    assert isinstance(failed.error, SourceFetchError)
    assert failed.result is None
    assert not failed.is_empty

    del source.failures[RecordKind.PAYMENT]
    recovered = await coordinator.retry("payments")

    assert recovered.state is AggregateState.READY
    assert recovered.error is None
    assert len(source.calls) == 2


@pytest.mark.asyncio
async def test_unexpected_source_error_leaves_loading_and_can_be_retried() -> None:
    source = _source()
    source.errors[RecordKind.PAYMENT] = ValidationError("owner_id must be a UUID, got 'x'.")
    coordinator = RecomputeCoordinator(source)
    states: list[AggregateState] = []
    coordinator.subscribe(lambda view: states.append(view.state))
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    with pytest.raises(ValidationError):
        await coordinator.set_filter("payments", SPEC_A)

    view = coordinator.view("payments")
    assert states == [AggregateState.LOADING, AggregateState.ERROR]
    assert view.state is AggregateState.ERROR
    assert isinstance(view.error, ValidationError)

    del source.errors[RecordKind.PAYMENT]
    again = await coordinator.set_filter("payments", SPEC_A)

    assert again.state is AggregateState.READY
    assert again.result.totals_by_currency == {"USD": Decimal("100")}
    assert len(source.calls) == 2


@pytest.mark.asyncio
async def test_one_failing_kind_fails_the_slot_without_partial_result() -> None:
    source = _source()
    source.failures[RecordKind.EXPENSE] = RuntimeError("timeout")
    coordinator = RecomputeCoordinator(source)
    coordinator.register("overview", [RecordKind.PAYMENT, RecordKind.EXPENSE], _payments_total)

    view = await coordinator.set_filter("overview", SPEC_A)

    assert view.state is AggregateState.ERROR
    assert view.result is None
    assert view.error.kind is RecordKind.EXPENSE


@pytest.mark.asyncio
async def test_empty_result_is_distinct_from_error() -> None:
    coordinator = RecomputeCoordinator(FakeSource([]))
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    view = await coordinator.set_filter("payments", SPEC_A)

    assert view.state is AggregateState.READY
    assert view.is_empty
    assert view.error is None


@pytest.mark.asyncio
async def test_mutation_reloads_only_dependent_aggregates() -> None:
    source = _source()
    coordinator = RecomputeCoordinator(source)
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)
    coordinator.register(
        "expenses",
        [RecordKind.EXPENSE],
        lambda spec, records: aggregate(records[RecordKind.EXPENSE]),
    )
    coordinator.register("unfiltered", [RecordKind.PAYMENT], _payments_total)
    await coordinator.set_filter("payments", SPEC_A)
    await coordinator.set_filter("expenses", SPEC_A)

    source.records.append(_record("late", "15", date(2024, 1, 30)))
    reloaded = await coordinator.notify_mutation(RecordKind.PAYMENT)

    assert [view.name for view in reloaded] == ["payments"]
    assert coordinator.view("payments").result.totals_by_currency == {"USD": Decimal("115")}
    assert coordinator.view("expenses").result.total_count == 1
    assert coordinator.view("unfiltered").state is AggregateState.IDLE
    assert len(source.calls) == 3


@pytest.mark.asyncio
async def test_reload_keeps_previous_result_visible_while_loading() -> None:
    source = _source()
    coordinator = RecomputeCoordinator(source)
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)
    await coordinator.set_filter("payments", SPEC_A)
    loading_views: list[AggregateView] = []
    coordinator.subscribe(
        lambda view: loading_views.append(view) if view.state is AggregateState.LOADING else None
    )

    await coordinator.notify_mutation(RecordKind.PAYMENT)
    await coordinator.set_filter("payments", SPEC_B)

    assert loading_views[0].result is not None
    assert loading_views[1].result is None


@pytest.mark.asyncio
async def test_compute_errors_are_recorded_and_raised() -> None:
    def _bad_compute(spec: FilterSpecification, records: dict[RecordKind, list[MoneyRecord]]) -> AggregateResult:
        return aggregate(records[RecordKind.PAYMENT], "EUR")

    coordinator = RecomputeCoordinator(_source())
    coordinator.register("payments", [RecordKind.PAYMENT], _bad_compute)

    with pytest.raises(ConfigurationError):
        await coordinator.set_filter("payments", SPEC_A)

    view = coordinator.view("payments")
    assert view.state is AggregateState.ERROR
    assert isinstance(view.error, ConfigurationError)


def test_registration_errors() -> None:
    coordinator = RecomputeCoordinator(FakeSource([]))
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    with pytest.raises(ValueError):
        coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)
    with pytest.raises(KeyError):
        coordinator.view("missing")


def test_unsubscribe_stops_notifications() -> None:
    coordinator = RecomputeCoordinator(FakeSource([]))
    seen: list[AggregateView] = []
    unsubscribe = coordinator.subscribe(seen.append)
    coordinator.register("payments", [RecordKind.PAYMENT], _payments_total)

    unsubscribe()
    asyncio.run(coordinator.set_filter("payments", SPEC_A))

    assert seen == []
