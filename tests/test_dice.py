"""Tests for the dice-roll telemetry generator."""

import io
import logging
import random
import threading

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from dicesim.generators.dice import MAX_COUNTED_ROLL, DiceRoller, classify
from dicesim.lifecycle import CancellationToken

LOGGER_NAME = "dicesim-test"


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def roller(span_exporter, metric_reader) -> DiceRoller:
    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    meter_provider = MeterProvider(metric_readers=[metric_reader])
    return DiceRoller(
        "dicesim-test",
        logging.getLogger(LOGGER_NAME),
        tracer=tracer_provider.get_tracer("dicesim-test"),
        meter=meter_provider.get_meter("dicesim-test"),
        rng=random.Random(42),
        delay_scale=0.0,
    )


def _counter_values(reader: InMemoryMetricReader) -> dict[str, int]:
    values: dict[str, int] = {}
    data = reader.get_metrics_data()
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                values[metric.name] = sum(dp.value for dp in metric.data.data_points)
    return values


@pytest.mark.parametrize(
    ("roll", "expected"),
    [
        (0, ("zero", 1)),
        (1, ("one", 1)),
        (2, ("even", 1)),
        (3, ("odd", 1)),
        (4, ("even", 2)),
        (5, ("odd", 2)),
        (8, ("even", 4)),
        (9, ("odd", 4)),
    ],
)
def test_classify(roll: int, expected: tuple[str, int]) -> None:
    assert classify(roll) == expected


def test_roll_stays_in_range(roller: DiceRoller) -> None:
    rolls = {roller.roll() for _ in range(500)}
    assert rolls <= set(range(10))
    assert len(rolls) == 10


def test_setup_creates_all_counters(roller: DiceRoller) -> None:
    assert roller.setup() is True
    assert roller.dice_rolls is not None
    assert sorted(roller.roll_counters) == list(range(MAX_COUNTED_ROLL + 1))


def test_roll_dice_emits_span_and_log(
    roller: DiceRoller, span_exporter: InMemorySpanExporter, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)

    label = roller.roll_dice(4, CancellationToken())

    assert label == "even"
    (span,) = span_exporter.get_finished_spans()
    assert span.name == "dice_roll"
    assert span.attributes["action"] == "roll"
    assert span.attributes["roll"] == 4
    (record,) = [r for r in caplog.records if r.name == LOGGER_NAME]
    assert record.getMessage() == "Rolled even"
    assert record.roll == 4


def test_roll_dice_delay_is_cut_short_by_cancellation(roller: DiceRoller) -> None:
    """A cancelled token ends the wait immediately even with a long delay."""
    roller.delay_scale = 60.0
    token = CancellationToken()
    token.cancel()

    finished = threading.Event()
    threading.Thread(target=lambda: (roller.roll_dice(8, token), finished.set())).start()

    assert finished.wait(5)


def test_echo_prints_each_roll(roller: DiceRoller) -> None:
    out = io.StringIO()
    roller.echo = out

    for roll in (3, 0, 7):
        roller.roll_dice(roll, CancellationToken())

    assert out.getvalue() == "307"


def test_run_counts_every_roll(
    roller: DiceRoller, span_exporter: InMemorySpanExporter, metric_reader: InMemoryMetricReader
) -> None:
    """run() rolls until cancelled; counters and spans match the number of rolls."""
    roller.delay_scale = 0.001
    token = CancellationToken()
    timer = threading.Timer(0.1, token.cancel)
    timer.start()

    count = roller.run(token)

    assert count > 0
    values = _counter_values(metric_reader)
    assert values["dice-rolls"] == count
    per_roll = sum(values.get(f"roll-{n}-count", 0) for n in range(MAX_COUNTED_ROLL + 1))
    assert per_roll == count
    assert len(span_exporter.get_finished_spans()) == count


def test_run_returns_immediately_when_already_cancelled(roller: DiceRoller) -> None:
    token = CancellationToken()
    token.cancel()

    assert roller.run(token) == 0


class _BrokenMeter:
    def create_counter(self, name, **kwargs):
        raise ValueError(f"cannot create {name}")


def test_counter_failure_aborts_run(caplog: pytest.LogCaptureFixture) -> None:
    """If the counters cannot be created the task logs an error and returns."""
    roller = DiceRoller(
        "dicesim-test",
        logging.getLogger(LOGGER_NAME),
        tracer=TracerProvider().get_tracer("dicesim-test"),
        meter=_BrokenMeter(),  # type: ignore[arg-type]
        delay_scale=0.0,
    )

    assert roller.run(CancellationToken()) == 0
    assert "Creating counter" in caplog.text
