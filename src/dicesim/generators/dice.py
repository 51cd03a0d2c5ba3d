"""
Generate traces, metrics and logs from a pseudo-random dice roll.

Every roll produces one ``dice_roll`` span, one log record and two counter
increments, then waits for a delay that depends on the rolled value.
"""

import logging
import random
from typing import TextIO

from opentelemetry import metrics, trace
from opentelemetry.metrics import Counter, Meter
from opentelemetry.trace import Tracer

from ..lifecycle import CancellationToken

# Rolls are drawn from [0, ROLL_SIDES); counters exist for 0..MAX_COUNTED_ROLL.
ROLL_SIDES = 10
MAX_COUNTED_ROLL = 10


def classify(roll: int) -> tuple[str, int]:
    """Return (outcome label, delay in units) for a roll."""
    if roll == 0:
        return "zero", 1
    if roll % 2 == 0:
        return "even", roll // 2
    if roll == 1:
        return "one", 1
    return "odd", roll // 2


class DiceRoller:
    """Emit telemetry for a stream of dice rolls until cancelled."""

    def __init__(
        self,
        service_name: str,
        logger: logging.Logger,
        tracer: Tracer | None = None,
        meter: Meter | None = None,
        rng: random.Random | None = None,
        delay_scale: float = 1.0,
        echo: TextIO | None = None,
    ):
        """
        Initialize the roller.

        Args:
            service_name: instrumentation scope for the tracer and meter
            logger: logger bridged into the OTEL log pipeline
            tracer: defaults to the global tracer provider's tracer
            meter: defaults to the global meter provider's meter
            rng: random source (seed it for reproducible runs)
            delay_scale: seconds per delay unit
            echo: stream each roll is printed to (e.g. sys.stdout)
        """
        self.logger = logger
        self.tracer = tracer or trace.get_tracer(service_name)
        self.meter = meter or metrics.get_meter(service_name)
        self.rng = rng or random.Random()
        self.delay_scale = delay_scale
        self.echo = echo

        self.dice_rolls: Counter | None = None
        self.roll_counters: dict[int, Counter] = {}

    def setup(self) -> bool:
        """Create the counters; log and return False if any cannot be created."""
        try:
            self.dice_rolls = self.meter.create_counter(
                "dice-rolls", description="Counts the total number of dice rolls"
            )
        except Exception as e:
            self.logger.error("Creating counter", extra={"counter": "dice-rolls", "error": str(e)})
            return False

        for number in range(MAX_COUNTED_ROLL + 1):
            try:
                self.roll_counters[number] = self.meter.create_counter(
                    f"roll-{number}-count",
                    description=f"Counter the total number of dice rolls for the number {number}",
                )
            except Exception as e:
                self.logger.error(
                    "Creating roll counter",
                    extra={"counter": "roll", "number": number, "error": str(e)},
                )
                return False
        return True

    def roll(self) -> int:
        return self.rng.randrange(ROLL_SIDES)

    def roll_dice(self, roll: int, token: CancellationToken) -> str:
        """Record one roll as a span and a log record, then wait out its delay."""
        with self.tracer.start_as_current_span("dice_roll") as span:
            span.set_attribute("action", "roll")
            span.set_attribute("roll", roll)
            if self.echo is not None:
                print(roll, end="", file=self.echo, flush=True)

            label, units = classify(roll)
            self.logger.info(f"Rolled {label}", extra={"roll": roll})
            token.wait(units * self.delay_scale)
        return label

    def run(self, token: CancellationToken) -> int:
        """Roll until the token is cancelled. Returns the number of rolls made."""
        if not self.setup():
            return 0

        count = 0
        while not token.cancelled:
            roll = self.roll()
            self.roll_dice(roll, token)
            self.dice_rolls.add(1)
            self.roll_counters[roll].add(1)
            count += 1
        return count
