"""
dicesim - Dice-roll OTEL telemetry generator.

This package repeatedly simulates a dice roll and exports the resulting
OpenTelemetry telemetry (traces, metrics, logs) to a collector.
"""

__version__ = "1.0.0"
